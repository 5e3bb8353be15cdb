from __future__ import annotations

import threading
from typing import Any, Mapping, Optional, Union

import requests

from prodrec.config import ClientConfig
from prodrec.errors import InvalidInput
from prodrec.models.recommender import TrainingParameters
from prodrec.services.dispatcher import RequestDispatcher
from prodrec.services.model import Confirmer, RecommendationModel, interactive_confirm
from prodrec.services.training import TrainingOrchestrator, TrainingOutcome
from prodrec.utils.clock import Clock
from prodrec.utils.logger import Logger

_logger = Logger(name="prodrec.endpoint")


class RecommendationEndpoint:
    """Entry point to one deployed recommendations service.

    Creates model handles either by attaching to an existing model id or by
    submitting a new training job. All handles share one HTTP session.
    """

    def __init__(
        self,
        service_url: str,
        admin_key: Optional[str] = None,
        rec_key: Optional[str] = None,
        *,
        config: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Clock] = None,
        confirm: Confirmer = interactive_confirm,
    ) -> None:
        if not service_url:
            raise InvalidInput("A service URL is required")
        self.service_url = service_url.rstrip("/")
        self.admin_key = admin_key
        self.rec_key = rec_key
        self.config = config or ClientConfig()
        self.confirm = confirm
        self.models = RequestDispatcher(
            f"{self.service_url}/api/models", timeout=self.config.timeout, session=session
        )
        self.trainer = TrainingOrchestrator(
            self.models,
            admin_key,
            poll_interval=self.config.poll_interval,
            max_polls=self.config.max_polls,
            status_retries=self.config.status_retries,
            clock=clock,
        )
        self.last_training: Optional[TrainingOutcome] = None

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs) -> "RecommendationEndpoint":
        return cls(config.service_url, config.admin_key, config.rec_key, config=config, **kwargs)

    def _handle(self, snapshot) -> RecommendationModel:
        return RecommendationModel(
            self.service_url,
            self.admin_key,
            self.rec_key,
            snapshot,
            config=self.config,
            dispatcher=self.models,
            trainer=self.trainer,
            confirm=self.confirm,
        )

    def get_model(self, model_id: str) -> RecommendationModel:
        """Attach to an existing model and load its current descriptor."""
        if not model_id:
            raise InvalidInput("A model id is required")
        return self._handle(self.trainer.fetch_status(model_id))

    def train_model(
        self,
        parameters: Union[TrainingParameters, Mapping[str, Any], None] = None,
        wait: bool = True,
        *,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        **params: Any,
    ) -> RecommendationModel:
        """
        Submit a training job and return a handle for the new model.

        Parameters can be passed as a mapping / `TrainingParameters`, as
        keyword arguments, or both (keywords win). With ``wait=True`` this
        blocks until training finishes, the poll budget or `deadline` runs
        out, or `cancel` is set; the returned handle holds whatever status
        was observed last. The outcome is kept in `last_training`.
        """
        merged = dict(_as_mapping(parameters))
        merged.update(params)
        outcome = self.trainer.train(merged, wait=wait, cancel=cancel, deadline=deadline)
        self.last_training = outcome
        _logger.info(
            "model_training",
            model_id=outcome.snapshot.id,
            description=outcome.snapshot.description,
            state=outcome.state.value,
            status=outcome.snapshot.status,
            polls=outcome.polls,
        )
        return self._handle(outcome.snapshot)


def _as_mapping(parameters: Union[TrainingParameters, Mapping[str, Any], None]) -> Mapping[str, Any]:
    if parameters is None:
        return {}
    if isinstance(parameters, TrainingParameters):
        return parameters.to_payload()
    return parameters


def create_or_attach_model(
    service_url: Optional[str] = None,
    admin_key: Optional[str] = None,
    rec_key: Optional[str] = None,
    model_id: Optional[str] = None,
    parameters: Union[TrainingParameters, Mapping[str, Any], None] = None,
    wait: bool = True,
    *,
    config: Optional[ClientConfig] = None,
    cancel: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
    **kwargs: Any,
) -> RecommendationModel:
    """
    Attach to `model_id` if given, otherwise train a new model from `parameters`.

    Connection details not passed explicitly are taken from `config`, or
    from the ``PRODREC_*`` environment variables when no config is given.
    `cancel` and `deadline` bound the wait for training; remaining keyword
    arguments go to `RecommendationEndpoint`.
    """
    if model_id and parameters:
        raise InvalidInput("Pass either a model id or training parameters, not both")
    if not model_id and not parameters:
        raise InvalidInput("Pass a model id to attach to or training parameters to create a model")

    base = config or ClientConfig.from_env()
    config = base.with_overrides(service_url=service_url, admin_key=admin_key, rec_key=rec_key)
    endpoint = RecommendationEndpoint.from_config(config, **kwargs)
    if model_id:
        return endpoint.get_model(model_id)
    return endpoint.train_model(parameters, wait=wait, cancel=cancel, deadline=deadline)
