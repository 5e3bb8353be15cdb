from __future__ import annotations

import sys
from typing import Any, Callable, Dict, Optional

import pandas as pd

from prodrec.config import ClientConfig
from prodrec.errors import InvalidInput
from prodrec.models.recommender import ModelSnapshot
from prodrec.services.batcher import RecommendationBatcher
from prodrec.services.dispatcher import RequestDispatcher
from prodrec.services.training import TrainingOrchestrator
from prodrec.utils.logger import Logger
from prodrec.utils.rate_limiter import RateLimiter

_logger = Logger(name="prodrec.model")

Confirmer = Callable[[str], bool]


def interactive_confirm(question: str) -> bool:
    """Ask on the terminal; non-interactive sessions are treated as confirmed."""
    if not sys.stdin or not sys.stdin.isatty():
        return True
    answer = input(question)
    return answer.strip().lower().startswith("y")


class RecommendationModel:
    """Handle for one model hosted by the recommendations service.

    Holds the connection details and the last descriptor fetched from the
    service as an immutable `ModelSnapshot`. Only training and
    `refresh_status()` replace the snapshot, and always as a whole, so
    recommendation calls running in other threads never see a half-updated
    model.
    """

    def __init__(
        self,
        service_url: str,
        admin_key: Optional[str],
        rec_key: Optional[str],
        snapshot: ModelSnapshot,
        *,
        config: Optional[ClientConfig] = None,
        dispatcher: Optional[RequestDispatcher] = None,
        trainer: Optional[TrainingOrchestrator] = None,
        confirm: Confirmer = interactive_confirm,
    ) -> None:
        self.service_url = service_url.rstrip("/")
        self.admin_key = admin_key
        self.rec_key = rec_key
        self.config = config or ClientConfig()
        self.snapshot = snapshot
        self._confirm = confirm

        models = dispatcher or RequestDispatcher(self.models_url, timeout=self.config.timeout)
        self._models = models
        self._trainer = trainer or TrainingOrchestrator(
            models,
            admin_key,
            poll_interval=self.config.poll_interval,
            max_polls=self.config.max_polls,
            status_retries=self.config.status_retries,
        )
        self._rate_limiter = RateLimiter.per_minute(self.config.max_calls_per_minute)

    @property
    def models_url(self) -> str:
        return f"{self.service_url}/api/models"

    @property
    def id(self) -> Optional[str]:
        return self.snapshot.id

    @property
    def description(self) -> Optional[str]:
        return self.snapshot.description

    @property
    def status(self) -> Optional[str]:
        return self.snapshot.status

    @property
    def model_url(self) -> str:
        return f"{self.models_url}/{self.snapshot.id}"

    def get_model_url(self) -> str:
        return self.model_url

    def _model_dispatcher(self) -> RequestDispatcher:
        return self._models.child(self._require_id())

    def _require_id(self) -> str:
        if not self.snapshot.id:
            raise InvalidInput("Model has no id yet; train it or attach to an existing model first")
        return self.snapshot.id

    def refresh_status(self) -> ModelSnapshot:
        """Fetch the current descriptor and swap it in as the new snapshot."""
        self.snapshot = self._trainer.fetch_status(self._require_id())
        _logger.debug("model_refreshed", model_id=self.id, status=self.status)
        return self.snapshot

    def delete(self, confirm: bool = True) -> bool:
        """Delete the model on the service. Returns False when the user declines."""
        model_id = self._require_id()
        if confirm and not self._confirm(
            f"Do you really want to delete model '{self.description}'? (y/N) "
        ):
            _logger.info("model_delete_declined", model_id=model_id)
            return False
        _logger.info("model_delete", model_id=model_id, description=self.description)
        self._models.dispatch(model_id, "DELETE", key=self.admin_key)
        return True

    def _batcher(self) -> RecommendationBatcher:
        return RecommendationBatcher(
            self._model_dispatcher(),
            self.rec_key,
            max_concurrency=self.config.max_concurrency,
            rate_limiter=self._rate_limiter,
        )

    def user_recommendations(self, userdata: Any = None, k: int = 10) -> pd.DataFrame:
        """
        Personalised top-`k` recommendations.

        `userdata` may be a list of user IDs (scored from the training data), a
        transaction DataFrame without a ``user`` column (one new user), or a
        transaction DataFrame with a ``user`` column (per-user history plus the
        supplied events).
        """
        return self._batcher().user_recommendations(userdata, k)

    def item_recommendations(self, items: Any = None, k: int = 10) -> pd.DataFrame:
        """Item-to-item top-`k` recommendations, one row per unique item."""
        return self._batcher().item_recommendations(items, k)

    # shorter names matching the service's own terminology
    user_predict = user_recommendations
    item_predict = item_recommendations

    def summary(self) -> Dict[str, Any]:
        out = self.snapshot.summary()
        out["endpoint"] = self.model_url
        return out

    def __repr__(self) -> str:
        return f"<RecommendationModel id={self.id!r} description={self.description!r} status={self.status!r}>"
