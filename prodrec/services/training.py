"""
Submit SAR training jobs and follow them to completion.

Training is asynchronous on the service side: the POST returns a descriptor
in its initial status straight away. When asked to wait, the orchestrator
re-fetches the descriptor every `poll_interval` seconds until it completes,
fails, or the poll budget / caller deadline runs out. Running out of budget
is not an error: the last descriptor is returned and a `TrainingTimeout`
warning is issued. A `Failed` model is likewise returned, not raised; its
status carries the failure.
"""
from __future__ import annotations

import logging
import threading
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

import backoff
from pydantic import ValidationError

from prodrec.config import DEFAULT_MAX_POLLS, DEFAULT_POLL_INTERVAL, DEFAULT_STATUS_RETRIES
from prodrec.errors import InvalidInput, MalformedResponse, NetworkError, ProdRecError, TrainingTimeout
from prodrec.models.recommender import ModelSnapshot, TrainingParameters
from prodrec.services.dispatcher import RequestDispatcher
from prodrec.utils.clock import Clock, SystemClock

LOGGER = logging.getLogger(__name__)


class TrainingState(str, Enum):
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TrainingOutcome:
    snapshot: ModelSnapshot
    state: TrainingState
    polls: int = 0

    @property
    def timed_out(self) -> bool:
        return self.state == TrainingState.TIMED_OUT


def training_payload(parameters: Union[TrainingParameters, Mapping[str, Any], None]) -> dict:
    """Wire body for a training request with every unset parameter removed."""
    if parameters is None:
        raise InvalidInput("Training parameters are required")
    if not isinstance(parameters, TrainingParameters):
        try:
            parameters = TrainingParameters.model_validate(
                {k: v for k, v in dict(parameters).items() if v is not None}
            )
        except ValidationError as exc:
            raise InvalidInput(f"Invalid training parameters: {exc}") from exc
    payload = parameters.to_payload()
    if not payload:
        raise InvalidInput("Training parameters are required")
    return payload



def _snapshot(res: Any) -> ModelSnapshot:
    try:
        return ModelSnapshot.model_validate(res or {})
    except ValidationError as exc:
        raise MalformedResponse(f"Unexpected model descriptor in response: {exc}") from exc

class TrainingOrchestrator:
    def __init__(
        self,
        models: RequestDispatcher,
        admin_key: Optional[str],
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        status_retries: int = DEFAULT_STATUS_RETRIES,
        clock: Optional[Clock] = None,
    ) -> None:
        """`models` must be bound to the service's models collection URL."""
        self.models = models
        self.admin_key = admin_key
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.clock = clock or SystemClock()
        self._fetch_with_retry = backoff.on_exception(
            backoff.expo,
            NetworkError,
            max_tries=status_retries,
            jitter=backoff.full_jitter,
            logger=LOGGER,
        )(self._fetch_once)

    def submit(self, parameters: Union[TrainingParameters, Mapping[str, Any]]) -> ModelSnapshot:
        payload = training_payload(parameters)
        res = self.models.dispatch("", "POST", body=payload, key=self.admin_key)
        snapshot = _snapshot(res)
        if not snapshot.id:
            raise ProdRecError("Training request was accepted but the response carried no model id")
        LOGGER.info("Submitted training for model %s (status=%s)", snapshot.id, snapshot.status)
        return snapshot

    def fetch_status(self, model_id: str) -> ModelSnapshot:
        """Current descriptor; transient network failures are retried with backoff."""
        return self._fetch_with_retry(model_id)

    def _fetch_once(self, model_id: str) -> ModelSnapshot:
        res = self.models.dispatch(model_id, "GET", key=self.admin_key)
        return _snapshot(res)

    def train(
        self,
        parameters: Union[TrainingParameters, Mapping[str, Any]],
        wait: bool = True,
        *,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> TrainingOutcome:
        snapshot = self.submit(parameters)
        if not wait:
            return TrainingOutcome(snapshot, TrainingState.SUBMITTED)
        return self.wait(snapshot, cancel=cancel, deadline=deadline)

    def wait(
        self,
        snapshot: ModelSnapshot,
        *,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> TrainingOutcome:
        """
        Poll until `snapshot`'s model reaches a terminal status.

        `deadline` is a wall-clock limit in seconds measured on the clock;
        `cancel` stops the loop at the next wait. Both return the latest
        descriptor rather than raising.
        """
        started = self.clock.monotonic()
        polls = 0
        while True:
            if snapshot.is_completed:
                LOGGER.info("Training complete for model %s after %d polls", snapshot.id, polls)
                return TrainingOutcome(snapshot, TrainingState.COMPLETED, polls)
            if snapshot.is_terminal:
                LOGGER.warning(
                    "Training for model %s ended with status %s: %s",
                    snapshot.id, snapshot.status, snapshot.status_message,
                )
                return TrainingOutcome(snapshot, TrainingState.FAILED, polls)

            delay = self.poll_interval
            if deadline is not None:
                remaining = deadline - (self.clock.monotonic() - started)
                if remaining <= 0:
                    return self._timed_out(snapshot, polls, "deadline reached")
                delay = min(delay, remaining)
            if polls >= self.max_polls:
                return self._timed_out(snapshot, polls, "poll budget exhausted")

            if self.clock.wait(delay, cancel):
                LOGGER.info("Stopped waiting for model %s: cancelled", snapshot.id)
                return TrainingOutcome(snapshot, TrainingState.CANCELLED, polls)

            snapshot = self.fetch_status(snapshot.id)
            polls += 1
            LOGGER.debug("Poll %d for model %s: status=%s", polls, snapshot.id, snapshot.status)

    def _timed_out(self, snapshot: ModelSnapshot, polls: int, reason: str) -> TrainingOutcome:
        LOGGER.warning("Timed out waiting for model %s (%s, last status=%s)", snapshot.id, reason, snapshot.status)
        warnings.warn(
            f"Timed out waiting for model training to complete ({reason}, last status {snapshot.status})",
            TrainingTimeout,
            stacklevel=3,
        )
        return TrainingOutcome(snapshot, TrainingState.TIMED_OUT, polls)
