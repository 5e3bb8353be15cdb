"""Error taxonomy for the recommendations client."""
from __future__ import annotations

from typing import Any, Optional


class ProdRecError(Exception):
    """Base class for every error raised by this package."""


class InvalidInput(ProdRecError, ValueError):
    """Missing or contradictory arguments. Raised before any request is sent."""


class ServiceError(ProdRecError):
    """The service answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any, url: str = "", verb: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        self.verb = verb
        super().__init__(f"{verb} {url} failed with HTTP {status_code}: {body}")


class NetworkError(ProdRecError):
    """Transport failure (connection refused, DNS, timeout, ...)."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        self.url = url
        super().__init__(message)


class MalformedResponse(ProdRecError):
    """The service answered 2xx with a body that does not have the expected shape."""


class TrainingTimeout(UserWarning):
    """Warning category: training polling gave up before the model completed."""
