from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import requests

from prodrec.config import DEFAULT_TIMEOUT
from prodrec.errors import InvalidInput, NetworkError, ServiceError

LOGGER = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
HTTP_VERBS = ("GET", "PUT", "POST", "DELETE", "HEAD")


def _query_params(options: Optional[Mapping[str, Any]]) -> dict:
    if not options:
        return {}
    return {name: str(value) for name, value in options.items() if value is not None}


def _decode(resp: requests.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class RequestDispatcher:
    """Issues single authenticated calls against one service URL.

    The key is always chosen by the caller: admin operations pass the admin
    key, recommendation queries pass the recommendation key. Non-2xx replies
    raise `ServiceError` and transport failures raise `NetworkError`; nothing
    is retried at this level.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise InvalidInput("A service URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def child(self, path: str) -> "RequestDispatcher":
        """Dispatcher bound to `<base_url>/<path>`, sharing this one's session."""
        return RequestDispatcher(
            f"{self.base_url}/{path.strip('/')}", timeout=self.timeout, session=self.session
        )

    def url_for(self, operation: str = "") -> str:
        operation = operation.strip("/")
        return f"{self.base_url}/{operation}" if operation else self.base_url

    def dispatch(
        self,
        operation: str = "",
        verb: str = "GET",
        *,
        body: Any = None,
        options: Optional[Mapping[str, Any]] = None,
        key: Optional[str] = None,
    ) -> Any:
        verb = verb.upper()
        if verb not in HTTP_VERBS:
            raise InvalidInput(f"Unsupported HTTP verb {verb!r}; expected one of {', '.join(HTTP_VERBS)}")

        url = self.url_for(operation)
        headers = {API_KEY_HEADER: key} if key else {}
        kwargs: dict = {"params": _query_params(options), "headers": headers, "timeout": self.timeout}
        if body is not None:
            kwargs["json"] = body

        LOGGER.debug("%s %s params=%s", verb, url, kwargs["params"])
        try:
            resp = self.session.request(verb, url, **kwargs)
        except requests.RequestException as exc:
            raise NetworkError(f"{verb} {url} failed: {exc}", url=url) from exc

        if not 200 <= resp.status_code < 300:
            LOGGER.warning("%s %s returned HTTP %s", verb, url, resp.status_code)
            raise ServiceError(resp.status_code, _decode(resp), url=url, verb=verb)
        return _decode(resp)
