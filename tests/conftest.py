import json
import threading
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import pytest

from prodrec.config import ClientConfig
from prodrec.services.endpoint import RecommendationEndpoint

SERVICE_URL = "https://recsvc.example.net"
MODELS_URL = f"{SERVICE_URL}/api/models"
ADMIN_KEY = "admin-key"
REC_KEY = "rec-key"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        if payload is None:
            self.content = b""
        elif isinstance(payload, str):
            self.content = payload.encode("utf-8")
        else:
            self.content = json.dumps(payload).encode("utf-8")

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def json(self):
        return json.loads(self.content)


class FakeSession:
    """Stands in for `requests.Session`: records calls and answers via `handler`.

    `handler(method, path, params, body)` returns either a payload (HTTP 200),
    a `(status, payload)` tuple, or raises.
    """

    def __init__(self, handler: Callable[..., Any]):
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def request(self, method, url, params=None, headers=None, timeout=None, json=None):
        call = {
            "method": method,
            "url": url,
            "path": urlparse(url).path,
            "params": dict(params or {}),
            "headers": dict(headers or {}),
            "timeout": timeout,
            "json": json,
        }
        with self._lock:
            self.calls.append(call)
        result = self.handler(method, call["path"], call["params"], json)
        if isinstance(result, FakeResponse):
            return result
        if isinstance(result, tuple):
            return FakeResponse(*result)
        return FakeResponse(200, result)

    def calls_to(self, method: str, path_suffix: str = "") -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"].endswith(path_suffix)]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.waits: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        self.waits.append(seconds)
        self.now += seconds
        return False


def descriptor(model_id="m1", status="Completed", **extra):
    out = {
        "id": model_id,
        "description": "demo model",
        "creationTime": "2018-03-06T10:22:53.1234567Z",
        "modelStatus": status,
        "modelStatusMessage": "",
        "parameters": {"description": "demo model", "enableUserAffinity": True},
        "statistics": None,
    }
    out.update(extra)
    return out


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return ClientConfig(service_url=SERVICE_URL, admin_key=ADMIN_KEY, rec_key=REC_KEY, max_concurrency=1)


@pytest.fixture
def make_endpoint(config, clock):
    def _make(handler, **overrides):
        session = FakeSession(handler)
        cfg = config.with_overrides(**overrides)
        endpoint = RecommendationEndpoint.from_config(cfg, session=session, clock=clock, confirm=lambda q: True)
        return endpoint, session
    return _make
