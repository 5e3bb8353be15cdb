import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Optional


DEFAULT_LOGGER_NAME = "prodrec"

_CONFIGURED_LOGGERS: set[str] = set()


def _json_enabled() -> bool:
    return os.getenv("LOG_JSON", "1") not in ("0", "false", "False")


def get_logger(name: Optional[str] = None, stream: Optional[IO[str]] = None) -> logging.Logger:
    """Return a logger with a single stream handler, stdout unless `stream` is given.

    Respects env var LOG_LEVEL (default INFO) and LOG_FORMAT.
    Idempotent per logger name to avoid duplicate handlers; a later call
    with an explicit `stream` only redirects the existing handler.
    """
    logger_name = name or DEFAULT_LOGGER_NAME
    logger = logging.getLogger(logger_name)

    if logger_name in _CONFIGURED_LOGGERS:
        if stream is not None:
            for handler in logger.handlers:
                if isinstance(handler, logging.StreamHandler):
                    handler.setStream(stream)
        return logger

    level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_str, logging.INFO))

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    if _json_enabled():
        fmt = os.getenv("LOG_FORMAT") or "%(levelname)s:     %(message)s"
    else:
        fmt = os.getenv("LOG_FORMAT") or "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    handler.setFormatter(logging.Formatter(fmt))

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED_LOGGERS.add(logger_name)
    return logger


class Logger:
    """Lifecycle event logger for model operations.

    Each call records an event name plus keyword context, either as one JSON
    line (``LOG_JSON=1``, the default) or as ``event | k=v`` text. Handler setup
    is left to `get_logger`, so library events flow to the ``prodrec`` logger.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or DEFAULT_LOGGER_NAME
        self._log = logging.getLogger(self.name)
        self._json = _json_enabled()

    def _render(self, event: str, kv: dict) -> str:
        if self._json:
            payload = {"ts": datetime.now(timezone.utc).isoformat(), "event": event}
            payload.update(kv)
            return json.dumps(payload, ensure_ascii=False, default=str)
        if not kv:
            return event
        return f"{event} | " + " ".join(f"{k}={v}" for k, v in kv.items())

    def log(self, level: int, event: str, **kv) -> None:
        if self._log.isEnabledFor(level):
            self._log.log(level, self._render(event, kv))

    def info(self, event: str, **kv):
        self.log(logging.INFO, event, **kv)

    def warn(self, event: str, **kv):
        self.log(logging.WARNING, event, **kv)

    warning = warn

    def error(self, event: str, **kv):
        self.log(logging.ERROR, event, **kv)

    def debug(self, event: str, **kv):
        self.log(logging.DEBUG, event, **kv)
