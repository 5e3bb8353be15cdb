from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from prodrec.errors import InvalidInput

ENV_PREFIX = "PRODREC_"

DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_POLLS = 1000
DEFAULT_STATUS_RETRIES = 3
DEFAULT_MAX_CONCURRENCY = 4


class ClientConfig(BaseModel):
    """Connection and behaviour settings shared by every request the client makes."""

    service_url: Optional[str] = None
    admin_key: Optional[str] = None
    rec_key: Optional[str] = None

    timeout: float = Field(DEFAULT_TIMEOUT, gt=0)
    poll_interval: float = Field(DEFAULT_POLL_INTERVAL, ge=0)
    max_polls: int = Field(DEFAULT_MAX_POLLS, ge=0)
    status_retries: int = Field(DEFAULT_STATUS_RETRIES, ge=1)
    max_concurrency: int = Field(DEFAULT_MAX_CONCURRENCY, ge=1)
    max_calls_per_minute: Optional[int] = Field(None, ge=1)

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "ClientConfig":
        """Read `PRODREC_*` variables; explicit keyword overrides win over the environment."""
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw not in (None, ""):
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as exc:
            raise InvalidInput(f"Invalid client configuration: {exc}") from exc

    def with_overrides(self, **overrides) -> "ClientConfig":
        update = {k: v for k, v in overrides.items() if v is not None}
        if not update:
            return self
        try:
            return ClientConfig(**{**self.model_dump(), **update})
        except ValidationError as exc:
            raise InvalidInput(f"Invalid client configuration: {exc}") from exc
