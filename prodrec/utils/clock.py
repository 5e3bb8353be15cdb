"""Time source used by the training poll loop.

Polling never calls ``time.sleep`` directly; it asks a clock to wait, which
lets a cancellation token interrupt the wait and lets tests advance time
without real delay.
"""
from __future__ import annotations

import threading
import time
from typing import Optional, Protocol


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        """Wait up to `seconds`; return True if `cancel` was set before or during the wait."""
        ...


class SystemClock:
    """Wall-clock implementation backed by `time.monotonic` and `Event.wait`."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        if cancel is None:
            time.sleep(max(0.0, seconds))
            return False
        return cancel.wait(max(0.0, seconds))
