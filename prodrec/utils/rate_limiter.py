import threading
import time
from collections import deque
from typing import Callable, Optional


class RateLimiter:
    """Thread-safe sliding window allowing at most `max_calls` per `period` seconds.

    Shared by the worker threads that issue recommendation requests so a large
    batch does not exceed the service's request quota.
    """
    def __init__(
        self,
        max_calls: int,
        period: float = 60.0,
        *,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be positive")
        self.max_calls = max_calls
        self.period = period
        self._now = now
        self._sleep = sleep
        self._calls = deque()
        self._lock = threading.Lock()

    @classmethod
    def per_minute(cls, max_calls: Optional[int]) -> Optional["RateLimiter"]:
        """Build a limiter for `max_calls` requests a minute, or None when unlimited."""
        if not max_calls:
            return None
        return cls(max_calls, 60.0)

    def acquire(self) -> float:
        """
        Block until one more request fits inside the window and record it.
        Returns the total time spent waiting.
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._now()

                # Drop calls outside the rolling window
                while self._calls and (now - self._calls[0]) >= self.period:
                    self._calls.popleft()

                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return waited

                sleep_for = max(0.0, self.period - (now - self._calls[0]))

            self._sleep(sleep_for)
            waited += sleep_for
