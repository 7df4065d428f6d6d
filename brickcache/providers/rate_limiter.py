from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ..errors import Aborted


class TokenBucketRateLimiter:
    """Thread-safe token bucket: ``rate`` tokens/second, at most ``burst`` banked."""

    def __init__(
        self,
        rate: float = 1.0,
        burst: int = 5,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got: {rate}")
        if burst < 1:
            raise ValueError(f"burst must be >= 1, got: {burst}")
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last
        if elapsed > 0:
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            self._last = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self, abort: Optional[threading.Event] = None) -> None:
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / self.rate
            if abort is None:
                time.sleep(wait)
            elif abort.wait(wait):
                raise Aborted("rate-limited fetch aborted by caller")
