from __future__ import annotations

import threading
import time
from typing import Any, Dict, Optional

import requests

from ..errors import Aborted, Unavailable
from .rate_limiter import TokenBucketRateLimiter

RETRY_STATUSES = (429, 500, 502, 503, 504)


def check_abort(abort: Optional[threading.Event]) -> None:
    if abort is not None and abort.is_set():
        raise Aborted("fetch aborted by caller")


def wait_or_abort(seconds: float, abort: Optional[threading.Event]) -> None:
    if seconds <= 0:
        check_abort(abort)
        return
    if abort is None:
        time.sleep(seconds)
        return
    if abort.wait(seconds):
        raise Aborted("fetch aborted by caller")


class HttpFetcher:
    """GET with per-call timeout, backoff on 429/5xx and caller abort.

    Non-2xx after the last try raises ``Unavailable`` carrying the status code.
    A response that arrives after the abort signal is dropped.
    """

    def __init__(
        self,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout_s: float = 10.0,
        max_tries: int = 3,
        backoff_s: float = 1.0,
        max_backoff_s: float = 12.0,
        session: Optional[Any] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
    ):
        self.headers = dict(headers or {})
        self.timeout_s = timeout_s
        self.max_tries = max(1, int(max_tries))
        self.backoff_s = backoff_s
        self.max_backoff_s = max_backoff_s
        self.session = session if session is not None else requests.Session()
        self.rate_limiter = rate_limiter

    def _backoff(self, attempt: int) -> float:
        return min(self.max_backoff_s, self.backoff_s * (2.0 ** (attempt - 1)))

    def _retry_after(self, r: Any) -> Optional[float]:
        raw = (getattr(r, "headers", None) or {}).get("Retry-After")
        if raw is None:
            return None
        try:
            return min(self.max_backoff_s, max(0.0, float(raw)))
        except ValueError:
            return None

    def get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        abort: Optional[threading.Event] = None,
    ) -> Any:
        merged = dict(self.headers)
        if headers:
            merged.update(headers)

        last_err: Optional[Exception] = None
        last_status: Optional[int] = None
        for attempt in range(1, self.max_tries + 1):
            check_abort(abort)
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(abort)
            try:
                r = self.session.get(url, params=params, headers=merged, timeout=self.timeout_s)
            except requests.RequestException as e:
                last_err = e
                if attempt < self.max_tries:
                    wait_or_abort(self._backoff(attempt), abort)
                continue

            check_abort(abort)
            if r.status_code in RETRY_STATUSES:
                last_status = r.status_code
                if attempt < self.max_tries:
                    delay = self._retry_after(r)
                    wait_or_abort(self._backoff(attempt) if delay is None else delay, abort)
                continue
            if not 200 <= r.status_code < 300:
                raise Unavailable(f"GET {url} returned HTTP {r.status_code}", status_code=r.status_code)
            return r

        raise Unavailable(
            f"Failed to fetch {url} after {self.max_tries} tries",
            status_code=last_status,
        ) from last_err

    def get_text(self, url: str, **kwargs: Any) -> str:
        return self.get(url, **kwargs).text

    def get_json(self, url: str, **kwargs: Any) -> Any:
        r = self.get(url, **kwargs)
        try:
            return r.json()
        except ValueError as e:
            raise Unavailable(f"GET {url} returned a non-JSON body") from e
