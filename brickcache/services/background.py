from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from ..logging.logger import JsonlLogger


class BackgroundTasks:
    """Best-effort writes off the request path.

    Failures are never dropped: each one is logged as ``background.error``.
    """

    def __init__(self, logger: JsonlLogger, *, max_workers: int = 2):
        self.logger = logger
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="brickcache-bg")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        fut = self._pool.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(lambda f: self._done(name, f))
        return fut

    def _done(self, name: str, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)
        if fut.cancelled():
            self.logger.log("background.cancelled", task=name)
            return
        exc = fut.exception()
        if exc is not None:
            self.logger.log("background.error", task=name, error_type=type(exc).__name__, error=str(exc))

    def drain(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._pool.shutdown(wait=wait_for_tasks)
