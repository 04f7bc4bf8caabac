"""
Supervised background tasks.

Work started from a synchronous callback (e.g. a manual offset nudge) is submitted here
instead of being fired and forgotten. Each task returns a `Future`; failures are logged
and kept in `failures` so callers and tests can observe them.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TaskSupervisor:
    def __init__(self, *, max_workers: int = 1, name: str = "fogmap"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self.failures: list[BaseException] = []

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                logger.error("Task %s failed", label, exc_info=(type(exc), exc, exc.__traceback__))
                with self._lock:
                    self.failures.append(exc)

        future.add_done_callback(_done)
        return future

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
