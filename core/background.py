"""
core/background.py -- Detached fire-and-forget work.

Two side effects run outside the request lifecycle: the confirmation email
after registration and the best-effort last-login touch after login. The
request must never wait on them and their failures must never reach the
caller, so they are submitted here instead of being called inline.

BackgroundWorker wraps a ThreadPoolExecutor. Every submitted callable gets a
done-callback that logs its exception (with traceback) under the operation
tag it was submitted with. Nothing is re-raised.

Lifecycle: created in the api lifespan (or by main.py), shut down on exit with
wait=True so queued emails are not dropped on a clean shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any


class BackgroundWorker:
    """Thread pool for detached side effects with an error-logging sink."""

    def __init__(self, max_workers: int = 2, logger: logging.Logger | None = None) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="authgate-bg")
        self._logger = logger or logging.getLogger("authgate.background")

    def submit(self, op: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        """Schedule fn(*args, **kwargs) and return immediately.

        Returns the Future for callers that want it (tests); production callers
        ignore it. Returns None if the worker is already shut down -- a late
        side effect is dropped with a warning rather than failing the request.
        """
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            self._logger.warning("[%s] background worker is shut down; task dropped", op)
            return None
        future.add_done_callback(lambda f: self._log_failure(op, f))
        return future

    def _log_failure(self, op: str, future: Future) -> None:
        if future.cancelled():
            self._logger.warning("[%s] background task cancelled", op)
            return
        exc = future.exception()
        if exc is not None:
            self._logger.error("[%s] background task failed: %s", op, exc, exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
