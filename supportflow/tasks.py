"""Threaded runner for best-effort side effects."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Simple wrapper around :class:`ThreadPoolExecutor` for fire-and-forget work.

    Failures are logged and swallowed inside the worker: a task can never raise
    into the code that submitted it, and its future always resolves to ``None``
    when the task failed.
    """

    def __init__(self, max_workers: int = 4):
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="supportflow-task"
        )

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``fn`` and return its future."""

        def _run() -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception:
                logger.exception("Background task %s failed", name)
                return None

        return self.executor.submit(_run)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


class InlineTaskRunner(BackgroundTaskRunner):
    """Runs tasks synchronously in the caller's thread (tests, CLI)."""

    def __init__(self) -> None:
        self.executor = None  # type: ignore[assignment]

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception:
            logger.exception("Background task %s failed", name)
            future.set_result(None)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None
