"""Fire-and-forget background work with an isolated error boundary.

Analytics writes and IP lookups are submitted here instead of being left as
dangling coroutines. The runner keeps a strong reference to every pending
task (the event loop only holds weak ones), logs any failure from a done
callback, and lets the owner drain outstanding work on shutdown.

Tasks are created with asyncio.create_task, so cancelling the request that
submitted them does not cancel them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundTasks:
    """Tracks submitted tasks until they finish."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule *coro* on the running loop and return its task."""
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every task submitted so far, including ones they submit."""
        while True:
            batch = [task for task in self._pending if not task.done()]
            if not batch:
                return
            _, not_done = await asyncio.wait(batch, timeout=timeout)
            if not_done:
                logger.warning("background_drain_timeout", remaining=len(not_done))
                return
