"""Background task runner for accepted-then-executed work.

Intake returns as soon as a unit is persisted; execution continues here. Every
task gets an ``on_error`` sink so a failure that escapes the task body still
lands in the dispatch status record rather than only in the log.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[None]]
ErrorSink = Callable[[BaseException], Awaitable[None]]


class TaskRunner:
    """Tracks fire-and-forget tasks so they can be awaited or cancelled on shutdown."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        factory: TaskFactory,
        *,
        name: str,
        delay: float = 0.0,
        on_error: Optional[ErrorSink] = None,
    ) -> asyncio.Task:
        """Schedule ``factory()`` to run after ``delay`` seconds."""

        async def runner() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Background task {name} failed: {e}", exc_info=True)
                if on_error is not None:
                    try:
                        await on_error(e)
                    except Exception as sink_error:
                        logger.error(f"Error sink for {name} failed: {sink_error}")

        task = asyncio.create_task(runner(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until no tasks are pending, including tasks scheduled while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give pending tasks ``timeout`` seconds, then cancel the rest."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} background tasks on shutdown")
            await asyncio.gather(*pending, return_exceptions=True)
