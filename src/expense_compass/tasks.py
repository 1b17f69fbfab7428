"""Detached background tasks.

A spawned task's result is discarded. Its failure is logged and reported to
an optional hook, and never raised into the code that spawned it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .config import DEFAULT_REMOTE_TIMEOUT_SECS


logger = logging.getLogger(__name__)

ErrorHook = Callable[[str, BaseException], None]


class BackgroundTasks:
    """Registry of fire-and-forget tasks with a catch-and-log boundary."""

    def __init__(
        self,
        timeout: float | None = DEFAULT_REMOTE_TIMEOUT_SECS,
        on_error: ErrorHook | None = None,
    ):
        """Initialize the registry.

        Args:
            timeout: Seconds after which a background task is abandoned
                (None disables the bound).
            on_error: Called with (label, exception) after the failure is logged.
        """
        self.timeout = timeout
        self.on_error = on_error
        self.failures = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, label: str, awaitable: Awaitable[Any]) -> asyncio.Task:
        """Run ``awaitable`` detached from the caller."""
        task = asyncio.get_running_loop().create_task(self._run(label, awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, label: str, awaitable: Awaitable[Any]) -> None:
        try:
            if self.timeout is None:
                await awaitable
            else:
                await asyncio.wait_for(awaitable, self.timeout)
            logger.debug("background task %s completed", label)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            if isinstance(e, asyncio.TimeoutError):
                logger.warning("background task %s timed out after %ss", label, self.timeout)
            else:
                logger.warning("background task %s failed: %s", label, e)
            if self.on_error is not None:
                self.on_error(label, e)

    async def wait_idle(self) -> None:
        """Wait until every task spawned so far (and any they spawn) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel outstanding tasks (shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
