"""Registry for detached units of work."""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    """Completion record for one background task"""
    name: str
    ok: bool
    error: str | None = None


class BackgroundTasks:
    """Spawns fire-and-forget tasks and keeps their outcomes.

    Tasks are not cancellable through this registry and are never retried.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.results: dict[str, TaskOutcome] = {}

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Schedule a coroutine on the running loop and return its task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Spawned background task %s", name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        name = task.get_name()
        if task.cancelled():
            self.results[name] = TaskOutcome(name=name, ok=False, error="cancelled")
            logger.warning("Background task %s was cancelled", name)
            return
        error = task.exception()
        if error is None:
            self.results[name] = TaskOutcome(name=name, ok=True)
            return
        self.results[name] = TaskOutcome(name=name, ok=False, error=str(error) or type(error).__name__)
        logger.error("Background task %s failed: %s", name, error, exc_info=error)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no background work is left, including work spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
