"""
Detached background tasks.

Fire-and-forget work (stale cache refreshes, version resolution) is spawned
here. The event loop only keeps weak references to tasks, so this module holds
a strong reference until each task finishes, and logs failures nobody else
will ever observe.
"""

import asyncio
import logging
from typing import Coroutine, Set

logger = logging.getLogger(__name__)

_detached_tasks: Set[asyncio.Task] = set()


class DetachedTask:
    """
    Handle for a task no caller awaits.

    Exposes only the name and done-state; completion is not observable by
    the spawner.
    """

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def name(self) -> str:
        return self._task.get_name()

    def done(self) -> bool:
        return self._task.done()


def _on_done(task: asyncio.Task):
    _detached_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background task {task.get_name()} failed: {error}", exc_info=error)


def spawn_detached(coro: Coroutine, name: str) -> DetachedTask:
    """
    Schedule a coroutine on the running loop without awaiting it.

    Args:
        coro: Coroutine to run
        name: Task name used in failure logs

    Returns:
        DetachedTask handle
    """
    task = asyncio.create_task(coro, name=name)
    _detached_tasks.add(task)
    task.add_done_callback(_on_done)
    return DetachedTask(task)


def pending_detached_count() -> int:
    return len(_detached_tasks)


async def drain_detached_tasks():
    """Wait for all detached tasks to finish. Used at shutdown and in tests."""
    while _detached_tasks:
        await asyncio.gather(*list(_detached_tasks), return_exceptions=True)
