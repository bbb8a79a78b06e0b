"""
Disconnect / reconnect handling for streaming operations.

Updating the project that hosts this application recreates the container
serving the stream, so the connection drops mid-operation. That is usually
success, not failure: wait for the server to come back and report the task
as completed.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aiohttp

from tasks.background import TaskList, TaskStatus

logger = logging.getLogger(__name__)

RECONNECT_ATTEMPTS = 30
RECONNECT_INTERVAL = 1.0  # seconds
HEALTH_TIMEOUT = 2.0  # seconds

_NETWORK_HINTS = ("failed to fetch", "network", "connection", "econnrefused", "econnreset")


def is_network_error(error: BaseException) -> bool:
    """
    Classify an exception as a lost connection rather than an operation failure.

    Examples:
        aiohttp.ServerDisconnectedError() → True
        ConnectionResetError() → True
        OperationError("Failed to pull images") → False
    """
    if isinstance(error, (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(hint in message for hint in _NETWORK_HINTS)


async def wait_for_reconnection(
    session: aiohttp.ClientSession,
    health_url: str,
    on_progress: Optional[Callable[[int], None]] = None,
    max_attempts: int = RECONNECT_ATTEMPTS,
    interval: float = RECONNECT_INTERVAL,
) -> bool:
    """
    Poll the health endpoint until it answers OK.

    Args:
        session: aiohttp session
        health_url: Health check URL
        on_progress: Called with the 1-based attempt number before each poll
        max_attempts: Polls before giving up
        interval: Seconds between polls

    Returns:
        True once the server answers, False after max_attempts
    """
    for attempt in range(1, max_attempts + 1):
        if on_progress:
            on_progress(attempt)
        try:
            async with session.get(health_url, timeout=aiohttp.ClientTimeout(total=HEALTH_TIMEOUT)) as response:
                if response.status < 400:
                    logger.info(f"Server reachable again after {attempt} attempt(s)")
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError):
            pass  # Still down
        await asyncio.sleep(interval)

    logger.warning(f"Server did not come back after {max_attempts} attempts")
    return False


async def handle_disconnection(
    task_id: str,
    tasks: TaskList,
    session: aiohttp.ClientSession,
    health_url: str,
    on_reconnected: Optional[Callable[[], Awaitable[None]]] = None,
    max_attempts: int = RECONNECT_ATTEMPTS,
    interval: float = RECONNECT_INTERVAL,
) -> bool:
    """
    Mark a task disconnected and resolve it once the server is back (or not).

    Returns:
        True if reconnected (task COMPLETE), False if given up (task ERROR)
    """
    tasks.update(task_id, status=TaskStatus.DISCONNECTED, progress="Reconnecting...", cancel=None, hidden=False)

    reconnected = await wait_for_reconnection(
        session,
        health_url,
        on_progress=lambda n: tasks.update(task_id, progress=f"Reconnecting... ({n}s)"),
        max_attempts=max_attempts,
        interval=interval,
    )

    if reconnected:
        tasks.update(task_id, status=TaskStatus.COMPLETE, progress="Completed (reconnected)")
        if on_reconnected:
            try:
                await on_reconnected()
            except Exception as e:
                logger.warning(f"Post-reconnect hook failed for task {task_id}: {e}")
    else:
        tasks.update(task_id, status=TaskStatus.ERROR, error="Connection lost")

    return reconnected
