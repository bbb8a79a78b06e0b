"""
Async wrappers for the blocking Docker SDK.

The docker SDK talks to the daemon over a blocking HTTP client; every call
made from the event loop goes through async_docker_call so it runs on the
default executor instead of stalling other coroutines.
"""

import asyncio
import functools
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def async_docker_call(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run a blocking Docker SDK call in the default thread pool.

    Example:
        image = await async_docker_call(client.images.get, image_id)
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
