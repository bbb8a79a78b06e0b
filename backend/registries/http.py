"""
HTTP plumbing shared by registry clients.

Every registry call reads its body inside the request context and hands back
a RegistryResponse, so connections are always released before callers look
at the result.
"""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from config.settings import AppConfig

logger = logging.getLogger(__name__)


@dataclass
class RegistryResponse:
    """Status, lower-cased headers and decoded JSON body of a registry call."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


def default_timeout(total: Optional[float] = None) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(total=total or AppConfig.REGISTRY_TIMEOUT)


@asynccontextmanager
async def open_session(
    session: Optional[aiohttp.ClientSession] = None
) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield the caller's session, or a short-lived one we own."""
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as owned:
        yield owned


async def send_request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
    timeout: Optional[aiohttp.ClientTimeout] = None,
    read_body: bool = True,
) -> RegistryResponse:
    """
    Perform one request and decode a JSON body on success.

    Transport errors (aiohttp.ClientError, asyncio.TimeoutError) propagate.
    A body that isn't valid JSON is treated as empty.
    """
    kwargs = {"headers": headers or {}, "timeout": timeout or default_timeout()}
    if params:
        kwargs["params"] = params

    async with session.request(method, url, **kwargs) as response:
        result = RegistryResponse(
            status=response.status,
            headers={k.lower(): v for k, v in response.headers.items()},
        )
        if read_body and method != "HEAD" and 200 <= response.status < 300:
            try:
                # Registries serve blobs as octet-stream; skip content-type validation
                result.data = await response.json(content_type=None)
            except (json.JSONDecodeError, ValueError) as e:
                logger.debug(f"Ignoring non-JSON body from {url}: {e}")
        return result
