"""
Shared pytest fixtures for Compoza tests.

Fixtures provided:
- fake_session: In-memory stand-in for aiohttp.ClientSession with canned responses
- clock: Controllable time source for cache and token TTL tests
- update_cache: UpdateCache driven by the test clock
- mock_engine: AsyncMock Docker Engine collaborator
- reset_registry_state (autouse): clears credentials, token cache and env between tests

Registry and API traffic never leaves the process: FakeSession records every
request and answers from responses registered per (method, url).
"""

import json
import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import aiohttp
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from registries.credentials import reset_disabled_registries
from registries.oci import get_token_cache
from updates.cache import UpdateCache
from utils.self_project import reset_self_project_cache


class FakeContent:
    """Mimics aiohttp StreamReader.iter_any() over pre-split byte chunks."""

    def __init__(self, chunks: List[bytes]):
        self._chunks = chunks

    async def iter_any(self):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    """Response usable as `async with session.get(...) as response`."""

    def __init__(
        self,
        status: int = 200,
        json_data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
        chunks: Optional[List[bytes]] = None,
    ):
        self.status = status
        self.headers = dict(headers or {})
        self._json = json_data
        self._text = text
        self.content = FakeContent(chunks or [])

    async def json(self, content_type="application/json"):
        if self._json is None and self._text is not None:
            return json.loads(self._text)
        return self._json

    async def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._json) if self._json is not None else ""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class RecordedCall:
    def __init__(self, method: str, url: str, kwargs: Dict[str, Any]):
        self.method = method
        self.url = url
        self.headers = kwargs.get("headers") or {}
        self.params = kwargs.get("params") or {}
        self.json = kwargs.get("json")

    def __repr__(self):
        return f"<{self.method} {self.url}>"


class FakeSession:
    """
    Subset of aiohttp.ClientSession used by registry clients and operations.

    Responses registered for a route are served in order; the last one
    repeats. An Exception registered as a response is raised instead.
    Unregistered routes fail like an unreachable host.
    """

    def __init__(self):
        self._routes: Dict[tuple, List[Any]] = {}
        self.calls: List[RecordedCall] = []

    def add(self, method: str, url: str, *responses):
        self._routes.setdefault((method.upper(), url), []).extend(responses)
        return self

    def calls_to(self, url_part: str, method: Optional[str] = None) -> List[RecordedCall]:
        return [
            c for c in self.calls
            if url_part in c.url and (method is None or c.method == method.upper())
        ]

    def request(self, method: str, url: str, **kwargs):
        method = method.upper()
        self.calls.append(RecordedCall(method, url, kwargs))

        queue = self._routes.get((method, url)) or self._routes.get((method, url.split("?", 1)[0]))
        if not queue:
            raise aiohttp.ClientConnectionError(f"No fake route for {method} {url}")

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def head(self, url: str, **kwargs):
        return self.request("HEAD", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)


class FakeClock:
    """Callable epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def sse(*events: Dict[str, Any]) -> bytes:
    """Encode events the way operation endpoints stream them."""
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def update_cache(clock):
    return UpdateCache(ttl=3600, recheck_interval=300, clock=clock)


@pytest.fixture
def mock_engine():
    """
    Docker Engine collaborator with no local images and no distribution data.

    Tests override return values per case.
    """
    engine = AsyncMock()
    engine.inspect_image = AsyncMock(return_value={"RepoDigests": []})
    engine.list_images = AsyncMock(return_value=[])
    engine.get_image_distribution = AsyncMock(return_value=None)
    return engine


@pytest.fixture(autouse=True)
def reset_registry_state(monkeypatch):
    """Isolate module-level registry state and credentials between tests."""
    for var in ("DOCKERHUB_USERNAME", "DOCKERHUB_TOKEN", "GHCR_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    reset_disabled_registries()
    get_token_cache().clear()
    reset_self_project_cache()
    yield
    reset_disabled_registries()
    get_token_cache().clear()
