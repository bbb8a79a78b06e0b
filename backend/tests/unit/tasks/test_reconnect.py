"""
Unit tests for disconnect detection and reconnect polling.
"""

from unittest.mock import AsyncMock

import aiohttp
import pytest

from tasks.background import BackgroundTask, TaskList, TaskStatus
from tasks.reconnect import handle_disconnection, is_network_error, wait_for_reconnection
from tasks.sse import OperationError
from tests.conftest import FakeResponse

HEALTH = "http://compoza/api/health"


class TestIsNetworkError:

    @pytest.mark.parametrize("error", [
        aiohttp.ServerDisconnectedError(),
        aiohttp.ClientConnectionError("refused"),
        ConnectionResetError(),
        RuntimeError("read ECONNRESET"),
        RuntimeError("Failed to fetch"),
    ])
    def test_network_errors(self, error):
        assert is_network_error(error)

    @pytest.mark.parametrize("error", [
        OperationError("manifest unknown"),
        ValueError("bad input"),
    ])
    def test_operation_errors(self, error):
        assert not is_network_error(error)


class TestWaitForReconnection:

    @pytest.mark.asyncio
    async def test_polls_until_healthy(self, fake_session):
        fake_session.add(
            "GET", HEALTH,
            aiohttp.ClientConnectionError("refused"),
            FakeResponse(status=503),
            FakeResponse(status=200),
        )
        attempts = []

        ok = await wait_for_reconnection(fake_session, HEALTH, attempts.append, max_attempts=5, interval=0)

        assert ok is True
        assert attempts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_gives_up(self, fake_session):
        ok = await wait_for_reconnection(fake_session, HEALTH, max_attempts=3, interval=0)

        assert ok is False
        assert len(fake_session.calls) == 3


class TestHandleDisconnection:

    @pytest.fixture
    def tasks(self):
        tasks = TaskList()
        tasks.add(BackgroundTask(id="t1", type="update-project", label="Updating web", cancel=lambda: None, hidden=True))
        return tasks

    @pytest.mark.asyncio
    async def test_reconnected_completes_task(self, fake_session, tasks):
        fake_session.add("GET", HEALTH, aiohttp.ClientConnectionError("refused"), FakeResponse(status=200))
        hook = AsyncMock()
        statuses = []
        tasks.subscribe(lambda t: statuses.append((t.status, t.progress)))

        ok = await handle_disconnection("t1", tasks, fake_session, HEALTH, on_reconnected=hook, interval=0)

        assert ok is True
        hook.assert_awaited_once()
        assert statuses[0] == (TaskStatus.DISCONNECTED, "Reconnecting...")
        assert (TaskStatus.DISCONNECTED, "Reconnecting... (2s)") in statuses
        task = tasks.get("t1")
        assert task.status == TaskStatus.COMPLETE
        assert task.progress == "Completed (reconnected)"
        assert task.cancel is None
        assert task.hidden is False

    @pytest.mark.asyncio
    async def test_gives_up_with_error(self, fake_session, tasks):
        hook = AsyncMock()

        ok = await handle_disconnection(
            "t1", tasks, fake_session, HEALTH, on_reconnected=hook, max_attempts=2, interval=0,
        )

        assert ok is False
        hook.assert_not_called()
        assert tasks.get("t1").status == TaskStatus.ERROR
        assert tasks.get("t1").error == "Connection lost"

    @pytest.mark.asyncio
    async def test_hook_failure_is_ignored(self, fake_session, tasks):
        fake_session.add("GET", HEALTH, FakeResponse(status=200))

        ok = await handle_disconnection(
            "t1", tasks, fake_session, HEALTH,
            on_reconnected=AsyncMock(side_effect=RuntimeError("cache gone")), interval=0,
        )

        assert ok is True
        assert tasks.get("t1").status == TaskStatus.COMPLETE
