"""
Background Operation Runner

Runs an async operation as a cancellable, observable background task:

- The task is registered hidden and only becomes visible if the operation is
  still running after 500ms, so quick operations never flash a notification
- The operation body gets callbacks for progress text, output lines and a
  cancellation token
- Cancellation is not failure: the task ends as "Cancelled" and on_error is
  not called
- A dropped connection triggers the reconnect path instead of a hard error
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

import aiohttp

from tasks.background import BackgroundTask, TaskList, TaskStatus
from tasks.reconnect import RECONNECT_ATTEMPTS, RECONNECT_INTERVAL, handle_disconnection, is_network_error

logger = logging.getLogger(__name__)

TArgs = TypeVar("TArgs")
TResult = TypeVar("TResult")

VISIBILITY_DELAY = 0.5  # seconds
CANCELLED_MESSAGE = "Cancelled"


class CancellationToken:
    """Cooperative cancellation flag checked at network call boundaries."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise asyncio.CancelledError()


@dataclass
class OperationCallbacks:
    """Handed to an operation body to report on its task."""
    set_progress: Callable[[str], None]
    append_output: Callable[[List[str]], None]
    token: CancellationToken


@dataclass
class BackgroundOperation(Generic[TArgs, TResult]):
    """
    Configuration of one kind of background operation.

    execute does the work; on_success / on_error are post-hooks whose own
    failures are logged and ignored. on_reconnected runs when the operation
    lost its connection and the server came back.
    """
    type: str
    get_label: Callable[[TArgs], str]
    execute: Callable[[TArgs, OperationCallbacks], Awaitable[Optional[TResult]]]
    initial_progress: Optional[str] = None
    on_success: Optional[Callable[[Optional[TResult], TArgs], Awaitable[None]]] = None
    on_error: Optional[Callable[[BaseException, TArgs], Awaitable[None]]] = None
    on_reconnected: Optional[Callable[[TArgs], Awaitable[None]]] = None
    cancellable: bool = True


class BackgroundOperationRunner(Generic[TArgs, TResult]):
    """
    Executes a BackgroundOperation, tracking each run as a BackgroundTask.

    Args:
        operation: Operation to run
        tasks: Task list the runs are registered in
        session: aiohttp session used for reconnect polling
        health_url: Health endpoint; without it network failures are plain errors
    """

    def __init__(
        self,
        operation: BackgroundOperation[TArgs, TResult],
        tasks: TaskList,
        session: Optional[aiohttp.ClientSession] = None,
        health_url: Optional[str] = None,
        visibility_delay: float = VISIBILITY_DELAY,
        reconnect_attempts: int = RECONNECT_ATTEMPTS,
        reconnect_interval: float = RECONNECT_INTERVAL,
    ):
        self.operation = operation
        self.tasks = tasks
        self.session = session
        self.health_url = health_url
        self.visibility_delay = visibility_delay
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_interval = reconnect_interval
        self._inflight = 0

    @property
    def is_pending(self) -> bool:
        return self._inflight > 0

    async def execute(self, args: TArgs) -> bool:
        """
        Run the operation once.

        Returns:
            True on success (or a successful reconnect), False on failure or cancellation
        """
        self._inflight += 1
        try:
            return await self._run(args)
        finally:
            self._inflight -= 1

    async def _run(self, args: TArgs) -> bool:
        op = self.operation
        task_id = f"{op.type}-{uuid.uuid4().hex[:12]}"
        token = CancellationToken()
        loop = asyncio.get_running_loop()

        callbacks = OperationCallbacks(
            set_progress=lambda msg: self.tasks.update(task_id, progress=msg),
            append_output=lambda lines: self.tasks.append_output(task_id, lines),
            token=token,
        )
        work = asyncio.ensure_future(op.execute(args, callbacks))

        def cancel():
            if token.cancelled:
                return
            token.cancel()
            work.cancel()
            self.tasks.update(task_id, status=TaskStatus.ERROR, error=CANCELLED_MESSAGE, cancel=None)

        self.tasks.add(BackgroundTask(
            id=task_id,
            type=op.type,
            label=op.get_label(args),
            progress=op.initial_progress,
            status=TaskStatus.RUNNING,
            hidden=True,
            cancel=cancel if op.cancellable else None,
        ))

        visibility = loop.call_later(self.visibility_delay, lambda: self.tasks.update(task_id, hidden=False))

        try:
            result = await work
        except asyncio.CancelledError:
            visibility.cancel()
            if token.cancelled:
                logger.info(f"Operation {task_id} cancelled")
                return False
            work.cancel()
            self.tasks.update(task_id, status=TaskStatus.ERROR, error=CANCELLED_MESSAGE, cancel=None)
            raise
        except Exception as e:
            visibility.cancel()
            return await self._handle_failure(task_id, token, e, args)

        visibility.cancel()
        if token.cancelled:
            return False

        self.tasks.update(task_id, status=TaskStatus.COMPLETE, result=result, cancel=None)

        if op.on_success:
            try:
                await op.on_success(result, args)
            except Exception as e:
                logger.warning(f"on_success hook failed for {task_id}: {e}")
        return True

    async def _handle_failure(self, task_id: str, token: CancellationToken, error: Exception, args: Any) -> bool:
        op = self.operation
        if token.cancelled:
            return False

        if is_network_error(error) and self.session is not None and self.health_url:
            logger.info(f"Operation {task_id} lost its connection, waiting for server: {error}")
            reconnected = await handle_disconnection(
                task_id,
                self.tasks,
                self.session,
                self.health_url,
                on_reconnected=(lambda: op.on_reconnected(args)) if op.on_reconnected else None,
                max_attempts=self.reconnect_attempts,
                interval=self.reconnect_interval,
            )
            if reconnected:
                return True
        else:
            logger.error(f"Operation {task_id} failed: {error}")
            self.tasks.update(
                task_id,
                status=TaskStatus.ERROR,
                error=str(error) or "Operation failed",
                cancel=None,
                hidden=False,
            )

        if op.on_error:
            try:
                await op.on_error(error, args)
            except Exception as e:
                logger.warning(f"on_error hook failed for {task_id}: {e}")
        return False
