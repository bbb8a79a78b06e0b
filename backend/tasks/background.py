"""
Background task list.

Tasks are the observable side of long-running operations (project and
container updates, update-all sweeps): status, progress text, streamed
output lines and a cancel hook. The owning operation mutates its task;
subscribers (e.g. a WebSocket broadcaster) are notified of every change.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    DISCONNECTED = "disconnected"


@dataclass
class BackgroundTask:
    """
    One long-running operation as seen by the UI.

    Terminal once status leaves RUNNING (DISCONNECTED resolves to COMPLETE
    or ERROR after the reconnect attempt). Hidden tasks are not shown yet.
    """
    id: str
    type: str
    label: str
    status: TaskStatus = TaskStatus.RUNNING
    progress: Optional[str] = None
    output: List[str] = field(default_factory=list)
    result: Any = None
    error: Optional[str] = None
    cancel: Optional[Callable[[], None]] = None
    hidden: bool = False
    total: Optional[int] = None
    current: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETE, TaskStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "status": self.status.value,
            "progress": self.progress,
            "output": list(self.output),
            "result": self.result,
            "error": self.error,
            "cancellable": self.cancel is not None,
            "hidden": self.hidden,
            "total": self.total,
            "current": self.current,
        }


TaskListener = Callable[[BackgroundTask], None]


class TaskList:
    """Ordered collection of background tasks with change listeners."""

    def __init__(self):
        self._tasks: Dict[str, BackgroundTask] = {}
        self._listeners: List[TaskListener] = []

    def subscribe(self, listener: TaskListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: TaskListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, task: BackgroundTask):
        for listener in list(self._listeners):
            try:
                listener(task)
            except Exception as e:
                logger.error(f"TaskList: Error in listener: {e}", exc_info=True)

    def add(self, task: BackgroundTask) -> BackgroundTask:
        self._tasks[task.id] = task
        self._notify(task)
        return task

    def update(self, task_id: str, **changes) -> Optional[BackgroundTask]:
        """
        Apply field changes to a task.

        Returns:
            Updated task, or None if it was already removed
        """
        task = self._tasks.get(task_id)
        if task is None:
            return None
        updated = replace(task, **changes)
        self._tasks[task_id] = updated
        self._notify(updated)
        return updated

    def append_output(self, task_id: str, lines: List[str]):
        task = self._tasks.get(task_id)
        if task is None or not lines:
            return
        self.update(task_id, output=[*task.output, *lines])

    def remove(self, task_id: str):
        self._tasks.pop(task_id, None)

    def get(self, task_id: str) -> Optional[BackgroundTask]:
        return self._tasks.get(task_id)

    def all(self, include_hidden: bool = False) -> List[BackgroundTask]:
        return [t for t in self._tasks.values() if include_hidden or not t.hidden]

    def __len__(self) -> int:
        return len(self._tasks)
