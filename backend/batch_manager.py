"""
Batch Update Coordinator for Compoza
Runs "update all projects" with a concurrency ceiling, updating the project
that hosts this application last
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from config.settings import AppConfig

logger = logging.getLogger(__name__)

UpdateProjectFn = Callable[[str], Awaitable[bool]]
SelfProjectFn = Callable[[], Awaitable[Optional[str]]]
BatchEventFn = Callable[[Dict[str, Any]], None]


@dataclass
class BatchUpdateSummary:
    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, int]:
        return {"updated": len(self.updated), "failed": len(self.failed)}


class BatchUpdateCoordinator:
    """
    Updates a set of compose projects.

    Non-self projects run through a rolling window of at most max_concurrency
    in-flight updates. The self-hosting project runs alone after all others
    have settled: updating it recreates the container serving this process,
    which would cut off the other updates mid-flight.

    Args:
        update_project: Updates one project, returns True on success
        get_self_project_name: Resolves the project hosting this application
        max_concurrency: In-flight ceiling for non-self projects
        on_event: Optional progress callback (start / complete / error / done events)
    """

    def __init__(
        self,
        update_project: UpdateProjectFn,
        get_self_project_name: SelfProjectFn,
        max_concurrency: int = AppConfig.BATCH_UPDATE_CONCURRENCY,
        on_event: Optional[BatchEventFn] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.update_project = update_project
        self.get_self_project_name = get_self_project_name
        self.max_concurrency = max_concurrency
        self.on_event = on_event

    def _emit(self, event: Dict[str, Any]):
        if not self.on_event:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Error in batch event callback: {e}", exc_info=True)

    async def _run_one(self, name: str, summary: BatchUpdateSummary):
        """Update one project; failures are recorded, never raised."""
        try:
            ok = await self.update_project(name)
        except Exception as e:
            logger.error(f"Update of project {name} failed: {e}")
            summary.failed.append(name)
            self._emit({"type": "error", "project": name, "message": str(e)})
            return

        if ok:
            summary.updated.append(name)
            self._emit({"type": "complete", "project": name})
        else:
            summary.failed.append(name)
            self._emit({"type": "error", "project": name, "message": "Update failed"})

    async def start(self, project_names: List[str]) -> BatchUpdateSummary:
        """
        Update the given projects.

        Returns:
            BatchUpdateSummary with updated / failed project names
        """
        summary = BatchUpdateSummary()
        names = list(dict.fromkeys(project_names))
        if not names:
            self._emit({"type": "done", "summary": summary.to_dict()})
            return summary

        try:
            self_project = await self.get_self_project_name()
        except Exception as e:
            logger.warning(f"Could not determine self project, updating in given order: {e}")
            self_project = None

        others = [n for n in names if n != self_project]
        run_self_last = self_project is not None and self_project in names

        logger.info(
            f"Starting batch update of {len(names)} projects "
            f"(max {self.max_concurrency} concurrent{', self last' if run_self_last else ''})"
        )

        in_flight: Set[asyncio.Task] = set()
        try:
            for index, name in enumerate(others, start=1):
                if len(in_flight) >= self.max_concurrency:
                    _, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                self._emit({"type": "start", "project": name, "total": len(names), "current": index})
                in_flight.add(asyncio.create_task(self._run_one(name, summary)))

            if in_flight:
                await asyncio.wait(in_flight)
                in_flight = set()
        finally:
            for task in in_flight:
                task.cancel()

        if run_self_last:
            self._emit({"type": "start", "project": self_project, "total": len(names), "current": len(names)})
            await self._run_one(self_project, summary)

        logger.info(f"Batch update finished: {len(summary.updated)} updated, {len(summary.failed)} failed")
        self._emit({"type": "done", "summary": summary.to_dict()})
        return summary
