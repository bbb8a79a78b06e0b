"""
Project and container update operations.

Both stream their progress from the Compoza API (pull / up / container
update endpoints) and clear the update cache for the affected images once
done, since the local digests have changed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from tasks.runner import BackgroundOperation, OperationCallbacks
from tasks.sse import OperationError, consume_output_stream, consume_sse_stream
from updates.cache import UpdateCache
from utils.image_name import normalize_image_name

logger = logging.getLogger(__name__)

RUNNING_STATUSES = ("running", "partial")


@dataclass
class UpdateProjectArgs:
    project_name: str
    rebuild: bool = False


@dataclass
class UpdateProjectResult:
    project_name: str
    images: List[str] = field(default_factory=list)
    restarted: bool = False


@dataclass
class UpdateContainerArgs:
    container_id: str
    container_name: str


async def fetch_api(session: aiohttp.ClientSession, url: str) -> Any:
    """
    GET an API endpoint and unwrap its {data, error} envelope.

    Raises:
        OperationError: the envelope carried an error
    """
    async with session.get(url) as response:
        payload = await response.json(content_type=None)
    if isinstance(payload, dict) and payload.get("error"):
        raise OperationError(payload["error"])
    return payload.get("data") if isinstance(payload, dict) else None


def is_project_running(project: Optional[Dict[str, Any]]) -> bool:
    return bool(project) and project.get("status") in RUNNING_STATUSES


def _clear_images(cache: UpdateCache, images: Optional[List[str]]):
    if images:
        cache.clear_cached_updates([normalize_image_name(i) for i in images])
    else:
        cache.clear_cached_updates()


def make_project_update_operation(
    session: aiohttp.ClientSession,
    base_url: str,
    cache: UpdateCache,
) -> BackgroundOperation[UpdateProjectArgs, UpdateProjectResult]:
    """
    Pull a project's images, then recreate its containers if it was running.

    Args:
        session: aiohttp session for API calls
        base_url: Compoza API root (e.g., "http://localhost:3000")
        cache: Update cache cleared for the project's images afterwards
    """
    base_url = base_url.rstrip("/")

    async def execute(args: UpdateProjectArgs, cb: OperationCallbacks) -> UpdateProjectResult:
        project_url = f"{base_url}/api/projects/{quote(args.project_name, safe='')}"

        cb.set_progress("Checking status...")
        project = await fetch_api(session, project_url)
        was_running = is_project_running(project)
        images = [s["image"] for s in (project or {}).get("services") or [] if s.get("image")]

        cb.token.raise_if_cancelled()
        cb.set_progress("Pulling images...")
        await consume_output_stream(session, f"{project_url}/pull", cb.append_output)

        if was_running:
            cb.token.raise_if_cancelled()
            cb.set_progress("Restarting...")
            await consume_output_stream(
                session, f"{project_url}/up", cb.append_output, body={"build": args.rebuild}
            )

        cb.set_progress("Updated and restarted" if was_running else "Updated")
        return UpdateProjectResult(project_name=args.project_name, images=images, restarted=was_running)

    async def on_success(result: Optional[UpdateProjectResult], args: UpdateProjectArgs):
        _clear_images(cache, result.images if result else None)

    async def on_error(error: BaseException, args: UpdateProjectArgs):
        # Pull may have succeeded before up failed
        cache.clear_cached_updates()

    async def on_reconnected(args: UpdateProjectArgs):
        cache.clear_cached_updates()

    return BackgroundOperation(
        type="update-project",
        get_label=lambda args: f"Updating {args.project_name}",
        execute=execute,
        initial_progress="Checking status...",
        on_success=on_success,
        on_error=on_error,
        on_reconnected=on_reconnected,
    )


def make_container_update_operation(
    session: aiohttp.ClientSession,
    base_url: str,
    cache: UpdateCache,
) -> BackgroundOperation[UpdateContainerArgs, Dict[str, Any]]:
    """Pull and recreate a single container via its update stream."""
    base_url = base_url.rstrip("/")

    async def execute(args: UpdateContainerArgs, cb: OperationCallbacks) -> Optional[Dict[str, Any]]:
        update_result: Optional[Dict[str, Any]] = None
        stream_error: Optional[str] = None

        def on_event(event: Dict[str, Any]):
            nonlocal update_result, stream_error
            event_type = event.get("type")
            if event_type == "output" and event.get("data"):
                cb.append_output([event["data"]])
            elif event_type == "done":
                update_result = event.get("result") or {}
                cb.set_progress("Updated and restarted" if update_result.get("restarted") else "Updated")
            elif event_type == "error":
                stream_error = event.get("message") or "Update failed"

        await consume_sse_stream(
            session,
            f"{base_url}/api/containers/{quote(args.container_id, safe='')}/update",
            on_event,
        )
        if stream_error:
            raise OperationError(stream_error)
        return update_result

    async def on_success(result: Optional[Dict[str, Any]], args: UpdateContainerArgs):
        image = (result or {}).get("image")
        _clear_images(cache, [image] if image else None)

    async def on_error(error: BaseException, args: UpdateContainerArgs):
        cache.clear_cached_updates()

    return BackgroundOperation(
        type="update-container",
        get_label=lambda args: f"Updating {args.container_name}",
        execute=execute,
        initial_progress="Pulling image...",
        on_success=on_success,
        on_error=on_error,
    )
