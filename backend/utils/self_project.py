"""
Self-hosting project detection.

Finds the Docker Compose project this application runs in, so batch updates
can leave it for last: updating it recreates the container serving the
update stream.
"""

import logging
import re
import socket
from pathlib import Path
from typing import Optional

import docker
from docker.errors import DockerException

from config.settings import AppConfig
from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"

_CONTAINER_ID = re.compile(r"[0-9a-f]{64}")
_MOUNTINFO_CONTAINERS = re.compile(r"/docker/containers/([0-9a-f]{64})")
_MOUNTINFO_DOCKER = re.compile(r"/docker/([0-9a-f]{64})")

# Detection runs once per process
_detection_attempted = False
_self_project_name: Optional[str] = None
_self_image_name: Optional[str] = None


def _read(path: str) -> Optional[str]:
    try:
        return Path(path).read_text()
    except OSError:
        return None


def get_own_container_id(proc_root: str = "/proc") -> Optional[str]:
    """
    Container ID (or name) of the container this process runs in.

    Tries /proc/self/cgroup (cgroup v1), then /proc/self/mountinfo (cgroup v2),
    then the hostname, which Docker sets to the short ID or container_name.
    """
    cgroup = _read(f"{proc_root}/self/cgroup")
    if cgroup:
        match = _CONTAINER_ID.search(cgroup)
        if match:
            return match.group(0)

    mountinfo = _read(f"{proc_root}/self/mountinfo")
    if mountinfo:
        match = _MOUNTINFO_CONTAINERS.search(mountinfo) or _MOUNTINFO_DOCKER.search(mountinfo)
        if match:
            return match.group(1)

    return socket.gethostname() or None


async def get_self_project_name(client: Optional[docker.DockerClient] = None) -> Optional[str]:
    """
    Compose project name of this application's own container.

    Returns:
        Project name, or None when not running in Docker or not under Compose
    """
    global _detection_attempted, _self_project_name, _self_image_name

    if _detection_attempted:
        return _self_project_name
    _detection_attempted = True

    if not Path("/.dockerenv").exists():
        logger.debug("Not running in Docker, no self project")
        return None

    container_id = get_own_container_id()
    if not container_id:
        return None

    try:
        client = client or docker.from_env()
        container = await async_docker_call(client.containers.get, container_id)
    except DockerException as e:
        logger.warning(f"Could not inspect own container {container_id[:12]}: {e}")
        return None

    config = container.attrs.get("Config") or {}
    _self_image_name = config.get("Image")
    _self_project_name = (config.get("Labels") or {}).get(COMPOSE_PROJECT_LABEL)

    if _self_project_name:
        logger.info(f"Running inside compose project '{_self_project_name}'")
    return _self_project_name


def get_self_image_name() -> str:
    """
    Image of this application's container.

    Detected by get_self_project_name(); falls back to COMPOZA_IMAGE when
    detection hasn't run or found nothing.
    """
    return _self_image_name or AppConfig.SELF_IMAGE


def reset_self_project_cache():
    """Forget the detected project. Intended for tests."""
    global _detection_attempted, _self_project_name, _self_image_name
    _detection_attempted = False
    _self_project_name = None
    _self_image_name = None
