"""
Docker Engine collaborator for update checks.

The checker only needs three read-only calls from the Engine: list local
images by reference, inspect an image, and ask the Engine's distribution
endpoint for a tag's remote digest. DockerSDKEngine implements them over the
docker SDK, running each blocking call in the executor.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import docker
from docker.errors import DockerException

from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Docker Engine call failed; status_code is the HTTP status when known."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DockerEngine(Protocol):
    async def list_images(self, reference: str) -> List[Dict[str, Any]]:
        """Local images matching a reference, as inspect-style attribute dicts."""
        ...

    async def inspect_image(self, image_id: str) -> Dict[str, Any]:
        """Inspect attributes (RepoDigests, Config.Labels, ...) of a local image."""
        ...

    async def get_image_distribution(self, image_name: str) -> Optional[str]:
        """Remote manifest digest for a tag via the Engine's registry auth."""
        ...


def _engine_error(e: DockerException, action: str) -> EngineError:
    return EngineError(f"{action}: {e}", getattr(e, "status_code", None))


class DockerSDKEngine:
    """
    DockerEngine backed by a docker.DockerClient.

    Args:
        client: Docker client; defaults to docker.from_env() on first use
    """

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    async def list_images(self, reference: str) -> List[Dict[str, Any]]:
        try:
            images = await async_docker_call(self.client.images.list, filters={"reference": reference})
        except DockerException as e:
            raise _engine_error(e, f"Failed to list images for {reference}")
        return [image.attrs for image in images]

    async def inspect_image(self, image_id: str) -> Dict[str, Any]:
        try:
            image = await async_docker_call(self.client.images.get, image_id)
        except DockerException as e:
            raise _engine_error(e, f"Failed to inspect image {image_id}")
        return image.attrs

    async def get_image_distribution(self, image_name: str) -> Optional[str]:
        try:
            registry_data = await async_docker_call(self.client.images.get_registry_data, image_name)
        except DockerException as e:
            raise _engine_error(e, f"Distribution lookup failed for {image_name}")
        descriptor = (registry_data.attrs or {}).get("Descriptor") or {}
        return descriptor.get("digest") or registry_data.id
