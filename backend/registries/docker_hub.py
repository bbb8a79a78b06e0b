"""
Docker Hub registry client.

Uses the Docker Hub v2 repository API (hub.docker.com), which returns tags
together with per-platform digests, so no manifest probing is needed.
"""

import logging
from typing import Dict, List, Optional

import aiohttp

from registries.errors import error_for_status
from registries.http import open_session, send_request
from registries.types import TagInfo

logger = logging.getLogger(__name__)

DOCKER_HUB_API = "https://hub.docker.com/v2"
MAX_TAGS = 200


def find_platform_digest(images: Optional[List[Dict]]) -> Optional[str]:
    """
    Pick a digest from a tag's image list.

    Prefers linux/amd64, then any linux image, then the first image with a digest.
    """
    if not images:
        return None

    for image in images:
        if image.get("os") == "linux" and image.get("architecture") == "amd64" and image.get("digest"):
            return image["digest"]

    for image in images:
        if image.get("os") == "linux" and image.get("digest"):
            return image["digest"]

    for image in images:
        if image.get("digest"):
            return image["digest"]
    return None


class DockerHubClient:
    """Lists Docker Hub tags with their platform digests."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, base_url: str = DOCKER_HUB_API):
        self._session = session
        self.base_url = base_url

    async def list_tags(self, namespace: str, repository: str) -> List[TagInfo]:
        """
        List tags for a repository, following the `next` cursor.

        Returns:
            Up to ~200 TagInfo entries; empty list if the repository doesn't exist

        Raises:
            RegistryError: any non-OK response other than 404
        """
        tags: List[TagInfo] = []
        url: Optional[str] = f"{self.base_url}/repositories/{namespace}/{repository}/tags?page_size=100"

        async with open_session(self._session) as session:
            while url:
                response = await send_request(session, "GET", url, headers={"Accept": "application/json"})

                if response.status == 404:
                    logger.debug(f"Docker Hub repository {namespace}/{repository} not found")
                    return []
                if not response.ok:
                    raise error_for_status(response.status, f"Docker Hub API error: {response.status}")

                data = response.data or {}
                for tag in data.get("results") or []:
                    digest = find_platform_digest(tag.get("images"))
                    if digest:
                        tags.append(TagInfo(name=tag["name"], digest=digest))

                url = data.get("next")
                if len(tags) >= MAX_TAGS:
                    break

        return tags
