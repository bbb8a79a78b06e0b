"""
Version resolution for image digests.

Maps digests to human-readable versions, either directly from a semver-like
tracked tag or from OCI manifest annotations / config labels.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from registries.oci import OciClient
from registries.parse import get_registry_type, parse_image_ref
from registries.tags import (  # noqa: F401 - re-exported
    compare_tag_specificity,
    find_best_semver,
    is_semver_like,
    sort_tags_by_specificity,
)
from registries.types import RegistryType, VersionInfo

logger = logging.getLogger(__name__)


def get_oci_registry_url(registry_type: RegistryType, registry: str) -> Optional[str]:
    """
    OCI Distribution API root for a registry.

    Docker Hub's Distribution API lives on registry-1.docker.io rather than
    docker.io. Unknown registries aren't supported.
    """
    if registry_type == RegistryType.DOCKERHUB:
        return "https://registry-1.docker.io"
    if registry_type in (RegistryType.GHCR, RegistryType.LSCR):
        return f"https://{registry}"
    return None


async def resolve_versions(
    image: str,
    current_digest: Optional[str] = None,
    latest_digest: Optional[str] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> VersionInfo:
    """
    Resolve human-readable versions for an image's current and latest digests.

    If the tracked tag is already semver-like it is used for both versions
    without any network call. Otherwise each digest's manifest is read in
    parallel (2-3 requests per digest).

    Raises:
        aiohttp.ClientError / asyncio.TimeoutError on transport failure
    """
    ref = parse_image_ref(image)

    if is_semver_like(ref.tag):
        return VersionInfo(
            current_digest=current_digest,
            latest_digest=latest_digest,
            current_version=ref.tag,
            latest_version=ref.tag,
        )

    base_url = get_oci_registry_url(get_registry_type(ref.registry), ref.registry)
    if not base_url:
        return VersionInfo(current_digest=current_digest, latest_digest=latest_digest)

    client = OciClient(base_url, session=session)

    async def _version_for(digest: Optional[str]) -> Optional[str]:
        if not digest:
            return None
        return await client.get_version_from_digest(ref.namespace, ref.repository, digest)

    current_version, latest_version = await asyncio.gather(
        _version_for(current_digest),
        _version_for(latest_digest),
    )
    logger.debug(f"Resolved versions for {image}: {current_version} -> {latest_version}")

    return VersionInfo(
        current_digest=current_digest,
        latest_digest=latest_digest,
        current_version=current_version,
        latest_version=latest_version,
    )
