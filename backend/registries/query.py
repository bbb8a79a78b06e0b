"""
Consolidated Registry Query

Resolves update status, versions and matched tags for an image from a single
tag→digest listing instead of probing every tag's manifest. Supports Docker
Hub (hub.docker.com tags API) and GHCR / lscr.io (GitHub Packages API).

Returns None whenever the fast path can't answer, and the caller falls back to
the Distribution API + OCI manifest lookups.
"""

import logging
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

import aiohttp

from registries.credentials import GHCR, disable_registry_credentials, get_registry_credentials
from registries.docker_hub import DOCKER_HUB_API, find_platform_digest
from registries.http import open_session, send_request
from registries.oci import parse_link_next
from registries.parse import get_registry_type, parse_image_ref
from registries.tags import find_best_semver, sort_tags_by_specificity
from registries.types import ImageRef, RegistryQueryResult, RegistryType, TagInfo

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"

DOCKER_HUB_MAX_PAGES = 2
GHCR_MAX_PAGES = 10


async def query_registry(
    image_name: str,
    current_digest: str,
    session: Optional[aiohttp.ClientSession] = None,
) -> Optional[RegistryQueryResult]:
    """
    Try to resolve an image's update status with one registry-specific listing.

    Args:
        image_name: Image reference (e.g., "nginx:latest", "ghcr.io/owner/app:main")
        current_digest: Digest of the locally running image
        session: Optional shared aiohttp session

    Returns:
        RegistryQueryResult, or None if the registry is unsupported, the tracked
        tag wasn't found, or the query failed
    """
    ref = parse_image_ref(image_name)
    registry_type = get_registry_type(ref.registry)

    try:
        async with open_session(session) as http:
            if registry_type == RegistryType.DOCKERHUB:
                return await _query_docker_hub(http, ref, current_digest)
            if registry_type in (RegistryType.GHCR, RegistryType.LSCR):
                return await _query_ghcr(http, ref, current_digest)
            return None
    except Exception as e:
        logger.warning(f"Registry query failed for {image_name}: {e}")
        return None


# --- Docker Hub ---

def _parse_docker_hub_page(data: Dict) -> List[TagInfo]:
    """
    Decode one page of the Docker Hub tags API.

    The top-level digest is the manifest-list digest (what `docker pull`
    records in RepoDigests); platform digests are a fallback for
    single-arch images that lack one.
    """
    tags = []
    for tag in data.get("results") or []:
        digest = tag.get("digest") or find_platform_digest(tag.get("images"))
        if tag.get("name") and digest:
            tags.append(TagInfo(name=tag["name"], digest=digest))
    return tags


async def _fetch_docker_hub_tags(session: aiohttp.ClientSession, namespace: str, repository: str) -> List[TagInfo]:
    tags: List[TagInfo] = []
    url: Optional[str] = (
        f"{DOCKER_HUB_API}/repositories/{namespace}/{repository}/tags"
        f"?page_size=100&ordering=last_updated"
    )
    pages = 0

    while url and pages < DOCKER_HUB_MAX_PAGES:
        pages += 1
        response = await send_request(session, "GET", url, headers={"Accept": "application/json"})
        if not response.ok:
            logger.debug(f"Docker Hub tags for {namespace}/{repository} returned {response.status}")
            return []

        data = response.data or {}
        tags.extend(_parse_docker_hub_page(data))
        url = data.get("next")

    return tags


async def _query_docker_hub(
    session: aiohttp.ClientSession,
    ref: ImageRef,
    current_digest: str,
) -> Optional[RegistryQueryResult]:
    tags = await _fetch_docker_hub_tags(session, ref.namespace, ref.repository)
    if not tags:
        return None
    return build_result(tags, ref.tag, current_digest)


# --- GHCR / lscr.io ---

def _parse_ghcr_versions(data) -> List[TagInfo]:
    """
    Decode one page of GitHub Packages container versions.

    Each version's `name` is its digest; untagged versions are skipped.
    """
    tags = []
    if not isinstance(data, list):
        return tags
    for version in data:
        digest = version.get("name")
        container = (version.get("metadata") or {}).get("container") or {}
        for tag in container.get("tags") or []:
            if digest:
                tags.append(TagInfo(name=tag, digest=digest))
    return tags


async def _fetch_ghcr_tag_pages(
    session: aiohttp.ClientSession,
    start_url: str,
    token: str,
    tracked_tag: str,
    current_digest: str,
) -> Optional[List[TagInfo]]:
    """
    Page through one Packages API endpoint.

    Stops early once both the tracked tag and the current digest have been
    seen. This can under-populate tags for the latest digest when they span
    later pages; it is an accepted approximation.

    Returns:
        Tags gathered so far, or None on 404 (caller tries the next endpoint)
    """
    headers = {
        "Accept": "application/vnd.github.v3+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    tags: List[TagInfo] = []
    url: Optional[str] = start_url
    pages = 0
    found_tracked_tag = False
    found_current_digest = False

    while url and pages < GHCR_MAX_PAGES:
        pages += 1
        response = await send_request(session, "GET", url, headers=headers)

        if response.status == 404:
            return None
        if response.status == 401:
            disable_registry_credentials(GHCR)
            return tags
        if not response.ok:
            logger.debug(f"GitHub Packages API returned {response.status} for {url}")
            return tags

        page_tags = _parse_ghcr_versions(response.data)
        tags.extend(page_tags)
        found_tracked_tag = found_tracked_tag or any(t.name == tracked_tag for t in page_tags)
        found_current_digest = found_current_digest or any(t.digest == current_digest for t in page_tags)

        if found_tracked_tag and found_current_digest:
            break

        url = parse_link_next(response.header("link"))

    return tags


async def _fetch_ghcr_tags(
    session: aiohttp.ClientSession,
    namespace: str,
    repository: str,
    token: str,
    tracked_tag: str,
    current_digest: str,
) -> List[TagInfo]:
    """Query /orgs/ first, falling back to /users/ once on 404."""
    encoded_repo = quote(repository, safe="")
    path = f"packages/container/{encoded_repo}/versions?per_page=100"

    tags = await _fetch_ghcr_tag_pages(
        session, f"{GITHUB_API}/orgs/{namespace}/{path}", token, tracked_tag, current_digest
    )
    if tags is None:
        logger.debug(f"No org package for {namespace}/{repository}, trying user endpoint")
        tags = await _fetch_ghcr_tag_pages(
            session, f"{GITHUB_API}/users/{namespace}/{path}", token, tracked_tag, current_digest
        )
    return tags or []


async def _query_ghcr(
    session: aiohttp.ClientSession,
    ref: ImageRef,
    current_digest: str,
) -> Optional[RegistryQueryResult]:
    # The Packages API requires authentication even for public images
    creds = get_registry_credentials(f"ghcr.io/{ref.namespace}/{ref.repository}")
    if not creds:
        return None

    tags = await _fetch_ghcr_tags(session, ref.namespace, ref.repository, creds.token, ref.tag, current_digest)
    if not tags:
        return None
    return build_result(tags, ref.tag, current_digest)


# --- Shared ---

def _tags_at(tags: Iterable[TagInfo], digest: Optional[str]) -> List[str]:
    if not digest:
        return []
    return [t.name for t in tags if t.digest == digest]


def build_result(tags: List[TagInfo], tracked_tag: str, current_digest: str) -> Optional[RegistryQueryResult]:
    """
    Derive the whole update result from a flat tag→digest list.

    Returns:
        RegistryQueryResult, or None if the tracked tag isn't in the list
    """
    latest = next((t for t in tags if t.name == tracked_tag), None)
    if latest is None:
        return None
    latest_digest = latest.digest

    current_tags = _tags_at(tags, current_digest)
    latest_tags = _tags_at(tags, latest_digest)

    # An outdated image's tags have usually moved to the new digest, so show the latest ones
    matched_tags = sort_tags_by_specificity(latest_tags or current_tags)

    return RegistryQueryResult(
        update_available=latest_digest != current_digest,
        latest_digest=latest_digest,
        current_version=find_best_semver(current_tags),
        latest_version=find_best_semver(latest_tags),
        matched_tags=matched_tags,
    )
