"""
Image Update Checker

Determines, for every image used by running containers, whether the registry
has published a newer image under the same tag, and attaches human-readable
current/latest versions.

Workflow per image:
1. Digest-pinned references are never outdated, cached as checked
2. Fresh cache entries are returned as-is; stale ones are returned and
   refreshed in the background
3. Local digests are collected from the images the containers actually run
4. The consolidated registry query answers everything in 1-2 calls when it can
5. Otherwise the latest digest comes from the Engine's distribution endpoint,
   then the OCI registry directly, and versions are resolved asynchronously
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import aiohttp

from config.settings import AppConfig
from registries.errors import RegistryError, RegistryRateLimitedError
from registries.oci import OciClient
from registries.parse import get_registry_type, parse_image_ref
from registries.query import query_registry
from registries.types import ImageRef, RegistryType
from registries.version import get_oci_registry_url, resolve_versions
from updates.cache import UpdateCache, get_update_cache
from updates.engine import DockerEngine, DockerSDKEngine, EngineError
from updates.types import CachedUpdate, ImageUpdateInfo, UpdateStatus, VersionStatus
from utils.background import spawn_detached
from utils.image_name import extract_source_url, normalize_image_name, strip_tag

logger = logging.getLogger(__name__)

ImageIds = Union[Iterable[str], str, None]


def _as_id_set(image_ids: ImageIds) -> Set[str]:
    if image_ids is None:
        return set()
    if isinstance(image_ids, str):
        return {image_ids}
    return {i for i in image_ids if i}


def _pick_repo_digest(repo_digests: Optional[List[str]], repo_base: str) -> Optional[str]:
    """
    Choose the digest for this repository from an image's RepoDigests.

    An image pulled under several names carries one entry per name; prefer
    the one whose repository matches, else the first.

    Example:
        ["nginx@sha256:abc", "mirror/nginx@sha256:def"], "nginx" → "sha256:abc"
    """
    if not repo_digests:
        return None
    for entry in repo_digests:
        if entry.startswith(f"{repo_base}@"):
            return entry.split("@", 1)[1]
    first = repo_digests[0]
    return first.split("@", 1)[1] if "@" in first else None


def _image_labels(attrs: Dict[str, Any]) -> Optional[Dict[str, str]]:
    # Image list entries carry Labels at the top level, inspect results under Config
    return attrs.get("Labels") or (attrs.get("Config") or {}).get("Labels")


class ImageUpdateChecker:
    """
    Orchestrates cache, local image inspection, registry queries and version
    resolution into one result per image.

    Args:
        cache: Update cache (defaults to the process-wide instance)
        engine: Docker Engine collaborator (defaults to the docker SDK)
        session: Optional shared aiohttp session for registry calls
    """

    def __init__(
        self,
        cache: Optional[UpdateCache] = None,
        engine: Optional[DockerEngine] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cache = cache if cache is not None else get_update_cache()
        self.engine = engine if engine is not None else DockerSDKEngine()
        self.session = session
        self._inflight: Dict[str, asyncio.Future] = {}

    async def check_image_updates(self, images: Mapping[str, ImageIds]) -> List[ImageUpdateInfo]:
        """
        Check a batch of images for updates.

        Args:
            images: Image name → local image ID(s) of the containers running it

        Returns:
            One ImageUpdateInfo per image. Cached results are flagged from_cache.
        """
        requested: Dict[str, Set[str]] = {}
        for raw_name, image_ids in images.items():
            name = normalize_image_name(raw_name)
            requested.setdefault(name, set()).update(_as_id_set(image_ids))

        results: List[ImageUpdateInfo] = []
        uncached: List[Tuple[str, Set[str]]] = []
        stale: List[Tuple[str, Set[str]]] = []

        for image_name, image_ids in requested.items():
            cached = self.cache.get_cached_update(image_name)
            if cached is None:
                uncached.append((image_name, image_ids))
                continue

            results.append(ImageUpdateInfo.from_cached(cached))
            if self.cache.should_check_image(image_name):
                stale.append((image_name, image_ids))

        if uncached:
            results.extend(await self._check_images(uncached))

        if stale:
            logger.debug(f"Refreshing {len(stale)} stale update checks in background")
            spawn_detached(self._check_images(stale), name=f"update-refresh:{len(stale)}")

        return results

    async def _check_images(self, images: List[Tuple[str, Set[str]]]) -> List[ImageUpdateInfo]:
        """Check images concurrently; one failure never aborts the others."""
        settled = await asyncio.gather(
            *(self.check_single_image(name, ids) for name, ids in images),
            return_exceptions=True,
        )

        results = []
        for (image_name, _), outcome in zip(images, settled):
            if isinstance(outcome, BaseException):
                logger.error(f"Update check for {image_name} raised: {outcome}")
                continue
            results.append(outcome)
        return results

    async def check_single_image(self, image_name: str, image_ids: Optional[Set[str]] = None) -> ImageUpdateInfo:
        """
        Check one image against its registry.

        Args:
            image_name: Image reference (normalized here if needed)
            image_ids: Local image IDs of the containers running this image

        Returns:
            ImageUpdateInfo; status "error" if anything unexpected failed
        """
        image_name = normalize_image_name(image_name)
        ref = parse_image_ref(image_name)

        # Pinned references are locked to one version on purpose
        if ref.is_pinned:
            entry = CachedUpdate(
                image=image_name,
                update_available=False,
                status=UpdateStatus.CHECKED,
                current_digest=ref.digest,
            )
            self.cache.set_cached_update(image_name, entry)
            return ImageUpdateInfo.from_cached(entry, from_cache=False)

        if not self.cache.should_check_image(image_name):
            cached = self.cache.get_cached_update(image_name)
            if cached is not None:
                return ImageUpdateInfo.from_cached(cached)

        # Join a lookup already running for this image
        inflight = self._inflight.get(image_name)
        if inflight is not None:
            return await asyncio.shield(inflight)

        if self.cache.is_check_pending(image_name):
            # Another checker sharing this cache owns the lookup
            logger.debug(f"Check for {image_name} already pending elsewhere")
            return ImageUpdateInfo.from_cached(
                CachedUpdate(image=image_name, update_available=False, status=UpdateStatus.UNKNOWN),
                from_cache=False,
            )

        task = asyncio.ensure_future(self._run_check(image_name, ref, image_ids or set()))
        self._inflight[image_name] = task

        def forget(done: asyncio.Future):
            if self._inflight.get(image_name) is done:
                del self._inflight[image_name]

        task.add_done_callback(forget)
        return await asyncio.shield(task)

    async def _run_check(self, image_name: str, ref: ImageRef, image_ids: Set[str]) -> ImageUpdateInfo:
        self.cache.mark_check_pending(image_name)
        try:
            entry, ttl = await self._check(image_name, ref, image_ids)
            self.cache.set_cached_update(image_name, entry, ttl)

            if entry.version_status == VersionStatus.PENDING:
                spawn_detached(
                    self._resolve_versions(image_name, entry.current_digest, entry.latest_digest),
                    name=f"resolve-versions:{image_name}",
                )
            return ImageUpdateInfo.from_cached(entry, from_cache=False)

        except Exception as e:
            logger.error(f"Failed to check image {image_name}: {e}", exc_info=True)
            entry = CachedUpdate(image=image_name, update_available=False, status=UpdateStatus.ERROR)
            self.cache.set_cached_update(image_name, entry)
            return ImageUpdateInfo.from_cached(entry, from_cache=False)

        finally:
            self.cache.mark_check_complete(image_name)

    async def _check(
        self,
        image_name: str,
        ref: ImageRef,
        image_ids: Set[str],
    ) -> Tuple[CachedUpdate, Optional[float]]:
        """Build the cache entry for one image and its TTL override, if any."""
        digests, source_url = await self._discover_local_digests(image_name, image_ids)
        current_digest = digests[0] if digests else None
        known_digests = set(digests)

        # Consolidated query: tag list with digests in 1-2 calls
        if current_digest and get_registry_type(ref.registry) != RegistryType.UNKNOWN:
            query_result = await query_registry(image_name, current_digest, session=self.session)
            if query_result is not None:
                latest = query_result.latest_digest
                up_to_date = latest in known_digests
                entry = CachedUpdate(
                    image=image_name,
                    update_available=bool(latest) and not up_to_date,
                    status=UpdateStatus.CHECKED if latest else UpdateStatus.UNKNOWN,
                    current_digest=latest if up_to_date else current_digest,
                    latest_digest=latest,
                    current_version=query_result.latest_version if up_to_date else query_result.current_version,
                    latest_version=query_result.latest_version,
                    version_status=VersionStatus.RESOLVED,
                    matched_tags=query_result.matched_tags,
                    source_url=source_url,
                )
                return entry, None

        latest_digest, ttl = await self._get_latest_digest(image_name, ref)

        if not latest_digest:
            entry = CachedUpdate(
                image=image_name,
                update_available=False,
                status=UpdateStatus.UNKNOWN,
                current_digest=current_digest,
            )
        elif not current_digest:
            # Nothing local to compare against (locally built or digest stripped)
            entry = CachedUpdate(
                image=image_name,
                update_available=True,
                status=UpdateStatus.UNKNOWN,
                latest_digest=latest_digest,
            )
        else:
            up_to_date = latest_digest in known_digests
            entry = CachedUpdate(
                image=image_name,
                update_available=not up_to_date,
                status=UpdateStatus.CHECKED,
                current_digest=latest_digest if up_to_date else current_digest,
                latest_digest=latest_digest,
            )

        entry.source_url = source_url
        if entry.current_digest or entry.latest_digest:
            entry.version_status = VersionStatus.PENDING
        return entry, ttl

    async def _discover_local_digests(
        self,
        image_name: str,
        image_ids: Set[str],
    ) -> Tuple[List[str], Optional[str]]:
        """
        Collect the digests of the local images behind this image name.

        Containers can run different images under the same tag (some already
        recreated on a newer pull), so every unique digest is kept, in
        discovery order.

        Returns:
            (digests, source_url)
        """
        repo_base = strip_tag(image_name)
        digests: List[str] = []
        source_url: Optional[str] = None

        def add(digest: Optional[str]):
            if digest and digest not in digests:
                digests.append(digest)

        # Primary: the images containers are actually running
        for image_id in sorted(image_ids):
            try:
                attrs = await self.engine.inspect_image(image_id)
            except EngineError as e:
                # Image may have been pruned since the container started
                logger.debug(f"Could not inspect {image_id[:19]} for {image_name}: {e}")
                continue
            add(_pick_repo_digest(attrs.get("RepoDigests"), repo_base))
            source_url = source_url or extract_source_url(_image_labels(attrs), image_name)

        if digests:
            return digests, source_url

        local_images = await self.engine.list_images(image_name)
        if not local_images:
            return digests, source_url

        source_url = source_url or extract_source_url(_image_labels(local_images[0]), image_name)
        add(_pick_repo_digest(local_images[0].get("RepoDigests"), repo_base))

        if not digests:
            try:
                attrs = await self.engine.inspect_image(image_name)
                add(_pick_repo_digest(attrs.get("RepoDigests"), repo_base))
            except EngineError as e:
                logger.debug(f"Could not inspect {image_name}: {e}")

        return digests, source_url

    async def _get_latest_digest(self, image_name: str, ref: ImageRef) -> Tuple[Optional[str], Optional[float]]:
        """
        Resolve the tag's current remote digest.

        Tries the Engine's distribution endpoint first (uses the Engine's own
        registry auth), then the OCI registry directly.

        Returns:
            (digest or None, cache TTL override or None). A 429 anywhere
            widens the TTL to back off.
        """
        rate_limited = False
        backoff = float(AppConfig.RATE_LIMIT_TTL)

        try:
            digest = await self.engine.get_image_distribution(image_name)
            if digest:
                return digest, None
        except EngineError as e:
            if e.status_code == 429:
                rate_limited = True
                logger.info(f"Distribution API rate limited for {image_name}")
            elif e.status_code not in (401, 403, 404):
                logger.warning(f"Distribution API failed for {image_name} (status {e.status_code})")

        base_url = get_oci_registry_url(get_registry_type(ref.registry), ref.registry)
        if not base_url:
            return None, backoff if rate_limited else None

        client = OciClient(base_url, session=self.session)
        try:
            digest = await client.get_digest_for_tag(ref.namespace, ref.repository, ref.tag)
        except RegistryRateLimitedError:
            logger.info(f"Registry rate limited for {image_name}, backing off for {int(backoff)}s")
            return None, backoff
        except (aiohttp.ClientError, asyncio.TimeoutError, RegistryError) as e:
            logger.warning(f"OCI digest lookup failed for {image_name}: {e}")
            return None, backoff if rate_limited else None

        if digest:
            return digest, None
        return None, backoff if rate_limited else None

    async def _resolve_versions(
        self,
        image_name: str,
        current_digest: Optional[str],
        latest_digest: Optional[str],
    ):
        """Resolve versions for a pending entry and patch only its version fields."""
        try:
            info = await resolve_versions(image_name, current_digest, latest_digest, session=self.session)
        except (aiohttp.ClientError, asyncio.TimeoutError, RegistryError) as e:
            logger.debug(f"Version resolution failed for {image_name}: {e}")
            self.cache.mark_version_resolution_failed(image_name)
            return

        self.cache.update_cached_versions(image_name, info.current_version, info.latest_version)
