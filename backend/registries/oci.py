"""
OCI Distribution API Client

Works with GHCR, lscr.io, Docker Hub's registry-1 endpoint and other
OCI-compliant registries. Handles the anonymous bearer-token flow
(WWW-Authenticate challenge → token endpoint → retry) and reads image
versions from manifest annotations or config labels.
"""

import asyncio
import base64
import logging
import re
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

import aiohttp

from config.settings import AppConfig
from registries.credentials import (
    disable_registry_credentials,
    get_credentials_for_token_endpoint,
    registry_kind_for_token_endpoint,
)
from registries.errors import RegistryRateLimitedError, error_for_status
from registries.http import RegistryResponse, default_timeout, open_session, send_request
from registries.tags import is_semver_like, sort_tags_by_specificity
from registries.types import TagInfo

logger = logging.getLogger(__name__)

OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

# Preference order matters: index digests are what `docker inspect` reports
MANIFEST_ACCEPT = ", ".join([OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST])

VERSION_KEYS = (
    "org.opencontainers.image.version",
    "org.label-schema.version",
    "version",
)

TOKEN_TTL_SECONDS = 5 * 60
MAX_TAG_PAGES = 10
MAX_PROBED_TAGS = 50


class TokenCache:
    """
    Bearer tokens keyed by repository scope.

    Bounded: when full, expired tokens are evicted first, then the oldest.
    """

    MAX_SIZE = 100

    def __init__(self, ttl_seconds: float = TOKEN_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self._tokens: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._ttl = ttl_seconds
        self._clock = clock

    def get(self, scope: str) -> Optional[str]:
        entry = self._tokens.get(scope)
        if entry is None:
            return None
        token, expires_at = entry
        if expires_at > self._clock():
            return token
        del self._tokens[scope]
        return None

    def set(self, scope: str, token: str):
        self._tokens.pop(scope, None)
        if len(self._tokens) >= self.MAX_SIZE:
            self._evict_expired()
            while len(self._tokens) >= self.MAX_SIZE:
                oldest, _ = self._tokens.popitem(last=False)
                logger.debug(f"Token cache full, evicted oldest scope {oldest}")
        self._tokens[scope] = (token, self._clock() + self._ttl)

    def _evict_expired(self):
        now = self._clock()
        expired = [scope for scope, (_, expires_at) in self._tokens.items() if expires_at <= now]
        for scope in expired:
            del self._tokens[scope]

    def clear(self):
        self._tokens.clear()

    def __len__(self) -> int:
        return len(self._tokens)


# Shared across OciClient instances, one writer per event loop
_token_cache = TokenCache()


def get_token_cache() -> TokenCache:
    return _token_cache


def parse_www_authenticate(header: Optional[str]) -> Optional[Dict[str, str]]:
    """
    Parse a Bearer challenge.

    Example:
        'Bearer realm="https://ghcr.io/token",service="ghcr.io",scope="repository:user/app:pull"'
        → {"realm": "https://ghcr.io/token", "service": "ghcr.io", "scope": "repository:user/app:pull"}

    Returns:
        Dict of challenge parameters, or None if not a Bearer challenge with a realm
    """
    if not header or not header.lower().startswith("bearer "):
        return None

    params = dict(re.findall(r'(\w+)="([^"]*)"', header[7:]))
    if "realm" not in params:
        logger.warning("WWW-Authenticate challenge missing 'realm' parameter")
        return None
    return params


def _basic_auth_header(username: str, token: str) -> str:
    encoded = base64.b64encode(f"{username}:{token}".encode()).decode()
    return f"Basic {encoded}"


def _find_version(values: Optional[Dict[str, str]]) -> Optional[str]:
    if not values:
        return None
    for key in VERSION_KEYS:
        if values.get(key):
            return values[key]
    return None


def _select_platform_manifest(manifests: List[Dict]) -> Optional[Dict]:
    """Pick linux/amd64 from an index, falling back to the first real platform."""
    candidates = [
        m for m in manifests
        if m.get("digest") and (m.get("platform") or {}).get("os") != "unknown"
    ]
    for m in candidates:
        platform = m.get("platform") or {}
        if platform.get("os") == "linux" and platform.get("architecture") == "amd64":
            return m
    return candidates[0] if candidates else None


class OciClient:
    """
    Client for one OCI Distribution v2 registry.

    Args:
        base_url: Registry API root (e.g., "https://ghcr.io")
        session: Optional shared aiohttp session; a short-lived one is opened per call otherwise
        token_cache: Token cache override (defaults to the process-wide cache)
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        token_cache: Optional[TokenCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._tokens = token_cache if token_cache is not None else _token_cache

    async def fetch_with_auth(
        self,
        url: str,
        scope: str,
        method: str = "GET",
        accept: str = "application/json",
    ) -> RegistryResponse:
        """
        Request a registry URL, following a bearer challenge at most once.

        Args:
            url: Full registry URL
            scope: Repository path ("namespace/repository") used as token cache key
            method: HTTP method (GET or HEAD)
            accept: Accept header value

        Returns:
            RegistryResponse of the final attempt (a second 401 is returned as-is)
        """
        async with open_session(self._session) as session:
            headers = {"Accept": accept}
            cached = self._tokens.get(scope)
            if cached:
                headers["Authorization"] = f"Bearer {cached}"

            response = await send_request(session, method, url, headers=headers)
            if response.status != 401:
                return response

            token = await self._fetch_token(session, response.header("www-authenticate"), scope)
            if not token:
                return response

            logger.debug(f"Retrying {url} with bearer token")
            return await send_request(
                session, method, url,
                headers={"Accept": accept, "Authorization": f"Bearer {token}"},
            )

    async def _fetch_token(
        self,
        session: aiohttp.ClientSession,
        challenge: Optional[str],
        scope: str,
    ) -> Optional[str]:
        """
        Obtain a bearer token from the challenge's realm.

        Basic credentials are attached when configured to raise rate limits.
        If the token endpoint rejects them they are disabled for the session
        and the request is repeated anonymously.
        """
        params = parse_www_authenticate(challenge)
        if not params:
            return None

        realm = params["realm"]
        query = {"scope": params.get("scope") or f"repository:{scope}:pull"}
        if params.get("service"):
            query["service"] = params["service"]

        creds = get_credentials_for_token_endpoint(realm)
        headers = {}
        if creds:
            headers["Authorization"] = _basic_auth_header(creds.username, creds.token)

        timeout = default_timeout(AppConfig.TOKEN_TIMEOUT)
        try:
            response = await send_request(session, "GET", realm, headers=headers, params=query, timeout=timeout)
            if response.status == 401 and creds:
                kind = registry_kind_for_token_endpoint(realm)
                if kind:
                    disable_registry_credentials(kind)
                response = await send_request(session, "GET", realm, params=query, timeout=timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to get token from {realm}: {e}")
            return None

        if not response.ok or not isinstance(response.data, dict):
            logger.warning(f"Token request to {realm} failed with status {response.status}")
            return None

        token = response.data.get("token") or response.data.get("access_token")
        if not token:
            logger.error(f"Token endpoint {realm} returned {response.status} but no token in response")
            return None

        self._tokens.set(scope, token)
        return token

    async def get_digest_for_tag(self, namespace: str, repository: str, tag: str) -> Optional[str]:
        """
        Resolve a tag to its manifest digest with a HEAD request.

        Returns:
            docker-content-digest header value, or None on a non-OK response

        Raises:
            RegistryRateLimitedError: registry answered 429
        """
        name = f"{namespace}/{repository}"
        response = await self.fetch_with_auth(
            f"{self.base_url}/v2/{name}/manifests/{tag}", name,
            method="HEAD", accept=MANIFEST_ACCEPT,
        )
        if response.status == 429:
            raise RegistryRateLimitedError(f"Rate limited resolving {name}:{tag}", 429)
        if not response.ok:
            logger.debug(f"Manifest HEAD for {name}:{tag} returned {response.status}")
            return None
        return response.header("docker-content-digest")

    async def get_version_from_digest(self, namespace: str, repository: str, digest: str) -> Optional[str]:
        """
        Read a human-readable version for a digest.

        Looks at, in order: top-level manifest annotations, each sub-manifest's
        annotations (for an index), then the config blob labels of the
        linux/amd64 (or first) platform manifest.

        Returns:
            Version string, or None when nothing is published at any level
        """
        name = f"{namespace}/{repository}"
        manifest = await self._get_manifest(name, digest)
        if not manifest:
            return None

        version = _find_version(manifest.get("annotations"))
        if version:
            return version

        sub_manifests = manifest.get("manifests")
        if sub_manifests:
            for sub in sub_manifests:
                version = _find_version(sub.get("annotations"))
                if version:
                    return version

            platform_desc = _select_platform_manifest(sub_manifests)
            if not platform_desc:
                return None
            manifest = await self._get_manifest(name, platform_desc["digest"])
            if not manifest:
                return None
            version = _find_version(manifest.get("annotations"))
            if version:
                return version

        config_digest = (manifest.get("config") or {}).get("digest")
        if not config_digest:
            return None

        response = await self.fetch_with_auth(f"{self.base_url}/v2/{name}/blobs/{config_digest}", name)
        if not response.ok or not isinstance(response.data, dict):
            logger.debug(f"Config blob {config_digest[:19]} for {name} returned {response.status}")
            return None

        labels = (response.data.get("config") or {}).get("Labels")
        return _find_version(labels)

    async def _get_manifest(self, name: str, reference: str) -> Optional[Dict]:
        response = await self.fetch_with_auth(
            f"{self.base_url}/v2/{name}/manifests/{reference}", name,
            accept=MANIFEST_ACCEPT,
        )
        if not response.ok or not isinstance(response.data, dict):
            logger.debug(f"Manifest {reference[:19]} for {name} returned {response.status}")
            return None
        return response.data

    async def list_tags(self, namespace: str, repository: str) -> List[TagInfo]:
        """
        List semver-like tags with their digests (slow path).

        Pages through tags/list (Link header, at most 10 pages), keeps the 50
        most specific semver tags and probes each manifest individually.
        """
        name = f"{namespace}/{repository}"
        url: Optional[str] = f"{self.base_url}/v2/{name}/tags/list"
        all_tags: List[str] = []
        pages = 0

        while url and pages < MAX_TAG_PAGES:
            pages += 1
            response = await self.fetch_with_auth(url, name)
            if response.status in (401, 403):
                logger.warning(f"Access denied listing tags for {name}")
                return []
            if response.status == 404:
                return []
            if not response.ok:
                raise error_for_status(response.status, f"OCI API error listing {name}: {response.status}")
            all_tags.extend((response.data or {}).get("tags") or [])
            url = self._next_page_url(response.header("link"))

        candidates = sort_tags_by_specificity(t for t in all_tags if is_semver_like(t))[:MAX_PROBED_TAGS]

        tag_infos = []
        for tag in candidates:
            try:
                digest = await self.get_digest_for_tag(namespace, repository, tag)
            except RegistryRateLimitedError:
                logger.warning(f"Rate limited while probing tags for {name}, returning partial list")
                break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"Skipping tag {tag} for {name}: {e}")
                continue
            if digest:
                tag_infos.append(TagInfo(name=tag, digest=digest))
        return tag_infos

    def _next_page_url(self, link_header: Optional[str]) -> Optional[str]:
        next_url = parse_link_next(link_header)
        if next_url and next_url.startswith("/"):
            return f"{self.base_url}{next_url}"
        return next_url


def parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Extract the rel="next" URL from an RFC 5988 Link header."""
    if not link_header:
        return None
    match = re.search(r'<([^>]+)>;\s*rel="next"', link_header)
    return match.group(1) if match else None
