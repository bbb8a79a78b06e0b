"""
Registries Module

Registry clients and version resolution for image update checks.

Architecture:
- parse_image_ref / format_image_ref: Image reference parsing
- DockerHubClient: Docker Hub v2 tags API
- OciClient: Generic OCI Distribution v2 client with bearer-token flow
- query_registry: Consolidated tag→digest fast path (Docker Hub, GHCR, lscr.io)
- resolve_versions: Digest → human-readable version
"""

from registries.credentials import (
    RegistryCredentials,
    disable_registry_credentials,
    get_credentials_for_token_endpoint,
    get_registry_credentials,
)
from registries.docker_hub import DockerHubClient
from registries.errors import RegistryError, RegistryRateLimitedError
from registries.oci import OciClient
from registries.parse import format_image_ref, get_registry_type, parse_image_ref
from registries.query import query_registry
from registries.types import ImageRef, RegistryQueryResult, RegistryType, TagInfo, VersionInfo
from registries.version import find_best_semver, get_oci_registry_url, is_semver_like, resolve_versions

__all__ = [
    'RegistryCredentials',
    'disable_registry_credentials',
    'get_credentials_for_token_endpoint',
    'get_registry_credentials',
    'DockerHubClient',
    'RegistryError',
    'RegistryRateLimitedError',
    'OciClient',
    'format_image_ref',
    'get_registry_type',
    'parse_image_ref',
    'query_registry',
    'ImageRef',
    'RegistryQueryResult',
    'RegistryType',
    'TagInfo',
    'VersionInfo',
    'find_best_semver',
    'get_oci_registry_url',
    'is_semver_like',
    'resolve_versions',
]
