"""
Registry Credentials

Resolves per-registry credentials from environment configuration.
Used by the consolidated registry query (GitHub Packages API) and by the
OCI client when a token endpoint challenge is followed.

Credentials that fail with 401 are disabled for the rest of the process:
environment variables cannot change at runtime, so a bad token stays bad and
retrying it only hammers the token endpoint.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Set

from config.settings import RegistryConfig

logger = logging.getLogger(__name__)

# GHCR accepts any username with token auth
GHCR_USERNAME = "token"

DOCKERHUB = "dockerhub"
GHCR = "ghcr"

_disabled_registries: Set[str] = set()


@dataclass(frozen=True)
class RegistryCredentials:
    username: str
    token: str


def is_docker_hub(image_name: str) -> bool:
    """
    Check if an image name refers to Docker Hub.

    Examples:
        nginx → True
        library/nginx → True
        docker.io/user/app → True
        ghcr.io/user/app → False
    """
    if "/" not in image_name:
        return True

    first_part = image_name.split("/", 1)[0]

    # Explicit registry host
    if "." in first_part or ":" in first_part:
        return first_part in ("docker.io", "registry-1.docker.io")

    return True


def is_ghcr(image_name: str) -> bool:
    """Check if an image name refers to GitHub Container Registry."""
    return image_name.startswith("ghcr.io/")


def _dockerhub_credentials() -> Optional[RegistryCredentials]:
    if DOCKERHUB in _disabled_registries:
        return None
    pair = RegistryConfig.dockerhub_credentials()
    if pair:
        username, token = pair
        return RegistryCredentials(username=username, token=token)
    return None


def _ghcr_credentials() -> Optional[RegistryCredentials]:
    if GHCR in _disabled_registries:
        return None
    token = RegistryConfig.ghcr_token()
    if token:
        return RegistryCredentials(username=GHCR_USERNAME, token=token)
    return None


def get_registry_credentials(image_name: str) -> Optional[RegistryCredentials]:
    """
    Get credentials for the registry an image lives on.

    Args:
        image_name: Full image reference (e.g., "nginx:1.25", "ghcr.io/user/app:latest")

    Returns:
        RegistryCredentials if configured and not disabled, None otherwise
    """
    if is_docker_hub(image_name):
        creds = _dockerhub_credentials()
        if creds:
            return creds

    if is_ghcr(image_name):
        return _ghcr_credentials()

    return None


def get_credentials_for_token_endpoint(token_url: str) -> Optional[RegistryCredentials]:
    """
    Get credentials for a token-issuing URL from a WWW-Authenticate challenge.

    Examples:
        https://auth.docker.io/token → Docker Hub credentials
        https://ghcr.io/token → GHCR credentials
    """
    if "docker" in token_url:
        creds = _dockerhub_credentials()
        if creds:
            return creds

    if "ghcr.io" in token_url:
        return _ghcr_credentials()

    return None


def registry_kind_for_token_endpoint(token_url: str) -> Optional[str]:
    """Return the credential group a token endpoint belongs to, if any."""
    if "docker" in token_url:
        return DOCKERHUB
    if "ghcr.io" in token_url:
        return GHCR
    return None


def disable_registry_credentials(registry: str):
    """
    Stop using credentials for a registry for the rest of this process.

    Idempotent; only the first call logs.
    """
    if registry in _disabled_registries:
        return
    _disabled_registries.add(registry)
    logger.warning(
        f"Credentials for {registry} were rejected (401), "
        f"continuing unauthenticated for the rest of this session"
    )


def is_registry_disabled(registry: str) -> bool:
    return registry in _disabled_registries


def reset_disabled_registries():
    """Re-enable all registries. Intended for tests."""
    _disabled_registries.clear()
