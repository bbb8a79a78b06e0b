"""
Image reference parsing.

Handles the formats Docker accepts:
    nginx                               → docker.io/library/nginx:latest
    nginx:1.25                          → docker.io/library/nginx:1.25
    user/repo:tag                       → docker.io/user/repo:tag
    ghcr.io/owner/repo:tag
    lscr.io/linuxserver/sonarr:latest
    registry.example.com:5000/repo:tag
    repo:tag@sha256:...                 → pinned
"""

from registries.types import ImageRef, RegistryType

DEFAULT_REGISTRY = "docker.io"
DEFAULT_NAMESPACE = "library"
DEFAULT_TAG = "latest"

_REGISTRY_TYPES = {
    "docker.io": RegistryType.DOCKERHUB,
    "registry.hub.docker.com": RegistryType.DOCKERHUB,
    "ghcr.io": RegistryType.GHCR,
    "lscr.io": RegistryType.LSCR,
}


def _looks_like_registry(segment: str) -> bool:
    """A host has a dot (domain), a colon (port) or is localhost."""
    return "." in segment or ":" in segment or segment == "localhost"


def parse_image_ref(image: str) -> ImageRef:
    """
    Parse a Docker image reference into its components.

    Args:
        image: Raw image string as reported by Docker or compose

    Returns:
        ImageRef with registry/namespace defaults filled in

    Examples:
        parse_image_ref("nginx") → ImageRef("docker.io", "library", "nginx", "latest")
        parse_image_ref("localhost:5000/app") → ImageRef("localhost:5000", "library", "app", "latest")
    """
    registry = DEFAULT_REGISTRY
    namespace = DEFAULT_NAMESPACE
    tag = DEFAULT_TAG
    digest = None

    reference = image

    # Strip digest pin first so its colon is not mistaken for a tag
    digest_index = reference.find("@sha256:")
    if digest_index > 0:
        digest = reference[digest_index + 1:]
        reference = reference[:digest_index]

    # Only a colon after the last slash separates a tag (otherwise it's a port)
    tag_index = reference.rfind(":")
    slash_index = reference.rfind("/")
    if tag_index != -1 and tag_index > slash_index:
        tag = reference[tag_index + 1:]
        reference = reference[:tag_index]

    parts = reference.split("/")

    if len(parts) == 1:
        repository = parts[0]
    elif len(parts) == 2:
        if _looks_like_registry(parts[0]):
            registry = parts[0]
        else:
            namespace = parts[0]
        repository = parts[1]
    else:
        registry = parts[0]
        repository = parts[-1]
        namespace = "/".join(parts[1:-1])

    return ImageRef(
        registry=registry,
        namespace=namespace,
        repository=repository,
        tag=tag,
        digest=digest,
    )


def format_image_ref(ref: ImageRef) -> str:
    """
    Reconstruct an image reference, omitting docker.io/library defaults.

    Examples:
        ImageRef("docker.io", "library", "nginx", "latest") → "nginx:latest"
        ImageRef("ghcr.io", "owner", "repo", "v1.2.3") → "ghcr.io/owner/repo:v1.2.3"
    """
    parts = []

    if ref.registry != DEFAULT_REGISTRY:
        parts.append(ref.registry)

    if ref.namespace != DEFAULT_NAMESPACE or ref.registry != DEFAULT_REGISTRY:
        parts.append(ref.namespace)

    parts.append(ref.repository)

    formatted = f"{'/'.join(parts)}:{ref.tag}"
    if ref.digest:
        formatted = f"{formatted}@{ref.digest}"
    return formatted


def get_registry_type(registry: str) -> RegistryType:
    """Classify a registry hostname (case-insensitive exact match)."""
    return _REGISTRY_TYPES.get(registry.lower(), RegistryType.UNKNOWN)
