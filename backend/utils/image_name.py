"""
Image name helpers shared by the update checker and update operations.
"""

import logging
from typing import Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

SOURCE_LABELS = (
    "org.opencontainers.image.source",
    "org.label-schema.url",
)


def normalize_image_name(name: str) -> str:
    """
    Strip the docker.io/ prefix Compose v2 adds to container image names.

    Examples:
        docker.io/library/nginx → nginx
        docker.io/linuxserver/sonarr → linuxserver/sonarr
        ghcr.io/foo/bar → ghcr.io/foo/bar (unchanged)
    """
    if name.startswith("docker.io/library/"):
        return name[len("docker.io/library/"):]
    if name.startswith("docker.io/"):
        return name[len("docker.io/"):]
    return name


def strip_tag(image_name: str) -> str:
    """Repository part of an image name (registry ports are preserved)."""
    name = image_name.split("@", 1)[0]
    colon = name.rfind(":")
    if colon > name.rfind("/"):
        return name[:colon]
    return name


def extract_source_url(labels: Optional[Dict[str, str]], image_name: str) -> Optional[str]:
    """
    Source repository URL from image labels, if it belongs to this image.

    Labels are often inherited from base images, so the URL is only accepted
    when its owner matches the image namespace or its repo name overlaps the
    image repository name.

    Examples:
        linuxserver/sonarr + https://github.com/linuxserver/docker-sonarr → accepted
        nginx + https://github.com/nginxinc/docker-nginx → accepted
        myapp + https://github.com/alpine/alpine → rejected
    """
    if not labels:
        return None

    raw = next((labels[key] for key in SOURCE_LABELS if labels.get(key)), None)
    if not raw:
        return None

    parts = strip_tag(image_name).split("/")
    image_repo = parts[-1].lower()
    image_namespace = parts[-2].lower() if len(parts) >= 2 else ""

    try:
        parsed = urlparse(raw)
    except ValueError:
        return raw
    if not parsed.scheme or not parsed.netloc:
        return raw

    path_parts = [p for p in parsed.path.split("/") if p]
    if len(path_parts) < 2:
        return raw

    url_owner = path_parts[0].lower()
    url_repo = path_parts[1].lower()

    if url_owner == image_namespace:
        return raw
    if len(image_repo) >= 3 and image_repo in url_repo:
        return raw

    clean_url_repo = url_repo[len("docker-"):] if url_repo.startswith("docker-") else url_repo
    if len(clean_url_repo) >= 3 and clean_url_repo in image_repo:
        return raw

    logger.debug(f"Ignoring source label {raw} for {image_name} (likely inherited from base image)")
    return None
