"""
Shared types for registry clients.

These dataclasses are the internal shapes every registry's wire format is
decoded into, so callers never probe raw JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class RegistryType(str, Enum):
    """Known registry families."""
    DOCKERHUB = "dockerhub"
    GHCR = "ghcr"
    LSCR = "lscr"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ImageRef:
    """
    Parsed Docker image reference.

    A reference with a digest is pinned and is never update-checked.
    """
    registry: str
    namespace: str
    repository: str
    tag: str
    digest: Optional[str] = None

    @property
    def is_pinned(self) -> bool:
        return self.digest is not None

    @property
    def name(self) -> str:
        """Repository path used by the Distribution API (namespace/repository)."""
        return f"{self.namespace}/{self.repository}"


@dataclass(frozen=True)
class TagInfo:
    """A tag and the digest it currently resolves to."""
    name: str
    digest: str


@dataclass
class VersionInfo:
    """Digests paired with their human-readable versions, when known."""
    current_digest: Optional[str] = None
    latest_digest: Optional[str] = None
    current_version: Optional[str] = None
    latest_version: Optional[str] = None


@dataclass
class RegistryQueryResult:
    """Outcome of the consolidated tag-list query for one image."""
    update_available: bool
    latest_digest: Optional[str] = None
    current_version: Optional[str] = None
    latest_version: Optional[str] = None
    matched_tags: List[str] = field(default_factory=list)
