"""
Shared types for image update checks.

CachedUpdate is the cache's unit of record; ImageUpdateInfo is what the
checker hands to the API layer.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class UpdateStatus(str, Enum):
    """Outcome of an update check."""
    CHECKED = "checked"
    UNKNOWN = "unknown"  # No remote digest (unsupported registry, private or local-only image)
    ERROR = "error"


class VersionStatus(str, Enum):
    """Progress of asynchronous version resolution."""
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class CachedUpdate:
    """
    Result of one image check as stored in the update cache.

    checked_at / expires_at are epoch seconds and are stamped by the cache
    on write. version_status moves from PENDING to RESOLVED or FAILED
    without touching any other field.
    """
    image: str
    update_available: bool
    status: UpdateStatus
    current_digest: Optional[str] = None
    latest_digest: Optional[str] = None
    current_version: Optional[str] = None
    latest_version: Optional[str] = None
    version_status: Optional[VersionStatus] = None
    matched_tags: List[str] = field(default_factory=list)
    source_url: Optional[str] = None
    checked_at: float = 0.0
    expires_at: float = 0.0

    def stamped(self, checked_at: float, ttl: float) -> 'CachedUpdate':
        """Copy of this entry with fresh timestamps."""
        return replace(self, checked_at=checked_at, expires_at=checked_at + ttl)


class ImageUpdateInfo(BaseModel):
    """Update status for one image, as returned to API callers."""
    image: str
    update_available: bool
    status: UpdateStatus
    current_digest: Optional[str] = None
    latest_digest: Optional[str] = None
    current_version: Optional[str] = None
    latest_version: Optional[str] = None
    version_status: Optional[VersionStatus] = None
    matched_tags: List[str] = []
    source_url: Optional[str] = None
    from_cache: bool = False

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @classmethod
    def from_cached(cls, cached: CachedUpdate, from_cache: bool = True) -> 'ImageUpdateInfo':
        info = cls.model_validate(cached)
        info.from_cache = from_cache
        return info
