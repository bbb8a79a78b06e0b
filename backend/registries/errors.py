"""
Registry error taxonomy.

Not-found is never an error (callers get empty results); these exceptions
cover the cases callers must react to differently.
"""

from typing import Optional


class RegistryError(Exception):
    """Base class for registry API failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RegistryAuthError(RegistryError):
    """401/403 from a registry or token endpoint."""


class RegistryRateLimitedError(RegistryError):
    """429 from a registry; callers widen their cache TTL."""


def error_for_status(status: int, message: str) -> RegistryError:
    """Map an HTTP status to the matching registry exception."""
    if status in (401, 403):
        return RegistryAuthError(message, status)
    if status == 429:
        return RegistryRateLimitedError(message, status)
    return RegistryError(message, status)
