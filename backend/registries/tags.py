"""
Tag classification and ordering.

Shared by the consolidated registry query, the OCI tag listing and version
resolution so all three pick the same "best" tag for a digest.
"""

import re
from typing import Iterable, List, Optional, Tuple

# Starts with a digit or 'v' + digit, optional pre-release and build metadata
SEMVER_PATTERN = re.compile(r'^v?\d+(\.\d+)*(-[\w.]+)?(\+[\w.]+)?$')


def is_semver_like(tag: str) -> bool:
    """
    Check if a tag looks like a semantic version.

    Examples:
        "1.2.3", "v1.2", "1", "1.2.3-rc.1" → True
        "latest", "alpine", "sha-abc123" → False
    """
    return bool(SEMVER_PATTERN.match(tag))


def _version_core(tag: str) -> str:
    """Strip the 'v' prefix, pre-release and build metadata."""
    core = tag[1:] if tag.startswith("v") else tag
    return re.split(r'[-+]', core, maxsplit=1)[0]


def tag_specificity_key(tag: str) -> Tuple:
    """
    Sort key placing the most specific tag first.

    Semver tags come before anything else; among them more dot-segments wins
    (1.25.3 > 1.25 > 1), then higher numbers, then releases before
    pre-releases. Non-semver tags sort alphabetically at the end.
    """
    if not is_semver_like(tag):
        return (1, 0, (), False, tag)

    core = _version_core(tag)
    numbers = tuple(-int(n) for n in core.split("."))
    is_prerelease = "-" in tag
    return (0, -len(numbers), numbers, is_prerelease, tag)


def sort_tags_by_specificity(tags: Iterable[str]) -> List[str]:
    """Return tags ordered most-specific first."""
    return sorted(tags, key=tag_specificity_key)


def find_best_semver(tags: Iterable[str]) -> Optional[str]:
    """
    Pick the most specific semver tag from a list.

    Returns:
        Best semver tag, or None when no tag is semver-like
    """
    semver_tags = [t for t in tags if is_semver_like(t)]
    if not semver_tags:
        return None
    return sort_tags_by_specificity(semver_tags)[0]


def compare_tag_specificity(a: str, b: str) -> int:
    """
    Three-way comparison for tag specificity, most specific first.

    Returns:
        Negative if a sorts before b, positive if after, 0 if equal
    """
    key_a = tag_specificity_key(a)
    key_b = tag_specificity_key(b)
    return (key_a > key_b) - (key_a < key_b)
