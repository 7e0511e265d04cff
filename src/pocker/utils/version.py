"""Version string ordering and labelling."""

import re
from functools import cmp_to_key
from typing import Iterable, List, Optional, Union

LATEST_TOKEN = "latest"
NON_SEMANTIC_TAGS = frozenset({"latest", "nightly", "main", "master", "edge", "stable"})

_DIGEST_RE = re.compile(r"^[a-f0-9]{12,}$", re.IGNORECASE)
_SEMVER_RE = re.compile(r"^v?\d+\.\d+\.\d+", re.IGNORECASE | re.ASCII)
_NUMERIC_RE = re.compile(r"^[0-9]+$", re.ASCII)
_PRERELEASE_SPLIT = re.compile(r"[+\-]")
_SEGMENT_SPLIT = re.compile(r"[._]")

Segment = Union[int, str]


def _normalize(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    stripped = value.strip()
    return stripped or None


def is_latest(value: Optional[str]) -> bool:
    """True for the 'latest' sentinel, in any case."""
    normalized = _normalize(value)
    return normalized is not None and normalized.lower() == LATEST_TOKEN


def is_version_digest(value: Optional[str]) -> bool:
    """True when the value looks like a content digest (12+ hex chars)."""
    normalized = _normalize(value)
    return bool(normalized and _DIGEST_RE.match(normalized))


def is_semantic_version(value: Optional[str]) -> bool:
    """True when the value starts with vN.N.N."""
    normalized = _normalize(value)
    return bool(normalized and _SEMVER_RE.match(normalized))


def needs_digest_resolution(version: Optional[str]) -> bool:
    """
    Decide whether a version label is too vague to show as-is.

    Missing labels, floating tags, raw digests and anything without a
    vN.N.N shape qualify for a registry lookup by digest.
    """
    normalized = _normalize(version)
    if normalized is None:
        return True
    if normalized.lower() in NON_SEMANTIC_TAGS or is_version_digest(normalized):
        return True
    return not is_semantic_version(normalized)


def _segmentify(value: str) -> List[Segment]:
    cleaned = value[1:] if value[:1] in ("v", "V") else value
    base = _PRERELEASE_SPLIT.split(cleaned, maxsplit=1)[0]
    segments: List[Segment] = []
    for segment in _SEGMENT_SPLIT.split(base):
        if not segment:
            continue
        segments.append(int(segment) if _NUMERIC_RE.match(segment) else segment.lower())
    return segments


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def compare_versions(a: Optional[str], b: Optional[str]) -> int:
    """
    Compare two version strings.

    Empty values sort lowest and 'latest' sorts highest. Two digests
    compare as plain strings, and a digest is greater than any non-digest.
    Everything else is compared segment by segment after dropping a leading
    'v' and any pre-release/build suffix; a shorter version with an equal
    prefix is older.

    Args:
        a: Left version
        b: Right version

    Returns:
        -1, 0 or 1
    """
    left = _normalize(a)
    right = _normalize(b)

    if left is None and right is None:
        return 0
    if left is None:
        return -1
    if right is None:
        return 1
    if left == right:
        return 0

    left_latest = is_latest(left)
    right_latest = is_latest(right)
    if left_latest and not right_latest:
        return 1
    if right_latest and not left_latest:
        return -1

    left_digest = is_version_digest(left)
    right_digest = is_version_digest(right)
    if left_digest and right_digest:
        return _sign((left > right) - (left < right))
    # Arbitrary but stable: a digest outranks a tag
    if left_digest:
        return 1
    if right_digest:
        return -1

    left_segments = _segmentify(left)
    right_segments = _segmentify(right)

    for index in range(max(len(left_segments), len(right_segments))):
        if index >= len(left_segments):
            return -1
        if index >= len(right_segments):
            return 1

        left_segment = left_segments[index]
        right_segment = right_segments[index]
        if left_segment == right_segment:
            continue

        if isinstance(left_segment, int) and isinstance(right_segment, int):
            return _sign(left_segment - right_segment)

        left_text = str(left_segment)
        right_text = str(right_segment)
        if left_text < right_text:
            return -1
        if left_text > right_text:
            return 1

    return 0


version_key = cmp_to_key(compare_versions)


def sort_versions(versions: Iterable[str]) -> List[str]:
    """Sort versions oldest first."""
    return sorted(versions, key=version_key)


def latest_of(versions: Iterable[str]) -> Optional[str]:
    """The greatest version of the collection, or None when it is empty."""
    ordered = sort_versions(versions)
    return ordered[-1] if ordered else None


def format_version_label(value: Optional[str]) -> Optional[str]:
    """
    Shorten a version for display.

    Digests and 'latest' display as 'latest'; others keep at most three
    dot-separated parts without a leading 'v' or pre-release suffix.
    """
    normalized = _normalize(value)
    if normalized is None:
        return None
    if is_latest(normalized) or is_version_digest(normalized):
        return LATEST_TOKEN

    base = _PRERELEASE_SPLIT.split(normalized, maxsplit=1)[0]
    parts = base.split(".")
    if len(parts) > 3:
        base = ".".join(parts[:3])
    return base[1:] if base[:1] in ("v", "V") else base
