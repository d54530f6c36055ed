"""
npm-flavoured semantic version helpers for peerkeeper.

Template declarations and registry manifests use npm range syntax
(``^1.2.0``, ``~3.1``, ``>=2 <4``, ``1.x || 2.x``). Parsing is delegated to
``semantic_version`` (``Version`` and ``NpmSpec``); this module adds the
forgiving pieces npm tooling relies on, chiefly :func:`coerce`, which
pulls the first ``X[.Y[.Z]]`` triple out of arbitrary text the way the
``semver`` package does.

Nothing here raises on bad input: every helper returns ``None`` (or a
neutral value) so callers can decide how to degrade.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from semantic_version import NpmSpec, Version

_COERCE_RE = re.compile(r"(?:^|[^\d])(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?:$|[^\d])")


def coerce(value: Optional[str]) -> Optional[Version]:
    """Extract a concrete version from a version-ish string.

    Args:
        value: Anything from ``"1.2.3"`` to ``"^18"`` or ``"v2.0-beta"``.

    Returns:
        A :class:`semantic_version.Version`, or ``None`` when the text
        holds no number at all.

    Examples:
        >>> str(coerce("^18.2"))
        '18.2.0'
        >>> coerce("latest") is None
        True
    """
    if not value or not isinstance(value, str):
        return None

    match = _COERCE_RE.search(value)
    if not match:
        return None

    major, minor, patch = match.groups()
    return Version(
        major=int(major),
        minor=int(minor or 0),
        patch=int(patch or 0),
    )


def parse_range(value: Optional[str]) -> Optional[NpmSpec]:
    """Parse an npm range expression, returning ``None`` when invalid."""
    if not value or not isinstance(value, str):
        return None
    try:
        return NpmSpec(value.strip())
    except ValueError:
        return None


def parse_exact(value: Optional[str]) -> Optional[Version]:
    """Parse a strict semver string (``1.2.3``, ``1.2.3-rc.1``)."""
    if not value or not isinstance(value, str):
        return None
    try:
        return Version(value.strip().lstrip("v="))
    except ValueError:
        return None


def range_prefix(value: str) -> str:
    """Return the leading ``^`` or ``~`` operator of a range, or ``""``."""
    stripped = value.strip()
    if stripped[:1] in ("^", "~"):
        return stripped[0]
    return ""


def version_distance(a: Version, b: Version) -> Tuple[int, int]:
    """Absolute ``(major, minor)`` distance between two versions."""
    return abs(a.major - b.major), abs(a.minor - b.minor)


def spec_targets(spec: NpmSpec) -> Tuple[Version, ...]:
    """Collect every boundary version mentioned in a parsed range.

    ``semantic_version`` stores a range as a tree of clauses
    (``AnyOf`` / ``AllOf`` nodes with ``Range`` leaves). Each leaf carries
    a ``target`` version; the set of targets, together with their next
    patch release, is enough to tell whether two ranges overlap.
    """
    found = []
    stack = [spec.clause]

    while stack:
        node = stack.pop()
        children = getattr(node, "clauses", None)
        if children:
            stack.extend(children)
            continue
        target = getattr(node, "target", None)
        if isinstance(target, Version):
            found.append(target)

    return tuple(found)


def ranges_intersect(a: NpmSpec, b: NpmSpec) -> bool:
    """Return True if at least one release version satisfies both ranges.

    Candidates are the boundary versions of both ranges, each boundary's
    next patch (covers exclusive lower bounds such as ``>1.2.3``) and
    ``0.0.0`` (covers ranges with only an upper bound).
    """
    candidates = {Version("0.0.0")}
    for target in spec_targets(a) + spec_targets(b):
        base = Version(major=target.major, minor=target.minor, patch=target.patch)
        candidates.add(base)
        candidates.add(base.next_patch())

    return any(a.match(candidate) and b.match(candidate) for candidate in sorted(candidates))


def get_update_type(current: Optional[str], target: Optional[str]) -> str:
    """Classify the change between two version-ish strings.

    Returns one of ``"new"``, ``"same"``, ``"downgrade"``, ``"major"``,
    ``"minor"``, ``"patch"`` or ``"unknown"``.

    Examples:
        >>> get_update_type("^17.0.2", "^18.2.0")
        'major'
        >>> get_update_type(None, "1.0.0")
        'new'
    """
    if current is None and target is None:
        return "unknown"
    if current is None:
        return "new"
    if target is None:
        return "unknown"

    cur = coerce(current)
    tgt = coerce(target)
    if cur is None or tgt is None:
        return "unknown"

    if tgt == cur:
        return "same"
    if tgt < cur:
        return "downgrade"
    if tgt.major != cur.major:
        return "major"
    if tgt.minor != cur.minor:
        return "minor"
    return "patch"


__all__ = [
    "coerce",
    "parse_range",
    "parse_exact",
    "range_prefix",
    "version_distance",
    "spec_targets",
    "ranges_intersect",
    "get_update_type",
]
