"""Version compatibility engine for peerkeeper.

Pure functions over npm version ranges, shared by the peer dependency
analyzer and the dependency merger. Nothing here performs I/O and
nothing raises on unparsable input.

Conflict resolution returns a tagged outcome instead of raising:

* :class:`Resolved` - a range was picked, with confidence and severity;
* :class:`ManualResolutionRequired` - the ``manual`` strategy refuses to
  pick;
* :class:`ResolutionFailed` - the ranges could not be reconciled.

Callers that prefer exceptions use ``outcome.unwrap()``, which raises
:class:`~peerkeeper.exceptions.UnresolvableVersionConflict` for the last
two.

Example::

    >>> outcome = resolve("^17.0.0", "^18.0.0", Strategy.HIGHEST)
    >>> outcome.version, outcome.severity.value
    ('^18.0.0', 'medium')
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from semantic_version import Version

from peerkeeper.exceptions import UnresolvableVersionConflict
from peerkeeper.models.conflict import CompatibilityReport, Confidence, Severity
from peerkeeper.utils.version_utils import (
    coerce,
    parse_range,
    range_prefix,
    ranges_intersect,
    version_distance,
)

__all__ = [
    "Strategy",
    "ParsedVersion",
    "Resolved",
    "ManualResolutionRequired",
    "ResolutionFailed",
    "ResolutionOutcome",
    "satisfies",
    "check_satisfies",
    "analyze_compatibility",
    "calculate_severity",
    "more_specific",
    "resolve",
    "fallback_resolution",
    "find_compatible_version",
]


class Strategy(str, Enum):
    """Merge conflict resolution strategies."""

    HIGHEST = "highest"
    LOWEST = "lowest"
    COMPATIBLE = "compatible"
    SMART = "smart"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Satisfaction
# ---------------------------------------------------------------------------


def check_satisfies(version: Optional[str], version_range: Optional[str]) -> Optional[bool]:
    """Tri-state satisfaction check.

    Returns:
        ``True`` or ``False`` when both sides parse, ``None`` when either
        the version cannot be coerced or the range cannot be parsed.
    """
    coerced = coerce(version)
    spec = parse_range(version_range)
    if coerced is None or spec is None:
        return None
    return spec.match(coerced)


def satisfies(version: Optional[str], version_range: Optional[str]) -> bool:
    """Return True when ``version`` (coerced) lies inside ``version_range``.

    Never raises; unparsable input yields ``False``.

    Example::

        >>> satisfies("18.2.0", "^18.0.0")
        True
        >>> satisfies("not-a-version", "^1.0.0")
        False
    """
    return check_satisfies(version, version_range) is True


# ---------------------------------------------------------------------------
# Range comparison
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedVersion:
    """A declared range together with its coerced concrete version."""

    original: str
    version: Version

    @property
    def is_range(self) -> bool:
        return self.original.strip() != str(self.version)

    @property
    def prefix(self) -> str:
        return range_prefix(self.original)

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ParsedVersion"]:
        coerced = coerce(value)
        if coerced is None or value is None:
            return None
        return cls(value, coerced)


def _specificity(parsed: ParsedVersion) -> int:
    if not parsed.is_range:
        return 3
    return {"~": 2, "^": 1}.get(parsed.prefix, 0)


def _tie_break(a: ParsedVersion, b: ParsedVersion) -> ParsedVersion:
    """Deterministic pick between two ranges that coerce to the same version.

    The more specific form wins, then the lexically smaller text, so the
    result does not depend on which template was merged first.
    """
    if _specificity(a) != _specificity(b):
        return a if _specificity(a) > _specificity(b) else b
    return a if a.original <= b.original else b


def _higher(a: ParsedVersion, b: ParsedVersion) -> ParsedVersion:
    if a.version == b.version:
        return _tie_break(a, b)
    return a if a.version > b.version else b


def _lower(a: ParsedVersion, b: ParsedVersion) -> ParsedVersion:
    if a.version == b.version:
        return _tie_break(a, b)
    return a if a.version < b.version else b


def _risk(major_diff: int) -> Severity:
    if major_diff == 0:
        return Severity.LOW
    if major_diff == 1:
        return Severity.MEDIUM
    return Severity.HIGH


@lru_cache(maxsize=1024)
def analyze_compatibility(range_a: str, range_b: str) -> CompatibilityReport:
    """Compare two declared ranges.

    ``compatible`` holds when the majors match, when one side's coerced
    version satisfies the other range, or when the two ranges share at
    least one version. ``intersection`` is the higher of the two ranges
    when they overlap.
    """
    a = ParsedVersion.parse(range_a)
    b = ParsedVersion.parse(range_b)
    if a is None or b is None:
        return CompatibilityReport(
            compatible=False, satisfies=False, intersection=None, risk=Severity.HIGH
        )

    one_satisfies = satisfies(str(a.version), range_b) or satisfies(str(b.version), range_a)
    major_diff, _ = version_distance(a.version, b.version)

    spec_a = parse_range(range_a)
    spec_b = parse_range(range_b)
    overlap = spec_a is not None and spec_b is not None and ranges_intersect(spec_a, spec_b)

    return CompatibilityReport(
        compatible=major_diff == 0 or one_satisfies or overlap,
        satisfies=one_satisfies,
        intersection=_higher(a, b).original if overlap else None,
        risk=_risk(major_diff),
    )


def calculate_severity(a: ParsedVersion, b: ParsedVersion) -> Severity:
    """Severity of replacing one version with the other.

    Majors more than one apart are high; one apart, or minors more than
    five apart, medium; everything else low.
    """
    major_diff, minor_diff = version_distance(a.version, b.version)
    if major_diff > 1:
        return Severity.HIGH
    if major_diff == 1:
        return Severity.MEDIUM
    if minor_diff > 5:
        return Severity.MEDIUM
    return Severity.LOW


def more_specific(a: ParsedVersion, b: ParsedVersion) -> ParsedVersion:
    """Pick the narrower of two ranges.

    An exact version beats a range and ``~`` beats ``^``; otherwise the
    higher version wins. This is a heuristic and ignores prerelease and
    build metadata.
    """
    if not a.is_range and b.is_range:
        return a
    if a.is_range and not b.is_range:
        return b
    if a.prefix == "~" and b.prefix == "^":
        return a
    if a.prefix == "^" and b.prefix == "~":
        return b
    return _higher(a, b)


# ---------------------------------------------------------------------------
# Resolution outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Resolved:
    """A range was picked automatically."""

    version: str
    confidence: Confidence
    severity: Severity
    recommendation: str
    compatibility: CompatibilityReport

    def unwrap(self) -> "Resolved":
        return self


@dataclass(frozen=True)
class ManualResolutionRequired:
    """The ``manual`` strategy requires a human decision."""

    versions: Tuple[str, str]
    package: Optional[str] = None

    @property
    def reason(self) -> str:
        target = self.package or "package"
        return f"Manual resolution required for {target}: {self.versions[0]} vs {self.versions[1]}"

    def unwrap(self) -> Resolved:
        raise UnresolvableVersionConflict(
            self.reason, package_name=self.package, versions=self.versions, manual=True
        )


@dataclass(frozen=True)
class ResolutionFailed:
    """The two ranges could not be reconciled automatically."""

    reason: str
    versions: Tuple[str, str]
    package: Optional[str] = None

    def unwrap(self) -> Resolved:
        raise UnresolvableVersionConflict(
            self.reason, package_name=self.package, versions=self.versions
        )


ResolutionOutcome = Union[Resolved, ManualResolutionRequired, ResolutionFailed]


def _smart(a: ParsedVersion, b: ParsedVersion, compat: CompatibilityReport) -> Resolved:
    major_diff, _ = version_distance(a.version, b.version)

    if major_diff > 1:
        return Resolved(
            version=_higher(a, b).original,
            confidence=Confidence.LOW,
            severity=Severity.HIGH,
            recommendation=(
                f"Major version difference detected ({major_diff} versions apart). "
                "Consider updating all templates to use compatible versions and test thoroughly."
            ),
            compatibility=compat,
        )

    if major_diff == 0 and compat.compatible:
        return Resolved(
            version=_higher(a, b).original,
            confidence=Confidence.HIGH,
            severity=Severity.LOW,
            recommendation="Versions are compatible, using higher version.",
            compatibility=compat,
        )

    if compat.satisfies:
        return Resolved(
            version=more_specific(a, b).original,
            confidence=Confidence.HIGH,
            severity=Severity.LOW,
            recommendation="Using more specific version that satisfies both requirements.",
            compatibility=compat,
        )

    return Resolved(
        version=_higher(a, b).original,
        confidence=Confidence.MEDIUM,
        severity=Severity.MEDIUM,
        recommendation="Using higher version. Test compatibility carefully.",
        compatibility=compat,
    )


def _compatible(
    a: ParsedVersion, b: ParsedVersion, compat: CompatibilityReport, package: Optional[str]
) -> ResolutionOutcome:
    if compat.compatible:
        return Resolved(
            version=_higher(a, b).original,
            confidence=Confidence.HIGH,
            severity=Severity.LOW,
            recommendation="Versions are compatible.",
            compatibility=compat,
        )

    if compat.satisfies:
        return Resolved(
            version=compat.intersection or _higher(a, b).original,
            confidence=Confidence.MEDIUM,
            severity=Severity.MEDIUM,
            recommendation="Using version that satisfies both ranges.",
            compatibility=compat,
        )

    return ResolutionFailed(
        reason=f"Incompatible version ranges: {a.original} and {b.original}",
        versions=(a.original, b.original),
        package=package,
    )


def resolve(
    range_a: str,
    range_b: str,
    strategy: Union[Strategy, str] = Strategy.SMART,
    *,
    package: Optional[str] = None,
) -> ResolutionOutcome:
    """Pick one of two conflicting ranges under ``strategy``.

    Args:
        range_a: The range already in the merged set.
        range_b: The range being merged in.
        strategy: A :class:`Strategy` or its name.
        package: Package name, used in messages only.

    Raises:
        ValueError: ``strategy`` is not a known strategy name.
    """
    strategy = Strategy(strategy)
    versions = (range_a, range_b)

    if strategy is Strategy.MANUAL:
        return ManualResolutionRequired(versions=versions, package=package)

    a = ParsedVersion.parse(range_a)
    b = ParsedVersion.parse(range_b)
    if a is None or b is None:
        return ResolutionFailed(
            reason=f"Invalid semver versions for {package or 'package'}: {range_a}, {range_b}",
            versions=versions,
            package=package,
        )

    compat = analyze_compatibility(range_a, range_b)

    if strategy is Strategy.SMART:
        return _smart(a, b, compat)

    if strategy is Strategy.COMPATIBLE:
        return _compatible(a, b, compat, package)

    severity = calculate_severity(a, b)
    if strategy is Strategy.HIGHEST:
        picked = _higher(a, b)
        note = "Consider testing thoroughly as this may introduce breaking changes"
    else:
        picked = _lower(a, b)
        note = "Using older version may miss important features or security fixes"

    return Resolved(
        version=picked.original,
        confidence=Confidence.MEDIUM,
        severity=severity,
        recommendation=note if severity is Severity.HIGH else "",
        compatibility=compat,
    )


def fallback_resolution(range_a: str, range_b: str) -> str:
    """Deterministic pick used when automatic resolution is refused or fails.

    The higher coercible version wins; when either side cannot be
    coerced the later declaration (``range_b``) wins.
    """
    a = ParsedVersion.parse(range_a)
    b = ParsedVersion.parse(range_b)
    if a is None or b is None:
        return range_b
    return range_a if a.version > b.version else range_b


def find_compatible_version(installed: Optional[str], required: Optional[str]) -> Optional[str]:
    """Propose a range for a peer whose installed range misses the requirement.

    Returns:
        ``None`` when either side cannot be coerced; ``required`` when it
        is newer than ``installed``; ``installed`` when it already
        satisfies ``required``; otherwise ``required``.
    """
    current = coerce(installed)
    wanted = coerce(required)
    if current is None or wanted is None or installed is None or required is None:
        return None
    if wanted > current:
        return required
    if satisfies(str(current), required):
        return installed
    return required
