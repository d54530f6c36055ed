"""
Conflict and resolution data models for peerkeeper.

Two families of records live here:

* Peer conflicts (:class:`Conflict`, :class:`Resolution`) found by the
  peer dependency analyzer when a package's declared peer requirement is
  missing from, or not satisfied by, the dependency set.
* Direct merge conflicts (:class:`MergeConflict`, :class:`MergeResolution`)
  recorded by the merger when two templates declare different ranges for
  the same package.

All records are built once per analysis or merge and never mutated
afterwards.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    """How serious a conflict is."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Confidence(str, Enum):
    """How strongly an automatically proposed fix should be trusted."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConflictType(str, Enum):
    """Kinds of peer dependency conflict."""

    MISSING_PEER = "missing_peer"
    VERSION_MISMATCH = "version_mismatch"
    VERSION_CHECK_FAILED = "version_check_failed"


class ResolutionAction(str, Enum):
    """What a peer resolution proposes to do with the dependency set."""

    ADD = "add"
    UPDATE = "update"
    WARN = "warn"


# ---------------------------------------------------------------------------
# Peer conflicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Conflict:
    """A peer requirement the dependency set fails to honour.

    Args:
        type: Conflict kind.
        package: Package declaring the peer requirement.
        peer_dependency: Package being required.
        required_version: Range the dependent asks for.
        installed_version: Range currently in the dependency set, or
            ``None`` when the peer is missing.
        severity: Conflict severity.
        message: Human-readable description.
    """

    type: ConflictType
    package: str
    peer_dependency: str
    required_version: str
    installed_version: Optional[str]
    severity: Severity
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            object.__setattr__(self, "message", self._default_message())

    def _default_message(self) -> str:
        if self.type is ConflictType.MISSING_PEER:
            return (
                f"{self.package} requires peer dependency "
                f"{self.peer_dependency}@{self.required_version} but it is not installed"
            )
        if self.type is ConflictType.VERSION_MISMATCH:
            return (
                f"{self.package} requires {self.peer_dependency}@{self.required_version} "
                f"but {self.installed_version} is installed"
            )
        return (
            f"Could not compare {self.peer_dependency}@{self.installed_version} "
            f"against {self.required_version} required by {self.package}"
        )

    def to_json(self) -> Dict[str, Optional[str]]:
        """Return a JSON-serializable representation."""
        return {
            "type": self.type.value,
            "package": self.package,
            "peer_dependency": self.peer_dependency,
            "required_version": self.required_version,
            "installed_version": self.installed_version,
            "severity": self.severity.value,
            "message": self.message,
        }

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class Resolution:
    """A proposed fix for one peer :class:`Conflict`.

    ``warn`` resolutions are advisory and never change a dependency set.
    """

    action: ResolutionAction
    package: str
    confidence: Confidence
    reason: str
    version: Optional[str] = None
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    conflict: Optional[Conflict] = None

    @property
    def target_version(self) -> Optional[str]:
        """Version the dependency set should end up with, if any."""
        if self.action is ResolutionAction.ADD:
            return self.version
        if self.action is ResolutionAction.UPDATE:
            return self.to_version
        return None

    @property
    def mutates(self) -> bool:
        return self.action is not ResolutionAction.WARN and self.target_version is not None

    def to_json(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "package": self.package,
            "version": self.version,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "confidence": self.confidence.value,
            "reason": self.reason,
            "conflict": self.conflict.to_json() if self.conflict else None,
        }


# ---------------------------------------------------------------------------
# Direct merge conflicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VersionSource:
    """One declared range and the template that declared it."""

    version: str
    source: str

    def to_json(self) -> Dict[str, str]:
        return {"version": self.version, "source": self.source}


@dataclass(frozen=True)
class CompatibilityReport:
    """Outcome of comparing two version ranges.

    Attributes:
        compatible: Majors match, one side satisfies the other, or the
            ranges share at least one version.
        satisfies: One side satisfies the other.
        intersection: The higher range when both share a version.
        risk: ``low``, ``medium`` or ``high``.
    """

    compatible: bool
    satisfies: bool
    intersection: Optional[str]
    risk: Severity

    def to_json(self) -> Dict[str, Any]:
        return {
            "compatible": self.compatible,
            "satisfies": self.satisfies,
            "intersection": self.intersection,
            "risk": self.risk.value,
        }


@dataclass(frozen=True)
class MergeConflict:
    """Two templates declared different ranges for the same package.

    Args:
        package: Conflicting package.
        dependency_type: ``dependencies``, ``devDependencies`` or
            ``peerDependencies``.
        versions: Previous declaration first, then the new one.
        resolution: Range that won.
        strategy: Merge strategy in effect.
        severity: Conflict severity (``critical`` when unresolved).
        compatibility: Range comparison, when both sides could be parsed.
        recommendation: Advice for the reviewer, if any.
        error: Why automatic resolution failed, if it did.
        requires_review: ``True`` when a human must confirm the pick.
    """

    package: str
    dependency_type: str
    versions: List[VersionSource]
    resolution: str
    strategy: str
    severity: Severity
    compatibility: Optional[CompatibilityReport] = None
    recommendation: Optional[str] = None
    error: Optional[str] = None
    requires_review: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "dependency_type": self.dependency_type,
            "versions": [v.to_json() for v in self.versions],
            "resolution": self.resolution,
            "strategy": self.strategy,
            "severity": self.severity.value,
            "compatibility": self.compatibility.to_json() if self.compatibility else None,
            "recommendation": self.recommendation,
            "error": self.error,
            "requires_review": self.requires_review,
        }


@dataclass(frozen=True)
class MergeResolution:
    """A version change applied to the merged set.

    ``strategy`` is a merge strategy name or ``peer_dependency_analysis``
    for changes driven by the peer analyzer.
    """

    package: str
    from_version: Optional[str]
    to_version: str
    strategy: str
    confidence: Confidence
    reason: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "package": self.package,
            "from": self.from_version,
            "to": self.to_version,
            "strategy": self.strategy,
            "confidence": self.confidence.value,
        }
        if self.reason:
            data["reason"] = self.reason
        return data


__all__ = [
    "Severity",
    "Confidence",
    "ConflictType",
    "ResolutionAction",
    "Conflict",
    "Resolution",
    "VersionSource",
    "CompatibilityReport",
    "MergeConflict",
    "MergeResolution",
]
