"""
Aggregate result models for peerkeeper.

These records are what callers (the installer, the CLI reporting layer)
consume: the :class:`AnalysisResult` produced by the peer dependency
analyzer and the :class:`MergeResult` produced by the merger, together
with the diagnostics, progress events and summaries they carry.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from peerkeeper.models.manifest import FallbackReason, utc_timestamp
from peerkeeper.models.conflict import (
    Conflict,
    Confidence,
    MergeConflict,
    MergeResolution,
    Resolution,
    ResolutionAction,
    Severity,
)

#: npm flag that relaxes peer dependency enforcement during install.
LEGACY_PEER_DEPS_FLAG = "--legacy-peer-deps"


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Diagnostic:
    """One recorded warning or error.

    Args:
        category: Machine-readable kind, e.g. ``package_info_error``.
        message: Human-readable description.
        severity: ``critical``, ``high``, ``medium`` or ``low``.
        package: Package the diagnostic is about, if any.
        version: Version or range involved, if any.
        recommendation: Suggested follow-up, if any.
    """

    category: str
    message: str
    severity: Severity = Severity.MEDIUM
    package: Optional[str] = None
    version: Optional[str] = None
    recommendation: Optional[str] = None
    timestamp: str = field(default_factory=utc_timestamp, compare=False)

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "category": self.category,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
        }
        if self.package is not None:
            data["package"] = self.package
        if self.version is not None:
            data["version"] = self.version
        if self.recommendation:
            data["recommendation"] = self.recommendation
        return data


@dataclass(frozen=True)
class NetworkFailure:
    """A single failed registry attempt classified as network related."""

    package: str
    version: str
    attempt: int
    error: str
    timestamp: str = field(default_factory=utc_timestamp, compare=False)

    def to_json(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "version": self.version,
            "attempt": self.attempt,
            "error": self.error,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class MalformedPackage:
    """A package rejected before any registry query."""

    name: str
    version: str
    reason: str
    timestamp: str = field(default_factory=utc_timestamp, compare=False)

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    """Analyzer state machine phases."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    RESOLVING = "resolving"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """Structured progress notification sent to a :data:`ProgressListener`."""

    phase: Phase
    message: str
    processed: int = 0
    total: int = 0
    percentage: float = 0.0
    package: Optional[str] = None


#: Observer signature for analyzer progress.
ProgressListener = Callable[[ProgressEvent], None]


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


def format_success_rate(processed: int, failed: int, total: int) -> str:
    """Render ``(processed - failed) / total`` as a percentage string.

    Example::

        >>> format_success_rate(4, 1, 4)
        '75.00%'
        >>> format_success_rate(0, 0, 0)
        '100%'
    """
    if total <= 0:
        return "100%"
    return f"{(processed - failed) / total * 100:.2f}%"


@dataclass(frozen=True)
class CacheStats:
    """Cache sizes and hit counters for one analyzer."""

    memory_entries: int = 0
    disk_entries: int = 0
    memory_hits: int = 0
    disk_hits: int = 0
    peer_entries: int = 0
    persistent: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "memory_entries": self.memory_entries,
            "disk_entries": self.disk_entries,
            "memory_hits": self.memory_hits,
            "disk_hits": self.disk_hits,
            "peer_entries": self.peer_entries,
            "persistent": self.persistent,
        }


@dataclass(frozen=True)
class AnalysisSummary:
    """Counters describing one analysis run."""

    total_packages: int = 0
    packages_with_peer_dependencies: int = 0
    conflicts_detected: int = 0
    conflicts_resolved: int = 0
    warnings_generated: int = 0
    errors_encountered: int = 0
    packages_processed: int = 0
    packages_failed: int = 0
    packages_skipped: int = 0
    network_errors: int = 0
    malformed_packages: int = 0
    fallbacks_used: int = 0

    @property
    def success_rate(self) -> str:
        return format_success_rate(
            self.packages_processed, self.packages_failed, self.total_packages
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "total_packages": self.total_packages,
            "packages_with_peer_dependencies": self.packages_with_peer_dependencies,
            "conflicts_detected": self.conflicts_detected,
            "conflicts_resolved": self.conflicts_resolved,
            "warnings_generated": self.warnings_generated,
            "errors_encountered": self.errors_encountered,
            "packages_processed": self.packages_processed,
            "packages_failed": self.packages_failed,
            "packages_skipped": self.packages_skipped,
            "network_errors": self.network_errors,
            "malformed_packages": self.malformed_packages,
            "fallbacks_used": self.fallbacks_used,
            "success_rate": self.success_rate,
        }


@dataclass(frozen=True)
class Recommendation:
    """Free-text advice keyed by category.

    Edge-case recommendations carry a ``severity``; analysis
    recommendations list the affected ``packages`` instead.
    """

    type: str
    message: str
    action: str
    severity: Optional[Severity] = None
    packages: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "message": self.message,
            "action": self.action,
        }
        if self.severity is not None:
            data["severity"] = self.severity.value
        if self.packages:
            data["packages"] = list(self.packages)
        return data


@dataclass(frozen=True)
class FallbackPackage:
    package: str
    version: str
    reason: Optional[FallbackReason]
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "version": self.version,
            "reason": self.reason.value if self.reason else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class NetworkFailureGroup:
    """All network failures recorded for one package."""

    package: str
    attempts: int
    last_error: str
    first_attempt: str
    last_attempt: str

    def to_json(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "first_attempt": self.first_attempt,
            "last_attempt": self.last_attempt,
        }


@dataclass(frozen=True)
class EdgeCaseReport:
    """Degraded-data findings from one analysis run."""

    fallback_packages: List[FallbackPackage] = field(default_factory=list)
    offline_packages: List[str] = field(default_factory=list)
    invalid_packages: List[FallbackPackage] = field(default_factory=list)
    network_failures: List[NetworkFailureGroup] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "fallback_packages": [p.to_json() for p in self.fallback_packages],
            "offline_packages": list(self.offline_packages),
            "invalid_packages": [p.to_json() for p in self.invalid_packages],
            "network_failures": [g.to_json() for g in self.network_failures],
            "recommendations": [r.to_json() for r in self.recommendations],
        }


@dataclass
class AnalysisResult:
    """Everything the peer dependency analyzer learned in one run.

    Attributes:
        success: ``False`` only when an orchestration-level error occurred.
        summary: Counters for the run.
        conflicts: Peer conflicts in detection order.
        resolutions: At most one resolution per conflict, same order.
        warnings: Recoverable issues.
        errors: Non-recoverable issues.
        network_errors: One entry per failed network attempt.
        malformed_packages: Packages rejected by name validation.
        edge_cases: Degraded-data report.
        recommendations: Advice derived from conflicts and resolutions.
        modified_dependencies: Input dependencies with ``add``/``update``
            resolutions applied.
        cache_stats: Cache sizes and hit counters.
    """

    success: bool = True
    summary: AnalysisSummary = field(default_factory=AnalysisSummary)
    conflicts: List[Conflict] = field(default_factory=list)
    resolutions: List[Resolution] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    errors: List[Diagnostic] = field(default_factory=list)
    network_errors: List[NetworkFailure] = field(default_factory=list)
    malformed_packages: List[MalformedPackage] = field(default_factory=list)
    edge_cases: EdgeCaseReport = field(default_factory=EdgeCaseReport)
    recommendations: List[Recommendation] = field(default_factory=list)
    modified_dependencies: Dict[str, str] = field(default_factory=dict)
    cache_stats: CacheStats = field(default_factory=CacheStats)

    @property
    def needs_relaxed_peer_deps(self) -> bool:
        """True when the installer should pass ``--legacy-peer-deps``."""
        return any(r.type == "installation_flags" for r in self.recommendations)

    def resolutions_with(self, confidence: Confidence) -> List[Resolution]:
        return [r for r in self.resolutions if r.confidence is confidence]

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary.to_json(),
            "conflicts": [c.to_json() for c in self.conflicts],
            "resolutions": [r.to_json() for r in self.resolutions],
            "warnings": [w.to_json() for w in self.warnings],
            "errors": [e.to_json() for e in self.errors],
            "network_errors": [n.to_json() for n in self.network_errors],
            "malformed_packages": [m.to_json() for m in self.malformed_packages],
            "edge_cases": self.edge_cases.to_json(),
            "recommendations": [r.to_json() for r in self.recommendations],
            "modified_dependencies": dict(self.modified_dependencies),
            "cache_stats": self.cache_stats.to_json(),
        }


def apply_resolutions(
    dependencies: Dict[str, str], resolutions: List[Resolution]
) -> Dict[str, str]:
    """Return a copy of ``dependencies`` with add/update resolutions applied."""
    modified = dict(dependencies)
    for resolution in resolutions:
        if resolution.action is ResolutionAction.WARN:
            continue
        target = resolution.target_version
        if target is not None:
            modified[resolution.package] = target
    return modified


# ---------------------------------------------------------------------------
# Merge results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolutionSummary:
    """Confidence breakdown of the resolutions applied during a merge."""

    total: int = 0
    by_confidence: Dict[str, int] = field(
        default_factory=lambda: {c.value: 0 for c in Confidence}
    )
    recommendations: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_confidence": dict(self.by_confidence),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class MergeSummary:
    """Counters describing one merge.

    Holds no timestamps and no cache statistics, so two merges of the
    same input compare equal.
    """

    total_templates: int = 0
    total_packages: int = 0
    conflicts: int = 0
    warnings: int = 0
    resolutions: int = 0
    compatibility_issues: int = 0
    peer_issues: int = 0
    strategy: str = ""
    resolution_summary: ResolutionSummary = field(default_factory=ResolutionSummary)

    def to_json(self) -> Dict[str, Any]:
        return {
            "total_templates": self.total_templates,
            "total_packages": self.total_packages,
            "conflicts": self.conflicts,
            "warnings": self.warnings,
            "resolutions": self.resolutions,
            "compatibility_issues": self.compatibility_issues,
            "peer_issues": self.peer_issues,
            "strategy": self.strategy,
            "resolution_summary": self.resolution_summary.to_json(),
        }


@dataclass
class MergeResult:
    """Merged dependency maps plus everything recorded while merging."""

    dependencies: Dict[str, str] = field(default_factory=dict)
    dev_dependencies: Dict[str, str] = field(default_factory=dict)
    peer_dependencies: Dict[str, str] = field(default_factory=dict)
    conflicts: List[MergeConflict] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    errors: List[Diagnostic] = field(default_factory=list)
    resolutions: List[MergeResolution] = field(default_factory=list)
    peer_analysis: Optional[AnalysisResult] = None
    summary: MergeSummary = field(default_factory=MergeSummary)
    success: bool = True

    @property
    def needs_relaxed_peer_deps(self) -> bool:
        """True when the peer analysis advises relaxing peer enforcement."""
        return bool(self.peer_analysis and self.peer_analysis.needs_relaxed_peer_deps)

    @property
    def install_flags(self) -> List[str]:
        return [LEGACY_PEER_DEPS_FLAG] if self.needs_relaxed_peer_deps else []

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "dependencies": dict(self.dependencies),
            "devDependencies": dict(self.dev_dependencies),
            "peerDependencies": dict(self.peer_dependencies),
            "conflicts": [c.to_json() for c in self.conflicts],
            "warnings": [w.to_json() for w in self.warnings],
            "errors": [e.to_json() for e in self.errors],
            "resolutions": [r.to_json() for r in self.resolutions],
            "peer_analysis": self.peer_analysis.to_json() if self.peer_analysis else None,
            "summary": self.summary.to_json(),
            "install_flags": self.install_flags,
        }


__all__ = [
    "LEGACY_PEER_DEPS_FLAG",
    "Diagnostic",
    "NetworkFailure",
    "MalformedPackage",
    "Phase",
    "ProgressEvent",
    "ProgressListener",
    "format_success_rate",
    "CacheStats",
    "AnalysisSummary",
    "Recommendation",
    "FallbackPackage",
    "NetworkFailureGroup",
    "EdgeCaseReport",
    "AnalysisResult",
    "apply_resolutions",
    "ResolutionSummary",
    "MergeSummary",
    "MergeResult",
]
