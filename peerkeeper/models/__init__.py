"""
Unified data model exports for peerkeeper.

This module re-exports all core data models to provide a stable and
convenient public API. Users can import models directly from
``peerkeeper.models`` instead of individual submodules.

Example:
    >>> from peerkeeper.models import PackageManifest, Conflict, MergeResult
"""

from __future__ import annotations

from peerkeeper.models.manifest import FallbackReason, PackageManifest, PackageRef
from peerkeeper.models.template import TemplateDeclaration
from peerkeeper.models.conflict import (
    CompatibilityReport,
    Confidence,
    Conflict,
    ConflictType,
    MergeConflict,
    MergeResolution,
    Resolution,
    ResolutionAction,
    Severity,
    VersionSource,
)
from peerkeeper.models.results import (
    AnalysisResult,
    AnalysisSummary,
    CacheStats,
    Diagnostic,
    EdgeCaseReport,
    MalformedPackage,
    MergeResult,
    MergeSummary,
    NetworkFailure,
    Phase,
    ProgressEvent,
    ProgressListener,
    Recommendation,
    ResolutionSummary,
)

__all__ = [
    "PackageRef",
    "PackageManifest",
    "FallbackReason",
    "TemplateDeclaration",
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
    "Diagnostic",
    "NetworkFailure",
    "MalformedPackage",
    "Phase",
    "ProgressEvent",
    "ProgressListener",
    "CacheStats",
    "AnalysisSummary",
    "Recommendation",
    "EdgeCaseReport",
    "AnalysisResult",
    "ResolutionSummary",
    "MergeSummary",
    "MergeResult",
]
