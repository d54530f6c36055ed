"""Peer dependency analysis for peerkeeper.

:class:`PeerDependencyAnalyzer` takes a flat dependency set, looks up
the manifest of every package, and reports where the set fails to honour
the peer requirements those manifests declare.

An analysis runs through a fixed sequence of phases::

    idle -> initializing -> fetching -> extracting -> analyzing
         -> resolving -> finalizing -> complete

Any unexpected failure moves the analyzer to ``error`` and surfaces as
:class:`~peerkeeper.exceptions.AnalysisPhaseError`. Per-package failures
never do: the resolver degrades them to fallback manifests.

Only the fetching phase is concurrent. Packages are fetched in batches of
``batch_size`` with :func:`asyncio.gather`, pausing ``batch_delay``
seconds between batches.

Typical usage::

    async with PeerDependencyAnalyzer(AnalyzerConfig()) as analyzer:
        result = await analyzer.analyze({"react-dom": "^18.2.0"})

        for conflict in result.conflicts:
            print(conflict.message)
        print(result.modified_dependencies)   # adds react@^18.2.0
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, NoReturn, Optional, Tuple

from peerkeeper.config import AnalyzerConfig
from peerkeeper.exceptions import AnalysisPhaseError
from peerkeeper.utils.logger import get_logger
from peerkeeper.core.registry import RegistryClient
from peerkeeper.core.resolver import DiagnosticLog, PackageMetadataResolver
from peerkeeper.core.compatibility import check_satisfies, find_compatible_version
from peerkeeper.models.manifest import FallbackReason, PackageManifest, cache_key
from peerkeeper.models.conflict import (
    Confidence,
    Conflict,
    ConflictType,
    Resolution,
    ResolutionAction,
    Severity,
)
from peerkeeper.models.results import (
    AnalysisResult,
    AnalysisSummary,
    CacheStats,
    EdgeCaseReport,
    FallbackPackage,
    LEGACY_PEER_DEPS_FLAG,
    NetworkFailure,
    NetworkFailureGroup,
    Phase,
    ProgressEvent,
    ProgressListener,
    Recommendation,
    apply_resolutions,
)

logger = get_logger("peer_analyzer")

__all__ = ["PeerDependencyAnalyzer"]

_PHASE_MESSAGES: Dict[Phase, str] = {
    Phase.INITIALIZING: "Initializing peer dependency analysis...",
    Phase.FETCHING: "Fetching package metadata...",
    Phase.EXTRACTING: "Extracting peer dependencies...",
    Phase.ANALYZING: "Analyzing peer dependency conflicts...",
    Phase.RESOLVING: "Resolving conflicts...",
    Phase.FINALIZING: "Finalizing analysis...",
    Phase.COMPLETE: "Peer dependency analysis complete",
}


class PeerDependencyAnalyzer:
    """Detect and propose fixes for unmet peer dependencies.

    Each analyzer owns its resolver, caches and counters. When the
    resolver configuration enables ``persist_cache`` the on-disk cache is
    loaded here and saved after every analysis, failed ones included.

    Args:
        config: Analyzer settings (resolver settings included).
        registry: Registry backend. Built from ``config.resolver`` when
            omitted.
        resolver: Pre-built resolver; takes precedence over ``registry``.
        progress_listener: Called with a :class:`ProgressEvent` on every
            phase change and after every package fetch.

    Example::

        >>> events = []
        >>> analyzer = PeerDependencyAnalyzer(
        ...     AnalyzerConfig(resolver=ResolverConfig(offline=True)),
        ...     progress_listener=events.append,
        ... )
        >>> result = asyncio.run(analyzer.analyze({"react": "^18.2.0"}))
        >>> events[-1].phase
        <Phase.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        *,
        registry: Optional[RegistryClient] = None,
        resolver: Optional[PackageMetadataResolver] = None,
        progress_listener: Optional[ProgressListener] = None,
    ) -> None:
        self.config = config or AnalyzerConfig()
        if resolver is None:
            resolver = PackageMetadataResolver(
                self.config.resolver, registry=registry, diagnostics=DiagnosticLog()
            )
        self.resolver = resolver
        self.diagnostics = resolver.diagnostics
        self.progress_listener = progress_listener

        self._peer_cache: Dict[str, Dict[str, str]] = {}
        self.phase = Phase.IDLE
        self._total = 0
        self._processed = 0
        self._fetch_failures = 0
        self._conflicts_found = 0
        self._resolutions_generated = 0

        loaded = self.resolver.load_disk_cache()
        if loaded:
            logger.info("Loaded %d cached package manifests", loaded)

    async def __aenter__(self) -> "PeerDependencyAnalyzer":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.resolver.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def analyze(
        self,
        dependencies: Dict[str, str],
        dev_dependencies: Optional[Dict[str, str]] = None,
    ) -> AnalysisResult:
        """Analyze peer requirements of ``dependencies`` + ``dev_dependencies``.

        Args:
            dependencies: Production dependencies, name to range.
            dev_dependencies: Development dependencies, name to range.

        Returns:
            The analysis result. ``modified_dependencies`` is
            ``dependencies`` with the add and update resolutions applied.

        Raises:
            AnalysisPhaseError: A phase failed outside per-package
                recovery, or ``analysis_timeout`` expired.
        """
        all_dependencies = {**dependencies, **(dev_dependencies or {})}
        self._reset(len(all_dependencies))

        if not all_dependencies:
            self._set_phase(Phase.COMPLETE)
            return AnalysisResult(
                modified_dependencies=dict(dependencies),
                cache_stats=self.cache_stats(),
            )

        timeout = self.config.analysis_timeout
        try:
            if timeout is None:
                result = await self._run(dependencies, all_dependencies)
            else:
                result = await asyncio.wait_for(
                    self._run(dependencies, all_dependencies), timeout
                )
        except asyncio.TimeoutError as exc:
            self._fail(f"Peer dependency analysis timed out after {timeout}s", exc)
        except Exception as exc:
            self._fail(f"Peer dependency analysis failed: {exc}", exc)

        self.resolver.save_disk_cache()
        return result

    async def get_peer_dependencies(self, name: str, version_range: str) -> Dict[str, str]:
        """Return the peer requirements of ``name@version_range``.

        Results from real registry data are memoized per analyzer.
        """
        key = f"peers:{cache_key(name, version_range)}"
        cached = self._peer_cache.get(key)
        if cached is not None:
            return dict(cached)

        manifest = await self.resolver.resolve(name, version_range)
        peers = dict(manifest.peer_dependencies)
        if not manifest.degraded:
            self._peer_cache[key] = peers
        return dict(peers)

    def clear_cache(self) -> None:
        """Drop in-memory manifests and memoized peer requirements."""
        self.resolver.clear_memory()
        self._peer_cache.clear()

    def cache_stats(self) -> CacheStats:
        return self.resolver.cache_stats(peer_entries=len(self._peer_cache))

    def state(self) -> Dict[str, Any]:
        """Snapshot of the current phase and run counters."""
        return {
            "phase": self.phase.value,
            "total_packages": self._total,
            "processed_packages": self._processed,
            "conflicts_found": self._conflicts_found,
            "resolutions_generated": self._resolutions_generated,
            "warnings_generated": len(self.diagnostics.warnings),
            "errors_encountered": len(self.diagnostics.errors),
        }

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run(
        self, dependencies: Dict[str, str], all_dependencies: Dict[str, str]
    ) -> AnalysisResult:
        self._set_phase(Phase.INITIALIZING)

        self._set_phase(Phase.FETCHING)
        manifests = await self._fetch_all(all_dependencies)

        self._set_phase(Phase.EXTRACTING)
        peer_map = self._extract(all_dependencies, manifests)

        self._set_phase(Phase.ANALYZING)
        conflicts = self._detect(peer_map, all_dependencies)
        self._conflicts_found = len(conflicts)

        self._set_phase(Phase.RESOLVING)
        resolutions = self._resolve(conflicts)
        self._resolutions_generated = len(resolutions)

        self._set_phase(Phase.FINALIZING)
        result = self._finalize(dependencies, all_dependencies, manifests, peer_map, conflicts, resolutions)

        self._set_phase(Phase.COMPLETE)
        return result

    async def _fetch_all(self, dependencies: Dict[str, str]) -> List[PackageManifest]:
        """Fetch every manifest in batches, keeping input order."""
        items = list(dependencies.items())
        batch_size = self.config.batch_size
        manifests: List[PackageManifest] = []

        for start in range(0, len(items), batch_size):
            batch = items[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self._fetch_one(name, version_range) for name, version_range in batch),
                return_exceptions=True,
            )

            for (name, version_range), outcome in zip(batch, outcomes):
                if isinstance(outcome, PackageManifest):
                    manifests.append(outcome)
                elif isinstance(outcome, Exception):
                    manifests.append(self._fetch_failed(name, version_range, outcome))
                else:
                    raise outcome

            if start + batch_size < len(items):
                await asyncio.sleep(self.config.batch_delay)

        return manifests

    async def _fetch_one(self, name: str, version_range: str) -> PackageManifest:
        try:
            return await self.resolver.resolve(name, version_range)
        finally:
            self._processed += 1
            self._emit(
                Phase.FETCHING,
                f"Fetched info for {name} ({self._processed}/{self._total})",
                package=name,
            )

    def _fetch_failed(self, name: str, version_range: str, error: Exception) -> PackageManifest:
        self._fetch_failures += 1
        self.diagnostics.warn(
            "package_info_fetch_failed",
            f"Failed to fetch package info for {name}@{version_range}: {error}",
            package=name,
            version=version_range,
        )
        return PackageManifest.fallback_for(
            name, version_range, FallbackReason.FETCH_FAILED, fetch_error=str(error)
        )

    def _extract(
        self, dependencies: Dict[str, str], manifests: List[PackageManifest]
    ) -> Dict[str, Dict[str, str]]:
        peer_map: Dict[str, Dict[str, str]] = {}
        for (name, version_range), manifest in zip(dependencies.items(), manifests):
            if not manifest.degraded:
                self._peer_cache[f"peers:{cache_key(name, version_range)}"] = dict(
                    manifest.peer_dependencies
                )
            if manifest.has_peer_dependencies:
                peer_map[name] = dict(manifest.peer_dependencies)
        logger.debug("%d of %d packages declare peer dependencies", len(peer_map), len(manifests))
        return peer_map

    @staticmethod
    def _detect(
        peer_map: Dict[str, Dict[str, str]], dependencies: Dict[str, str]
    ) -> List[Conflict]:
        conflicts: List[Conflict] = []

        for package, peers in peer_map.items():
            for peer, required in peers.items():
                installed = dependencies.get(peer)
                if installed is None:
                    conflicts.append(
                        Conflict(
                            ConflictType.MISSING_PEER,
                            package,
                            peer,
                            required,
                            None,
                            Severity.HIGH,
                        )
                    )
                    continue

                satisfied = check_satisfies(installed, required)
                if satisfied is None:
                    conflicts.append(
                        Conflict(
                            ConflictType.VERSION_CHECK_FAILED,
                            package,
                            peer,
                            required,
                            installed,
                            Severity.LOW,
                        )
                    )
                elif not satisfied:
                    conflicts.append(
                        Conflict(
                            ConflictType.VERSION_MISMATCH,
                            package,
                            peer,
                            required,
                            installed,
                            Severity.MEDIUM,
                        )
                    )

        return conflicts

    @staticmethod
    def _resolve(conflicts: List[Conflict]) -> List[Resolution]:
        resolutions: List[Resolution] = []

        for conflict in conflicts:
            if conflict.type is ConflictType.MISSING_PEER:
                resolutions.append(
                    Resolution(
                        ResolutionAction.ADD,
                        conflict.peer_dependency,
                        Confidence.HIGH,
                        f"Required as peer dependency by {conflict.package}",
                        version=conflict.required_version,
                        conflict=conflict,
                    )
                )
            elif conflict.type is ConflictType.VERSION_MISMATCH:
                target = find_compatible_version(
                    conflict.installed_version, conflict.required_version
                )
                if target is None:
                    logger.debug("No compatible version found for %s", conflict.peer_dependency)
                    continue
                resolutions.append(
                    Resolution(
                        ResolutionAction.UPDATE,
                        conflict.peer_dependency,
                        Confidence.MEDIUM,
                        f"Updated to satisfy peer dependency requirement from {conflict.package}",
                        from_version=conflict.installed_version,
                        to_version=target,
                        conflict=conflict,
                    )
                )
            else:
                resolutions.append(
                    Resolution(
                        ResolutionAction.WARN,
                        conflict.peer_dependency,
                        Confidence.LOW,
                        f"Could not verify compatibility with {conflict.package}, "
                        "proceeding with current version",
                        version=conflict.installed_version,
                        conflict=conflict,
                    )
                )

        return resolutions

    def _finalize(
        self,
        dependencies: Dict[str, str],
        all_dependencies: Dict[str, str],
        manifests: List[PackageManifest],
        peer_map: Dict[str, Dict[str, str]],
        conflicts: List[Conflict],
        resolutions: List[Resolution],
    ) -> AnalysisResult:
        pairs = list(zip(all_dependencies.items(), manifests))
        edge_cases = self._edge_cases(pairs)
        diagnostics = self.diagnostics

        summary = AnalysisSummary(
            total_packages=len(all_dependencies),
            packages_with_peer_dependencies=len(peer_map),
            conflicts_detected=len(conflicts),
            conflicts_resolved=len(resolutions),
            warnings_generated=len(diagnostics.warnings),
            errors_encountered=len(diagnostics.errors),
            packages_processed=self._processed,
            packages_failed=self.resolver.failed_packages + self._fetch_failures,
            packages_skipped=self.resolver.skipped_packages,
            network_errors=len(diagnostics.network_errors),
            malformed_packages=len(diagnostics.malformed_packages),
            fallbacks_used=sum(1 for m in manifests if m.fallback),
        )

        logger.info(
            "Analyzed %d packages: %d conflicts, %d resolutions (success rate %s)",
            summary.total_packages,
            summary.conflicts_detected,
            summary.conflicts_resolved,
            summary.success_rate,
        )

        return AnalysisResult(
            success=True,
            summary=summary,
            conflicts=conflicts,
            resolutions=resolutions,
            warnings=list(diagnostics.warnings),
            errors=list(diagnostics.errors),
            network_errors=list(diagnostics.network_errors),
            malformed_packages=list(diagnostics.malformed_packages),
            edge_cases=edge_cases,
            recommendations=self._recommendations(conflicts, resolutions),
            modified_dependencies=apply_resolutions(dependencies, resolutions),
            cache_stats=self.cache_stats(),
        )

    def _edge_cases(
        self, pairs: List[Tuple[Tuple[str, str], PackageManifest]]
    ) -> EdgeCaseReport:
        fallback_packages: List[FallbackPackage] = []
        invalid_packages: List[FallbackPackage] = []
        offline_packages: List[str] = []

        for (name, version_range), manifest in pairs:
            if manifest.offline:
                offline_packages.append(name)
            if not manifest.fallback:
                continue
            entry = FallbackPackage(name, version_range, manifest.fallback_reason, manifest.fetch_error)
            if manifest.fallback_reason is FallbackReason.INVALID_NAME:
                invalid_packages.append(entry)
            else:
                fallback_packages.append(entry)

        grouped: Dict[str, List[NetworkFailure]] = {}
        for failure in self.diagnostics.network_errors:
            grouped.setdefault(failure.package, []).append(failure)
        network_failures = [
            NetworkFailureGroup(
                package=package,
                attempts=len(failures),
                last_error=failures[-1].error,
                first_attempt=failures[0].timestamp,
                last_attempt=failures[-1].timestamp,
            )
            for package, failures in grouped.items()
        ]

        recommendations: List[Recommendation] = []
        if fallback_packages:
            recommendations.append(
                Recommendation(
                    "fallback_packages",
                    f"{len(fallback_packages)} packages used fallback data",
                    "Consider checking network connectivity or package availability",
                    severity=Severity.MEDIUM,
                )
            )
        if network_failures:
            recommendations.append(
                Recommendation(
                    "network_issues",
                    f"{len(network_failures)} packages experienced network failures",
                    "Check network connectivity and npm registry accessibility",
                    severity=Severity.HIGH,
                )
            )
        malformed = len(self.diagnostics.malformed_packages)
        if malformed:
            recommendations.append(
                Recommendation(
                    "malformed_packages",
                    f"{malformed} packages have invalid names or structure",
                    "Review package names and versions for typos or invalid formats",
                    severity=Severity.HIGH,
                )
            )
        if self.config.resolver.offline and offline_packages:
            recommendations.append(
                Recommendation(
                    "offline_mode",
                    f"Analysis ran in offline mode with {len(offline_packages)} packages",
                    "Results may be incomplete. Run online for full analysis",
                    severity=Severity.LOW,
                )
            )

        return EdgeCaseReport(
            fallback_packages=fallback_packages,
            offline_packages=offline_packages,
            invalid_packages=invalid_packages,
            network_failures=network_failures,
            recommendations=recommendations,
        )

    @staticmethod
    def _recommendations(
        conflicts: List[Conflict], resolutions: List[Resolution]
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []

        high = [c for c in conflicts if c.severity is Severity.HIGH]
        if high:
            recommendations.append(
                Recommendation(
                    "high_priority",
                    f"{len(high)} high-severity peer dependency conflicts detected",
                    "Review and resolve these conflicts before proceeding",
                    packages=list(dict.fromkeys(c.package for c in high)),
                )
            )

        resolved = {r.conflict for r in resolutions}
        unresolved = [c for c in conflicts if c not in resolved]
        if unresolved:
            recommendations.append(
                Recommendation(
                    "manual_review",
                    f"{len(unresolved)} conflicts could not be automatically resolved",
                    "Manual review and resolution required",
                    packages=list(dict.fromkeys(c.package for c in unresolved)),
                )
            )

        if len(conflicts) > len(resolutions):
            recommendations.append(
                Recommendation(
                    "installation_flags",
                    f"Consider using {LEGACY_PEER_DEPS_FLAG} flag during installation",
                    f"Add {LEGACY_PEER_DEPS_FLAG} to npm install command if conflicts persist",
                )
            )

        return recommendations

    # ------------------------------------------------------------------
    # State and progress
    # ------------------------------------------------------------------

    def _reset(self, total: int) -> None:
        self.resolver.reset_counters()
        self.phase = Phase.IDLE
        self._total = total
        self._processed = 0
        self._fetch_failures = 0
        self._conflicts_found = 0
        self._resolutions_generated = 0

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        logger.info(_PHASE_MESSAGES[phase])
        self._emit(phase, _PHASE_MESSAGES[phase])

    def _emit(self, phase: Phase, message: str, *, package: Optional[str] = None) -> None:
        if self.progress_listener is None:
            return
        percentage = self._processed / self._total * 100 if self._total else 0.0
        self.progress_listener(
            ProgressEvent(
                phase=phase,
                message=message,
                processed=self._processed,
                total=self._total,
                percentage=percentage,
                package=package,
            )
        )

    def _fail(self, message: str, error: BaseException) -> NoReturn:
        failed_phase = self.phase
        self.phase = Phase.ERROR
        self.diagnostics.error("analysis_error", message)
        self._emit(Phase.ERROR, message)
        self.resolver.save_disk_cache()
        raise AnalysisPhaseError(
            message, phase=failed_phase.value, original_error=error
        ) from error
