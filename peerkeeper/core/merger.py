"""Dependency merging for peerkeeper.

:class:`DependencyMerger` folds the package declarations of several
feature templates into one ``dependencies`` / ``devDependencies`` /
``peerDependencies`` set:

1. Entries are merged in template declaration order. When two templates
   declare different ranges for the same package, the version
   compatibility engine picks one under the configured strategy.
2. The merged set is checked against the known incompatibility table.
3. Optionally, the peer dependency analyzer runs on the merged set and
   its high-confidence fixes are applied.

Typical usage::

    from peerkeeper.core.merger import DependencyMerger
    from peerkeeper.models.template import TemplateDeclaration

    templates = [
        TemplateDeclaration.of("ui", {"react": "^17.0.2"}),
        TemplateDeclaration.of("router", {"react": "^18.2.0", "react-router": "^6.20.0"}),
    ]

    async with DependencyMerger(MergerConfig(strategy="highest")) as merger:
        result = await merger.merge(templates)

    print(result.dependencies["react"])    # ^18.2.0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from peerkeeper.config import MergerConfig
from peerkeeper.constants import MERGE_STRATEGIES
from peerkeeper.exceptions import AnalysisPhaseError, ConfigError
from peerkeeper.utils.logger import get_logger, level_for_severity
from peerkeeper.core.registry import RegistryClient
from peerkeeper.core.peer_analyzer import PeerDependencyAnalyzer
from peerkeeper.core.known_issues import check_known_incompatibilities
from peerkeeper.core.compatibility import (
    ManualResolutionRequired,
    Resolved,
    Strategy,
    analyze_compatibility,
    check_satisfies,
    fallback_resolution,
    resolve,
)
from peerkeeper.models.manifest import PackageRef
from peerkeeper.models.template import TemplateDeclaration
from peerkeeper.models.conflict import (
    Confidence,
    MergeConflict,
    MergeResolution,
    Resolution,
    ResolutionAction,
    Severity,
    VersionSource,
)
from peerkeeper.models.results import (
    AnalysisResult,
    Diagnostic,
    MergeResult,
    MergeSummary,
    ProgressListener,
    ResolutionSummary,
)

logger = get_logger("merger")

__all__ = ["DependencyMerger", "PEER_ANALYSIS_STRATEGY"]

#: ``MergeResolution.strategy`` of changes driven by the peer analyzer.
PEER_ANALYSIS_STRATEGY = "peer_dependency_analysis"

DEPENDENCIES = "dependencies"
DEV_DEPENDENCIES = "devDependencies"
PEER_DEPENDENCIES = "peerDependencies"


@dataclass
class _MergeState:
    """Working set of a single :meth:`DependencyMerger.merge` call."""

    strategy: Strategy
    maps: Dict[str, Dict[str, str]] = field(
        default_factory=lambda: {DEPENDENCIES: {}, DEV_DEPENDENCIES: {}, PEER_DEPENDENCIES: {}}
    )
    # (dependency type, package) -> template that declared the current range
    sources: Dict[Tuple[str, str], str] = field(default_factory=dict)
    conflicts: List[MergeConflict] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    errors: List[Diagnostic] = field(default_factory=list)
    resolutions: List[MergeResolution] = field(default_factory=list)
    compatibility_issues: int = 0
    # packages whose range was set by a peer resolution in this merge
    peer_applied: Set[str] = field(default_factory=set)

    def warn(self, category: str, message: str, **kwargs: Any) -> None:
        diagnostic = Diagnostic(category, message, **kwargs)
        self.warnings.append(diagnostic)
        logger.log(level_for_severity(diagnostic.severity.value), message)


class DependencyMerger:
    """Merge template dependency declarations into one resolved set.

    Args:
        config: Merger settings. ``config.analyzer`` configures the peer
            analyzer built on first use.
        analyzer: Pre-built peer analyzer.
        registry: Registry backend for the analyzer built on first use.
        progress_listener: Forwarded to the analyzer built on first use.
    """

    def __init__(
        self,
        config: Optional[MergerConfig] = None,
        *,
        analyzer: Optional[PeerDependencyAnalyzer] = None,
        registry: Optional[RegistryClient] = None,
        progress_listener: Optional[ProgressListener] = None,
    ) -> None:
        self.config = config or MergerConfig()
        self.strategy = Strategy(self.config.strategy)
        self._analyzer = analyzer
        self._registry = registry
        self._progress_listener = progress_listener

        self._last_conflicts: List[MergeConflict] = []
        self._last_resolutions: List[MergeResolution] = []

    async def __aenter__(self) -> "DependencyMerger":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._analyzer is not None:
            await self._analyzer.close()

    @property
    def analyzer(self) -> PeerDependencyAnalyzer:
        """Peer analyzer, created on first access."""
        if self._analyzer is None:
            self._analyzer = PeerDependencyAnalyzer(
                self.config.analyzer,
                registry=self._registry,
                progress_listener=self._progress_listener,
            )
        return self._analyzer

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def merge(
        self,
        templates: Iterable[TemplateDeclaration],
        strategy: Union[Strategy, str, None] = None,
    ) -> MergeResult:
        """Merge ``templates`` in order into a single dependency set.

        Args:
            templates: Template declarations, in declaration order.
            strategy: Overrides the configured strategy for this call.

        Returns:
            The merged set with every conflict, resolution and warning
            recorded along the way. ``success`` is ``False`` when the
            peer analysis failed; the merged set is still usable.

        Raises:
            ConfigError: ``strategy`` is not a known strategy.
        """
        templates = list(templates)
        state = _MergeState(self._validate(strategy) if strategy is not None else self.strategy)

        logger.info(
            "Merging %d templates with the %s strategy", len(templates), state.strategy.value
        )

        for template in templates:
            for dependency_type, refs in (
                (DEPENDENCIES, template.packages),
                (DEV_DEPENDENCIES, template.dev_packages),
                (PEER_DEPENDENCIES, template.peer_dependencies),
            ):
                for ref in refs:
                    self._merge_package(state, dependency_type, ref, template.template_id)

        self._check_known_issues(state)

        analysis: Optional[AnalysisResult] = None
        if self.config.enable_peer_analysis:
            analysis = await self._run_peer_analysis(state)

        self._last_conflicts = list(state.conflicts)
        self._last_resolutions = list(state.resolutions)

        return MergeResult(
            dependencies=state.maps[DEPENDENCIES],
            dev_dependencies=state.maps[DEV_DEPENDENCIES],
            peer_dependencies=state.maps[PEER_DEPENDENCIES],
            conflicts=state.conflicts,
            warnings=state.warnings,
            errors=state.errors,
            resolutions=state.resolutions,
            peer_analysis=analysis,
            summary=self._summarize(state, len(templates), analysis),
            success=not state.errors,
        )

    def conflict_report(self) -> Dict[str, Any]:
        """Break down the conflicts of the last merge.

        Returns:
            ``total``, counts ``by_severity`` and ``by_confidence``, and
            the ``resolved`` and ``unresolved`` conflicts as JSON dicts.
        """
        severities = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)
        by_severity = {s.value: 0 for s in severities}
        for conflict in self._last_conflicts:
            by_severity[conflict.severity.value] += 1

        by_confidence = {c.value: 0 for c in Confidence}
        for resolution in self._last_resolutions:
            if resolution.strategy != PEER_ANALYSIS_STRATEGY:
                by_confidence[resolution.confidence.value] += 1

        return {
            "total": len(self._last_conflicts),
            "by_severity": by_severity,
            "by_confidence": by_confidence,
            "resolved": [c.to_json() for c in self._last_conflicts if c.error is None],
            "unresolved": [c.to_json() for c in self._last_conflicts if c.error is not None],
        }

    def set_strategy(self, strategy: Union[Strategy, str]) -> None:
        """Change the default strategy.

        Raises:
            ConfigError: ``strategy`` is not a known strategy.
        """
        self.strategy = self._validate(strategy)
        logger.debug("Merge strategy set to %s", self.strategy.value)

    def clear_state(self) -> None:
        """Forget the last merge and drop the analyzer's in-memory caches."""
        self._last_conflicts = []
        self._last_resolutions = []
        if self._analyzer is not None:
            self._analyzer.clear_cache()

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(strategy: Union[Strategy, str]) -> Strategy:
        value = strategy.value if isinstance(strategy, Strategy) else strategy
        if value not in MERGE_STRATEGIES:
            raise ConfigError(
                f"Invalid strategy: {value}. Must be one of: {', '.join(MERGE_STRATEGIES)}",
                option="strategy",
            )
        return Strategy(value)

    def _merge_package(
        self, state: _MergeState, dependency_type: str, ref: PackageRef, template_id: str
    ) -> None:
        target = state.maps[dependency_type]
        name, wanted = ref.name, ref.version_range
        source_key = (dependency_type, name)

        existing = target.get(name)
        if existing is None:
            target[name] = wanted
            state.sources[source_key] = template_id
            return
        if existing == wanted:
            return

        versions = [
            VersionSource(existing, state.sources.get(source_key, "previous")),
            VersionSource(wanted, template_id),
        ]
        strategy = state.strategy
        outcome = resolve(existing, wanted, strategy, package=name)

        if isinstance(outcome, Resolved):
            chosen = outcome.version
            conflict = MergeConflict(
                package=name,
                dependency_type=dependency_type,
                versions=versions,
                resolution=chosen,
                strategy=strategy.value,
                severity=outcome.severity,
                compatibility=outcome.compatibility,
                recommendation=outcome.recommendation or None,
            )
            state.resolutions.append(
                MergeResolution(name, existing, chosen, strategy.value, outcome.confidence)
            )
            if outcome.severity is Severity.HIGH:
                state.warn(
                    "high_risk_resolution",
                    f"High-risk version conflict resolved for {name}: {existing} → {chosen}. "
                    f"{outcome.recommendation}".rstrip(),
                    severity=Severity.HIGH,
                    package=name,
                    version=chosen,
                    recommendation=outcome.recommendation or None,
                )
            elif outcome.severity is Severity.MEDIUM:
                state.warn(
                    "version_conflict",
                    f"Version conflict resolved for {name}: {existing} → {chosen}",
                    package=name,
                    version=chosen,
                    recommendation=outcome.recommendation or None,
                )
        else:
            chosen = fallback_resolution(existing, wanted)
            if isinstance(outcome, ManualResolutionRequired):
                recommendation = "Please manually specify the desired version for this package"
                state.warn(
                    "manual_resolution_required",
                    outcome.reason,
                    severity=Severity.HIGH,
                    package=name,
                    version=chosen,
                    recommendation=recommendation,
                )
            else:
                recommendation = "Using fallback resolution strategy"
                state.warn(
                    "resolution_error",
                    f"Error resolving version conflict for {name}: {outcome.reason}",
                    severity=Severity.HIGH,
                    package=name,
                    version=chosen,
                    recommendation=recommendation,
                )
            conflict = MergeConflict(
                package=name,
                dependency_type=dependency_type,
                versions=versions,
                resolution=chosen,
                strategy=strategy.value,
                severity=Severity.CRITICAL,
                compatibility=analyze_compatibility(existing, wanted),
                recommendation=recommendation,
                error=outcome.reason,
                requires_review=True,
            )

        state.conflicts.append(conflict)
        target[name] = chosen
        if chosen == wanted:
            state.sources[source_key] = template_id

    def _check_known_issues(self, state: _MergeState) -> None:
        combined = {**state.maps[DEPENDENCIES], **state.maps[DEV_DEPENDENCIES]}
        for issue in check_known_incompatibilities(combined):
            state.compatibility_issues += 1
            state.warn(
                "known_incompatibility",
                issue.message,
                severity=Severity.HIGH,
                package=issue.package,
                recommendation=issue.recommendation,
            )

    # ------------------------------------------------------------------
    # Peer analysis
    # ------------------------------------------------------------------

    async def _run_peer_analysis(self, state: _MergeState) -> Optional[AnalysisResult]:
        try:
            analysis = await self.analyzer.analyze(
                dict(state.maps[DEPENDENCIES]), dict(state.maps[DEV_DEPENDENCIES])
            )
        except AnalysisPhaseError as exc:
            logger.error("Peer dependency analysis failed: %s", exc)
            state.errors.append(
                Diagnostic(
                    "peer_analysis_error",
                    f"Peer dependency analysis failed: {exc.message}",
                    severity=Severity.HIGH,
                    recommendation="Continuing without peer dependency analysis",
                )
            )
            return None

        for resolution in analysis.resolutions:
            if resolution.confidence is Confidence.HIGH and resolution.mutates:
                self._apply_peer_resolution(state, resolution)
            else:
                kind = resolution.conflict.type.value if resolution.conflict else resolution.action.value
                state.warn(
                    "peer_dependency_warning",
                    f"Peer dependency issue detected for {resolution.package}: {kind}",
                    severity=resolution.conflict.severity if resolution.conflict else Severity.MEDIUM,
                    package=resolution.package,
                    recommendation=resolution.reason,
                )

        return analysis

    def _apply_peer_resolution(self, state: _MergeState, resolution: Resolution) -> None:
        name = resolution.package
        target_version = resolution.target_version
        assert target_version is not None
        requirer = resolution.conflict.package if resolution.conflict else PEER_ANALYSIS_STRATEGY

        dependency_type: Optional[str] = None
        for candidate in (DEPENDENCIES, DEV_DEPENDENCIES):
            if name in state.maps[candidate]:
                dependency_type = candidate
                break

        if dependency_type is None:
            if resolution.action is ResolutionAction.ADD:
                self._record_peer_change(state, DEPENDENCIES, resolution, requirer)
            else:
                state.warn(
                    "peer_dependency_warning",
                    f"Cannot update {name} to {target_version} for {requirer}: "
                    f"{name} is not in the dependency set",
                    package=name,
                    version=target_version,
                    recommendation=resolution.reason,
                )
            return

        current = state.maps[dependency_type][name]
        if current == target_version:
            return

        # An update is only competing when an earlier peer fix already moved the range
        competing = resolution.action is ResolutionAction.ADD or name in state.peer_applied
        if not competing:
            self._record_peer_change(state, dependency_type, resolution, requirer)
            return

        if check_satisfies(current, target_version):
            logger.debug(
                "%s@%s already satisfies %s required by %s", name, current, target_version, requirer
            )
            return

        holder = state.sources.get((dependency_type, name), "previous")
        state.warn(
            "peer_dependency_warning",
            f"Conflicting peer requirements for {name}: {current} (from {holder}) "
            f"and {target_version} (from {requirer})",
            severity=Severity.HIGH,
            package=name,
            version=target_version,
            recommendation="Check that every dependent supports the resolved version",
        )
        self._merge_package(
            state, dependency_type, PackageRef(name, target_version), f"{requirer} (peer)"
        )

    @staticmethod
    def _record_peer_change(
        state: _MergeState, dependency_type: str, resolution: Resolution, requirer: str
    ) -> None:
        name = resolution.package
        target_version = resolution.target_version
        assert target_version is not None

        target = state.maps[dependency_type]
        from_version = target.get(name)
        target[name] = target_version
        state.sources[(dependency_type, name)] = f"{requirer} (peer)"
        state.peer_applied.add(name)

        logger.info(
            "Applied peer dependency resolution for %s: %s → %s",
            name,
            from_version or "missing",
            target_version,
        )
        state.resolutions.append(
            MergeResolution(
                name,
                from_version,
                target_version,
                PEER_ANALYSIS_STRATEGY,
                resolution.confidence,
                reason=resolution.reason,
            )
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @staticmethod
    def _summarize(
        state: _MergeState, total_templates: int, analysis: Optional[AnalysisResult]
    ) -> MergeSummary:
        by_confidence = {c.value: 0 for c in Confidence}
        for resolution in state.resolutions:
            by_confidence[resolution.confidence.value] += 1

        recommendations: List[str] = []
        if by_confidence[Confidence.LOW.value] > 0:
            recommendations.append("Consider manually reviewing low-confidence resolutions")
        if state.compatibility_issues > 0:
            recommendations.append("Address known compatibility issues before proceeding")

        return MergeSummary(
            total_templates=total_templates,
            total_packages=sum(len(m) for m in state.maps.values()),
            conflicts=len(state.conflicts),
            warnings=len(state.warnings),
            resolutions=len(state.resolutions),
            compatibility_issues=state.compatibility_issues,
            peer_issues=len(analysis.conflicts) if analysis is not None else 0,
            strategy=state.strategy.value,
            resolution_summary=ResolutionSummary(
                total=len(state.resolutions),
                by_confidence=by_confidence,
                recommendations=recommendations,
            ),
        )
