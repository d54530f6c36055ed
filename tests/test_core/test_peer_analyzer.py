from __future__ import annotations

from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, patch

import pytest

from peerkeeper.config import AnalyzerConfig, ResolverConfig
from peerkeeper.core.peer_analyzer import PeerDependencyAnalyzer
from peerkeeper.exceptions import AnalysisPhaseError, NetworkError
from peerkeeper.models.manifest import FallbackReason
from peerkeeper.models.conflict import (
    Confidence,
    Conflict,
    ConflictType,
    ResolutionAction,
    Severity,
)
from peerkeeper.models.results import Phase, ProgressEvent


@pytest.fixture
def analyzer(registry, analyzer_config) -> PeerDependencyAnalyzer:
    return PeerDependencyAnalyzer(analyzer_config, registry=registry)


@pytest.mark.unit
class TestConflictDetection:
    """Tests for the conflicts and resolutions an analysis produces."""

    @pytest.mark.asyncio
    async def test_missing_peer_is_added(self, analyzer) -> None:
        """Test a missing peer yields a high severity conflict and a high confidence add."""
        result = await analyzer.analyze({"react-dom": "^18.2.0"})

        assert result.success is True
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.type is ConflictType.MISSING_PEER
        assert conflict.package == "react-dom"
        assert conflict.peer_dependency == "react"
        assert conflict.required_version == "^18.2.0"
        assert conflict.installed_version is None
        assert conflict.severity is Severity.HIGH

        resolution = result.resolutions[0]
        assert resolution.action is ResolutionAction.ADD
        assert resolution.package == "react"
        assert resolution.version == "^18.2.0"
        assert resolution.confidence is Confidence.HIGH
        assert resolution.reason == "Required as peer dependency by react-dom"
        assert result.modified_dependencies == {"react-dom": "^18.2.0", "react": "^18.2.0"}

    @pytest.mark.asyncio
    async def test_version_mismatch_is_updated(self, analyzer) -> None:
        result = await analyzer.analyze({"react": "^17.0.2", "react-dom": "^18.2.0"})

        conflict = result.conflicts[0]
        assert conflict.type is ConflictType.VERSION_MISMATCH
        assert conflict.installed_version == "^17.0.2"
        assert conflict.severity is Severity.MEDIUM
        assert conflict.message == "react-dom requires react@^18.2.0 but ^17.0.2 is installed"

        resolution = result.resolutions[0]
        assert resolution.action is ResolutionAction.UPDATE
        assert resolution.from_version == "^17.0.2"
        assert resolution.to_version == "^18.2.0"
        assert resolution.confidence is Confidence.MEDIUM
        assert result.modified_dependencies["react"] == "^18.2.0"

    @pytest.mark.asyncio
    async def test_unparsable_installed_range_warns(self, analyzer) -> None:
        """Test an uncoercible installed range yields a low severity warning only."""
        result = await analyzer.analyze({"react": "latest", "react-dom": "^18.2.0"})

        assert [c.type for c in result.conflicts] == [ConflictType.VERSION_CHECK_FAILED]
        assert result.conflicts[0].severity is Severity.LOW
        resolution = result.resolutions[0]
        assert resolution.action is ResolutionAction.WARN
        assert resolution.confidence is Confidence.LOW
        assert resolution.mutates is False
        assert result.modified_dependencies == {"react": "latest", "react-dom": "^18.2.0"}

    @pytest.mark.asyncio
    async def test_satisfied_peers_produce_nothing(self, analyzer) -> None:
        deps = {"react": "^18.2.0", "react-dom": "^18.2.0", "react-router-dom": "^6.20.0"}

        result = await analyzer.analyze(deps)

        assert result.conflicts == []
        assert result.resolutions == []
        assert result.recommendations == []
        assert result.summary.packages_with_peer_dependencies == 2
        assert result.summary.success_rate == "100.00%"

    @pytest.mark.asyncio
    async def test_dev_dependencies_satisfy_peers(self, analyzer) -> None:
        """Test dev dependencies count as installed but stay out of the modified set."""
        result = await analyzer.analyze({"react-dom": "^18.2.0"}, {"react": "^18.2.0"})

        assert result.conflicts == []
        assert result.modified_dependencies == {"react-dom": "^18.2.0"}
        assert result.summary.total_packages == 2

    @pytest.mark.asyncio
    async def test_empty_input(self, analyzer, registry) -> None:
        result = await analyzer.analyze({})

        assert result.success is True
        assert result.summary.total_packages == 0
        assert analyzer.phase is Phase.COMPLETE
        assert registry.call_count == 0

    @pytest.mark.asyncio
    async def test_high_priority_recommendation(self, analyzer) -> None:
        result = await analyzer.analyze({"next": "^14.0.0"})

        assert [c.peer_dependency for c in result.conflicts] == ["react", "react-dom"]
        assert result.recommendations[0].type == "high_priority"
        assert result.recommendations[0].packages == ["next"]
        assert result.needs_relaxed_peer_deps is False


@pytest.mark.unit
class TestRecommendations:
    """Tests for recommendations derived from conflicts and resolutions."""

    def test_unresolved_conflicts_need_manual_review(self) -> None:
        conflict = Conflict(
            ConflictType.VERSION_MISMATCH, "react-dom", "react", "^18.2.0", "^17.0.2", Severity.MEDIUM
        )

        recommendations = PeerDependencyAnalyzer._recommendations([conflict], [])

        assert [r.type for r in recommendations] == ["manual_review", "installation_flags"]
        assert recommendations[0].packages == ["react-dom"]
        assert "--legacy-peer-deps" in recommendations[1].message


@pytest.mark.unit
class TestDegradedData:
    """Tests for offline mode, network failures and invalid names."""

    @pytest.mark.asyncio
    async def test_offline_makes_zero_registry_calls(self, registry) -> None:
        config = AnalyzerConfig(resolver=ResolverConfig(offline=True, persist_cache=False))
        analyzer = PeerDependencyAnalyzer(config, registry=registry)

        result = await analyzer.analyze({"react-dom": "^18.2.0", "lodash": "^4.17.0"})

        assert registry.call_count == 0
        assert result.conflicts == []
        assert result.edge_cases.offline_packages == ["react-dom", "lodash"]
        assert [r.type for r in result.edge_cases.recommendations] == ["offline_mode"]

    @pytest.mark.asyncio
    async def test_network_failures_are_grouped(self, analyzer, registry) -> None:
        registry.fail("react-dom", NetworkError("ETIMEDOUT"), NetworkError("ETIMEDOUT"))

        result = await analyzer.analyze({"react-dom": "^18.2.0"})

        assert len(result.network_errors) == 2
        assert result.summary.network_errors == 2
        groups = result.edge_cases.network_failures
        assert [(g.package, g.attempts) for g in groups] == [("react-dom", 2)]
        assert "network_issues" in [r.type for r in result.edge_cases.recommendations]
        # The third attempt succeeded, so the peer is still detected
        assert result.conflicts[0].type is ConflictType.MISSING_PEER

    @pytest.mark.asyncio
    async def test_invalid_names_are_reported(self, analyzer) -> None:
        result = await analyzer.analyze({"Bad Name": "^1.0.0", "lodash": "^4.17.0"})

        assert [m.name for m in result.malformed_packages] == ["Bad Name"]
        invalid = result.edge_cases.invalid_packages
        assert [(p.package, p.reason) for p in invalid] == [("Bad Name", FallbackReason.INVALID_NAME)]
        assert "malformed_packages" in [r.type for r in result.edge_cases.recommendations]
        assert result.summary.fallbacks_used == 1

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_becomes_fallback(self, analyzer) -> None:
        """Test an exception escaping the resolver is recovered for that package only."""
        original = analyzer.resolver.resolve

        async def flaky(name: str, version_range: str):
            if name == "lodash":
                raise RuntimeError("resolver bug")
            return await original(name, version_range)

        with patch.object(analyzer.resolver, "resolve", side_effect=flaky):
            result = await analyzer.analyze({"lodash": "^4.17.0", "react-dom": "^18.2.0"})

        assert result.success is True
        assert result.summary.packages_failed == 1
        assert result.warnings[0].category == "package_info_fetch_failed"
        fallback = result.edge_cases.fallback_packages
        assert [(p.package, p.reason) for p in fallback] == [("lodash", FallbackReason.FETCH_FAILED)]
        assert [c.package for c in result.conflicts] == ["react-dom"]


@pytest.mark.unit
class TestOrchestration:
    """Tests for phases, progress, batching, caching and failures."""

    @pytest.mark.asyncio
    async def test_progress_events(self, registry, analyzer_config) -> None:
        events: List[ProgressEvent] = []
        analyzer = PeerDependencyAnalyzer(
            analyzer_config, registry=registry, progress_listener=events.append
        )

        await analyzer.analyze({"react": "^18.2.0", "react-dom": "^18.2.0"})

        phases = [e.phase for e in events]
        assert list(dict.fromkeys(phases)) == [
            Phase.INITIALIZING,
            Phase.FETCHING,
            Phase.EXTRACTING,
            Phase.ANALYZING,
            Phase.RESOLVING,
            Phase.FINALIZING,
            Phase.COMPLETE,
        ]
        fetched = [e for e in events if e.package is not None]
        assert [e.processed for e in fetched] == [1, 2]
        assert sorted(e.package for e in fetched) == ["react", "react-dom"]
        assert fetched[-1].message.endswith("(2/2)")
        assert events[-1].percentage == 100.0
        assert analyzer.phase is Phase.COMPLETE

    @pytest.mark.asyncio
    async def test_batches_pause_between_batches(self, registry) -> None:
        config = AnalyzerConfig(
            resolver=ResolverConfig(persist_cache=False), batch_size=2, batch_delay=0.25
        )
        analyzer = PeerDependencyAnalyzer(config, registry=registry)
        deps = {name: "*" for name in ("react", "react-dom", "lodash", "next", "@types/react")}

        with patch("peerkeeper.core.peer_analyzer.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await analyzer.analyze(deps)

        assert [c.args[0] for c in sleep.call_args_list] == [0.25, 0.25]
        assert result.summary.packages_processed == 5

    @pytest.mark.asyncio
    async def test_reanalysis_hits_memory_cache(self, analyzer, registry) -> None:
        deps = {"react": "^17.0.2", "react-dom": "^18.2.0"}

        first = await analyzer.analyze(deps)
        calls = registry.call_count
        second = await analyzer.analyze(deps)

        assert registry.call_count == calls
        assert second.conflicts == first.conflicts
        assert second.resolutions == first.resolutions
        assert second.cache_stats.memory_hits == 2

    @pytest.mark.asyncio
    async def test_get_peer_dependencies_is_memoized(self, analyzer, registry) -> None:
        peers = await analyzer.get_peer_dependencies("react-dom", "^18.2.0")
        calls = registry.call_count
        again = await analyzer.get_peer_dependencies("react-dom", "^18.2.0")

        assert peers == again == {"react": "^18.2.0"}
        assert registry.call_count == calls
        assert analyzer.cache_stats().peer_entries == 1

    @pytest.mark.asyncio
    async def test_clear_cache(self, analyzer, registry) -> None:
        await analyzer.analyze({"react": "^18.2.0"})
        analyzer.clear_cache()
        calls = registry.call_count

        await analyzer.analyze({"react": "^18.2.0"})

        assert registry.call_count > calls

    @pytest.mark.asyncio
    async def test_state_snapshot(self, analyzer) -> None:
        await analyzer.analyze({"react-dom": "^18.2.0"})

        state = analyzer.state()

        assert state["phase"] == "complete"
        assert state["total_packages"] == 1
        assert state["processed_packages"] == 1
        assert state["conflicts_found"] == 1
        assert state["resolutions_generated"] == 1

    @pytest.mark.asyncio
    async def test_timeout_raises_phase_error(self, make_registry) -> None:
        slow = make_registry(delay=1.0).add("react", "18.2.0")
        config = AnalyzerConfig(
            resolver=ResolverConfig(persist_cache=False), analysis_timeout=0.05
        )
        analyzer = PeerDependencyAnalyzer(config, registry=slow)

        with pytest.raises(AnalysisPhaseError) as exc_info:
            await analyzer.analyze({"react": "^18.2.0"})

        assert exc_info.value.phase == "fetching"
        assert "timed out" in exc_info.value.message
        assert analyzer.phase is Phase.ERROR
        assert analyzer.diagnostics.errors[-1].category == "analysis_error"

    @pytest.mark.asyncio
    async def test_phase_failure_raises_phase_error(self, analyzer) -> None:
        with patch.object(analyzer, "_detect", side_effect=RuntimeError("boom")):
            with pytest.raises(AnalysisPhaseError) as exc_info:
                await analyzer.analyze({"react-dom": "^18.2.0"})

        assert exc_info.value.phase == "analyzing"
        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert analyzer.phase is Phase.ERROR

    @pytest.mark.asyncio
    async def test_disk_cache_loaded_by_next_analyzer(
        self, registry, make_registry, tmp_path: Path
    ) -> None:
        config = AnalyzerConfig(
            resolver=ResolverConfig(retry_delay=0, cache_dir=str(tmp_path)), batch_delay=0
        )
        await PeerDependencyAnalyzer(config, registry=registry).analyze({"react-dom": "^18.2.0"})

        empty = make_registry()
        result = await PeerDependencyAnalyzer(config, registry=empty).analyze(
            {"react-dom": "^18.2.0"}
        )

        assert empty.call_count == 0
        assert result.cache_stats.disk_hits == 1
        assert result.conflicts[0].peer_dependency == "react"

    @pytest.mark.asyncio
    async def test_offline_analysis_reads_disk_cache(
        self, registry, make_registry, tmp_path: Path
    ) -> None:
        """Test cached manifests read offline still count as offline packages."""
        online = AnalyzerConfig(
            resolver=ResolverConfig(retry_delay=0, cache_dir=str(tmp_path)), batch_delay=0
        )
        await PeerDependencyAnalyzer(online, registry=registry).analyze({"react-dom": "^18.2.0"})

        offline = AnalyzerConfig(
            resolver=ResolverConfig(offline=True, cache_dir=str(tmp_path)), batch_delay=0
        )
        empty = make_registry()
        result = await PeerDependencyAnalyzer(offline, registry=empty).analyze(
            {"react-dom": "^18.2.0"}
        )

        assert empty.call_count == 0
        assert result.edge_cases.offline_packages == ["react-dom"]
        assert [r.type for r in result.edge_cases.recommendations] == ["offline_mode"]
        assert result.conflicts[0].peer_dependency == "react"

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_registry(self, analyzer_config) -> None:
        async with PeerDependencyAnalyzer(analyzer_config) as analyzer:
            registry = analyzer.resolver.registry
            registry.close = AsyncMock()

        registry.close.assert_awaited_once()
