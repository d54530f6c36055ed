from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest
from semantic_version import Version

from peerkeeper.core.registry import RegistryClient
from peerkeeper.exceptions import RegistryFetchError
from peerkeeper.utils.version_utils import parse_range
from peerkeeper.config import AnalyzerConfig, MergerConfig, ResolverConfig


class FakeRegistry(RegistryClient):
    """In-memory registry backend that records every call.

    Manifests are registered with :meth:`add`. Errors queued with
    :meth:`fail` are raised by ``fetch_manifest`` (oldest first) before
    the real manifest is returned.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.manifests: Dict[str, Dict[str, Any]] = {}
        self.latest: Dict[str, str] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.resolve_calls: List[Tuple[str, str]] = []
        self.fetch_calls: List[Tuple[str, str]] = []
        self.delay = delay
        self.closed = False

    def add(
        self,
        name: str,
        version: str,
        *,
        peers: Optional[Dict[str, str]] = None,
        dependencies: Optional[Dict[str, str]] = None,
        latest: bool = True,
    ) -> "FakeRegistry":
        payload: Dict[str, Any] = {"name": name, "version": version}
        if peers:
            payload["peerDependencies"] = dict(peers)
        if dependencies:
            payload["dependencies"] = dict(dependencies)
        self.manifests[f"{name}@{version}"] = payload
        if latest:
            self.latest[name] = version
        return self

    def fail(self, name: str, *errors: Exception) -> "FakeRegistry":
        self.failures.setdefault(name, []).extend(errors)
        return self

    @property
    def call_count(self) -> int:
        return len(self.resolve_calls) + len(self.fetch_calls)

    def _versions(self, name: str) -> List[Version]:
        prefix = f"{name}@"
        return [Version(key[len(prefix):]) for key in self.manifests if key.startswith(prefix)]

    async def resolve_version(self, name: str, version_range: str) -> str:
        self.resolve_calls.append((name, version_range))
        if self.delay:
            await asyncio.sleep(self.delay)

        spec = parse_range(version_range)
        best = spec.select(self._versions(name)) if spec is not None else None
        if best is None:
            raise RegistryFetchError(f"No match for {name}@{version_range}", package_name=name)
        return str(best)

    async def fetch_manifest(self, name: str, version: str) -> Dict[str, Any]:
        self.fetch_calls.append((name, version))
        if self.delay:
            await asyncio.sleep(self.delay)

        queued = self.failures.get(name)
        if queued:
            raise queued.pop(0)

        if version == "latest" and name in self.latest:
            version = self.latest[name]
        payload = self.manifests.get(f"{name}@{version}")
        if payload is None:
            raise RegistryFetchError(f"{name}@{version} not found", package_name=name, exit_code=404)
        return dict(payload)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_registry() -> type:
    """The :class:`FakeRegistry` class, for tests that need a fresh or empty one."""
    return FakeRegistry


@pytest.fixture
def registry() -> FakeRegistry:
    """A registry holding a small React ecosystem."""
    fake = FakeRegistry()
    fake.add("react", "17.0.2", latest=False)
    fake.add("react", "18.2.0")
    fake.add("react-dom", "18.2.0", peers={"react": "^18.2.0"})
    fake.add("react-router-dom", "6.20.0", peers={"react": ">=16.8", "react-dom": ">=16.8"})
    fake.add("@types/react", "18.2.0")
    fake.add("next", "14.0.0", peers={"react": "^18.2.0", "react-dom": "^18.2.0"})
    fake.add("lodash", "4.17.21")
    return fake


@pytest.fixture
def resolver_config() -> ResolverConfig:
    """Resolver settings with no backoff and no on-disk cache."""
    return ResolverConfig(retry_delay=0, persist_cache=False, timeout=5)


@pytest.fixture
def analyzer_config(resolver_config: ResolverConfig) -> AnalyzerConfig:
    return AnalyzerConfig(resolver=resolver_config, batch_delay=0)


@pytest.fixture
def merger_config(analyzer_config: AnalyzerConfig) -> MergerConfig:
    return MergerConfig(analyzer=analyzer_config)
