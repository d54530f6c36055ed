"""Package metadata resolver for peerkeeper.

Turns a declared ``name@range`` into a :class:`PackageManifest`. The
resolver never raises for per-package problems: bad names, registry
outages and malformed answers all degrade to a fallback manifest tagged
with the reason, plus a recorded diagnostic.

Resolution order for one package:

1. Validate the name (npm rules, at most 214 characters).
2. Memory cache, then disk cache (promoted into memory on a hit). In
   offline mode a hit is returned tagged ``offline``.
3. Offline mode: a minimal ``offline`` manifest, no registry access.
4. Resolve the concrete version (one attempt; on failure coerce the
   range). Reuse a manifest already cached for ``name@version``.
5. Fetch the manifest with bounded retries and exponential backoff.
6. On exhaustion: cached manifest of another range, then ``latest``,
   then a ``skipped_malformed`` or ``fetch_failed`` fallback.

Typical usage::

    async with PackageMetadataResolver(ResolverConfig()) as resolver:
        manifest = await resolver.resolve("react-dom", "^18.2.0")
        print(manifest.peer_dependencies)   # {'react': '^18.2.0'}
"""

from __future__ import annotations

import re
import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from peerkeeper.config import ResolverConfig
from peerkeeper.utils.version_utils import coerce
from peerkeeper.core.cache import DiskCache, MemoryCache, MetadataCache
from peerkeeper.utils.logger import get_logger, level_for_severity
from peerkeeper.core.registry import RegistryClient, create_registry, is_network_error
from peerkeeper.constants import LATEST_TAG, MAX_PACKAGE_NAME_LENGTH, PACKAGE_NAME_PATTERN
from peerkeeper.exceptions import (
    FileOperationError,
    InvalidPackageName,
    ManifestParseError,
)
from peerkeeper.models.conflict import Severity
from peerkeeper.models.manifest import FallbackReason, PackageManifest, cache_key
from peerkeeper.models.results import CacheStats, Diagnostic, MalformedPackage, NetworkFailure

logger = get_logger("resolver")

__all__ = ["PackageMetadataResolver", "DiagnosticLog", "check_package_name"]

_NAME_RE = re.compile(PACKAGE_NAME_PATTERN)


def check_package_name(name: Any) -> None:
    """Validate an npm package name.

    Raises:
        InvalidPackageName: ``name`` is empty, too long, or breaks npm
            naming rules (lowercase, URL-safe, optional ``@scope/``).
    """
    if not name or not isinstance(name, str):
        raise InvalidPackageName(str(name), reason="name must be a non-empty string")
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        raise InvalidPackageName(
            name, reason=f"name exceeds {MAX_PACKAGE_NAME_LENGTH} characters"
        )
    if not _NAME_RE.match(name):
        raise InvalidPackageName(name, reason="name contains invalid characters")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@dataclass
class DiagnosticLog:
    """Warnings, errors and per-package failure records for one run.

    Shared between the resolver and the analyzer that owns it, so every
    recoverable failure ends up in the same ordered lists.
    """

    warnings: List[Diagnostic] = field(default_factory=list)
    errors: List[Diagnostic] = field(default_factory=list)
    network_errors: List[NetworkFailure] = field(default_factory=list)
    malformed_packages: List[MalformedPackage] = field(default_factory=list)

    def warn(self, category: str, message: str, **kwargs: Any) -> Diagnostic:
        """Record (and log) a warning."""
        diagnostic = Diagnostic(category, message, **kwargs)
        self.warnings.append(diagnostic)
        logger.log(level_for_severity(diagnostic.severity.value), "%s: %s", category, message)
        return diagnostic

    def error(self, category: str, message: str, **kwargs: Any) -> Diagnostic:
        """Record (and log) an error."""
        kwargs.setdefault("severity", Severity.HIGH)
        diagnostic = Diagnostic(category, message, **kwargs)
        self.errors.append(diagnostic)
        logger.error("%s: %s", category, message)
        return diagnostic

    def clear(self) -> None:
        self.warnings.clear()
        self.errors.clear()
        self.network_errors.clear()
        self.malformed_packages.clear()


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class PackageMetadataResolver:
    """Resolve ``name@range`` pairs into package manifests.

    Each resolver owns its caches and counters; independent resolvers
    never share state.

    Args:
        config: Resolver settings.
        registry: Registry backend. Built from ``config`` when omitted.
        memory_cache: In-memory tier. A fresh :class:`MemoryCache` when
            omitted.
        disk_cache: On-disk tier. Built from ``config.cache_dir`` when
            ``config.persist_cache`` is set and none is given.
        diagnostics: Shared diagnostic log.
    """

    def __init__(
        self,
        config: Optional[ResolverConfig] = None,
        *,
        registry: Optional[RegistryClient] = None,
        memory_cache: Optional[MetadataCache] = None,
        disk_cache: Optional[DiskCache] = None,
        diagnostics: Optional[DiagnosticLog] = None,
    ) -> None:
        self.config = config or ResolverConfig()
        self._owns_registry = registry is None
        self.registry = registry or create_registry(self.config)
        self.memory: MetadataCache = memory_cache if memory_cache is not None else MemoryCache()
        if disk_cache is None and self.config.persist_cache:
            disk_cache = DiskCache(self.config.cache_dir)
        self.disk: Optional[DiskCache] = disk_cache
        self.diagnostics = diagnostics or DiagnosticLog()

        self.failed_packages = 0
        self.skipped_packages = 0
        self.memory_hits = 0
        self.disk_hits = 0

    async def __aenter__(self) -> "PackageMetadataResolver":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the registry backend if this resolver created it."""
        if self._owns_registry:
            await self.registry.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, name: str, version_range: str) -> PackageManifest:
        """Return the manifest ``name@version_range`` would install.

        Never raises for per-package failures; see the module docstring
        for the degradation order.
        """
        try:
            check_package_name(name)
        except InvalidPackageName as exc:
            self._record_malformed(name, version_range, exc)
            return PackageManifest.fallback_for(
                str(name), version_range, FallbackReason.INVALID_NAME, fetch_error=str(exc)
            )

        key = cache_key(name, version_range)
        cached = self._lookup(key)
        if cached is not None:
            if self.config.offline and not cached.offline:
                return replace(cached, offline=True)
            return cached

        if self.config.offline:
            logger.debug("Offline mode, synthesizing manifest for %s", key)
            return PackageManifest.offline_for(name, version_range)

        resolved = await self._resolve_version(name, version_range)
        resolved_key = cache_key(name, resolved)

        if self.config.cache_enabled:
            known = self.memory.get(resolved_key)
            if known is not None:
                logger.debug("Reusing %s for %s", resolved_key, key)
                self.memory_hits += 1
                self.memory.put(key, known)
                return known

        try:
            payload = await self._fetch_with_retry(name, resolved, self.config.retries)
        except Exception as exc:
            self.diagnostics.error(
                "package_info_error",
                f"Failed to fetch package info for {key}: {exc}",
                package=name,
                version=version_range,
                severity=Severity.HIGH if is_network_error(exc) else Severity.MEDIUM,
            )
            return await self._fallback(name, version_range, exc)

        manifest = PackageManifest.from_registry(
            payload, name=name, version=resolved, registry=self.config.registry_url
        )
        self._store(manifest, key, resolved_key)
        return manifest

    def reset_counters(self) -> None:
        """Clear diagnostics and counters before a new analysis run."""
        self.diagnostics.clear()
        self.failed_packages = 0
        self.skipped_packages = 0
        self.memory_hits = 0
        self.disk_hits = 0

    def clear_memory(self) -> None:
        self.memory.clear()

    def load_disk_cache(self) -> int:
        """Load the persistent cache file; returns the number of entries."""
        if self.disk is None:
            return 0
        return self.disk.load()

    def save_disk_cache(self) -> bool:
        """Write the persistent cache file.

        A write failure is recorded as an ``offline_cache_save_failed``
        warning rather than raised.

        Returns:
            True when the file was written.
        """
        if self.disk is None or len(self.disk) == 0:
            return False
        try:
            self.disk.save()
        except FileOperationError as exc:
            self.diagnostics.warn(
                "offline_cache_save_failed",
                f"Failed to save offline cache: {exc}",
                severity=Severity.LOW,
            )
            return False
        return True

    def cache_stats(self, *, peer_entries: int = 0) -> CacheStats:
        return CacheStats(
            memory_entries=len(self.memory),
            disk_entries=len(self.disk) if self.disk is not None else 0,
            memory_hits=self.memory_hits,
            disk_hits=self.disk_hits,
            peer_entries=peer_entries,
            persistent=self.disk is not None,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record_malformed(self, name: Any, version: str, exc: InvalidPackageName) -> None:
        self.diagnostics.malformed_packages.append(
            MalformedPackage(name=str(name), version=version, reason=exc.reason or str(exc))
        )
        self.diagnostics.warn(
            "malformed_package",
            f"Malformed package detected: {exc.message}",
            package=str(name),
            version=version,
        )

    def _lookup(self, key: str) -> Optional[PackageManifest]:
        if self.config.cache_enabled:
            manifest = self.memory.get(key)
            if manifest is not None:
                self.memory_hits += 1
                logger.debug("Memory cache hit for %s", key)
                return manifest

        if self.disk is not None:
            manifest = self.disk.get(key)
            if manifest is not None:
                self.disk_hits += 1
                logger.debug("Disk cache hit for %s", key)
                if self.config.cache_enabled:
                    self.memory.put(key, manifest)
                return manifest

        return None

    def _store(self, manifest: PackageManifest, *keys: str) -> None:
        for key in keys:
            if self.config.cache_enabled:
                self.memory.put(key, manifest)
            if self.disk is not None:
                self.disk.put(key, manifest)

    async def _resolve_version(self, name: str, version_range: str) -> str:
        """Ask the registry once; coerce the range if that fails."""
        try:
            return await asyncio.wait_for(
                self.registry.resolve_version(name, version_range),
                self.config.timeout,
            )
        except Exception as exc:
            coerced = coerce(version_range)
            fallback = str(coerced) if coerced is not None else version_range
            logger.debug(
                "Could not resolve %s@%s (%s), using %s",
                name,
                version_range,
                exc,
                fallback,
            )
            return fallback

    async def _fetch_with_retry(
        self, name: str, version: str, attempts: int, *, first_attempt: int = 1
    ) -> Dict[str, Any]:
        """Fetch and validate a manifest, retrying with exponential backoff.

        Every failed attempt classified as network related is recorded as
        a :class:`NetworkFailure`, numbered from ``first_attempt`` so that
        follow-up attempts for the same package continue the count.

        Raises:
            Exception: The last error once ``attempts`` are exhausted.
        """
        last_error: Optional[Exception] = None

        for attempt in range(first_attempt, first_attempt + attempts):
            try:
                payload = await asyncio.wait_for(
                    self.registry.fetch_manifest(name, version),
                    self.config.timeout,
                )
                return self._validated(payload, name)
            except Exception as exc:
                last_error = exc
                if is_network_error(exc):
                    self.diagnostics.network_errors.append(
                        NetworkFailure(
                            package=name,
                            version=version,
                            attempt=attempt,
                            error=str(exc) or type(exc).__name__,
                        )
                    )
                logger.debug(
                    "Fetch %s@%s failed (attempt %d): %s", name, version, attempt, exc
                )

            if attempt < first_attempt + attempts - 1:
                delay = self.config.retry_delay * 2 ** (attempt - first_attempt)
                logger.debug("Retrying %s@%s in %.2fs", name, version, delay)
                await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    @staticmethod
    def _validated(payload: Any, name: str) -> Dict[str, Any]:
        if not isinstance(payload, Mapping):
            raise ManifestParseError(
                f"Invalid package info structure for {name}",
                package_name=name,
                payload=repr(payload),
            )
        if not payload.get("name") or not payload.get("version"):
            raise ManifestParseError(
                f"Package info for {name} lacks name or version",
                package_name=name,
                payload=repr(dict(payload)),
            )
        return dict(payload)

    async def _fallback(
        self, name: str, version_range: str, error: Exception
    ) -> PackageManifest:
        if self.config.fallback_to_cache:
            cached = self.memory.find_by_package(name)
            if cached is None and self.disk is not None:
                cached = self.disk.find_by_package(name)
            if cached is not None:
                self.diagnostics.warn(
                    "using_cached_fallback",
                    f"Using cached {name}@{cached.version} as fallback",
                    package=name,
                    version=version_range,
                )
                return cached.as_fallback(FallbackReason.CACHED_VERSION)

        if version_range != LATEST_TAG:
            try:
                payload = await self._fetch_with_retry(
                    name, LATEST_TAG, 1, first_attempt=self.config.retries + 1
                )
            except Exception as latest_error:
                logger.debug("Latest fallback for %s failed: %s", name, latest_error)
            else:
                self.diagnostics.warn(
                    "using_latest_fallback",
                    f"Using latest {name} instead of {version_range}",
                    package=name,
                    version=version_range,
                )
                manifest = PackageManifest.from_registry(
                    payload, name=name, version=LATEST_TAG, registry=self.config.registry_url
                )
                return manifest.as_fallback(FallbackReason.LATEST_TAG)

        if self.config.skip_malformed:
            self.skipped_packages += 1
            return PackageManifest.fallback_for(
                name, version_range, FallbackReason.SKIPPED_MALFORMED, fetch_error=str(error)
            )

        self.failed_packages += 1
        return PackageManifest.fallback_for(
            name, version_range, FallbackReason.FETCH_FAILED, fetch_error=str(error)
        )
