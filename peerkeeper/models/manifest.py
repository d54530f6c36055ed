"""
Package reference and manifest models for peerkeeper.

A :class:`PackageRef` is what a template declares (a name plus an npm
range). A :class:`PackageManifest` is what the registry says about one
concrete version of that package, or a synthesized stand-in tagged with
the reason real metadata could not be obtained.
"""

from __future__ import annotations

from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def cache_key(name: str, version: str) -> str:
    """Build the composite ``name@version`` cache key."""
    return f"{name}@{version}"


class FallbackReason(str, Enum):
    """Why a manifest was synthesized instead of fetched."""

    INVALID_NAME = "invalid_name"
    CACHED_VERSION = "cached_version"
    LATEST_TAG = "latest_tag"
    SKIPPED_MALFORMED = "skipped_malformed"
    FETCH_FAILED = "fetch_failed"


@dataclass(frozen=True)
class PackageRef:
    """A declared package requirement.

    Args:
        name: npm package name, optionally scoped (``@types/react``).
        version_range: npm range expression (``^18.2.0``).
    """

    name: str
    version_range: str

    @property
    def key(self) -> str:
        return cache_key(self.name, self.version_range)

    def __str__(self) -> str:
        return self.key


def _str_map(value: Any) -> Dict[str, str]:
    """Coerce a registry mapping into ``{str: str}``, dropping junk."""
    if not isinstance(value, Mapping):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


@dataclass(frozen=True)
class PackageManifest:
    """Resolved metadata for one package at one concrete version.

    Instances are immutable once created and shared between every cache
    key that resolves to them.

    Attributes:
        name: Package name.
        version: Concrete version (or the requested range for fallbacks).
        peer_dependencies: Declared peer requirements ``{name: range}``.
        dependencies: Declared runtime dependencies.
        dev_dependencies: Declared development dependencies.
        engines: Engine constraints (``{"node": ">=18"}``).
        fallback: ``True`` when the manifest was synthesized.
        fallback_reason: Why it was synthesized.
        offline: ``True`` when produced in offline mode.
        fetch_error: Last error seen while fetching, if any.
        fetched_at: ISO-8601 creation time.
    """

    name: str
    version: str
    peer_dependencies: Dict[str, str] = field(default_factory=dict)
    dependencies: Dict[str, str] = field(default_factory=dict)
    dev_dependencies: Dict[str, str] = field(default_factory=dict)
    engines: Dict[str, str] = field(default_factory=dict)
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    homepage: str = ""
    repository: Dict[str, Any] = field(default_factory=dict)
    bugs: Dict[str, Any] = field(default_factory=dict)
    license: str = ""
    registry: Optional[str] = None

    fallback: bool = False
    fallback_reason: Optional[FallbackReason] = None
    offline: bool = False
    fetch_error: Optional[str] = None
    fetched_at: str = field(default_factory=utc_timestamp)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_registry(
        cls,
        payload: Mapping[str, Any],
        *,
        name: str,
        version: str,
        registry: Optional[str] = None,
    ) -> "PackageManifest":
        """Normalize a raw registry document into a manifest.

        Missing collections default to empty, missing scalars to ``""``.
        ``repository`` and ``bugs`` may be plain URL strings in the wild;
        they are wrapped as ``{"url": ...}``.
        """
        repository = payload.get("repository") or {}
        if isinstance(repository, str):
            repository = {"url": repository}
        bugs = payload.get("bugs") or {}
        if isinstance(bugs, str):
            bugs = {"url": bugs}

        keywords = payload.get("keywords") or []
        if not isinstance(keywords, list):
            keywords = [str(keywords)]

        license_value = payload.get("license") or ""
        if isinstance(license_value, Mapping):
            license_value = license_value.get("type", "")

        return cls(
            name=str(payload.get("name") or name),
            version=str(payload.get("version") or version),
            peer_dependencies=_str_map(payload.get("peerDependencies")),
            dependencies=_str_map(payload.get("dependencies")),
            dev_dependencies=_str_map(payload.get("devDependencies")),
            engines=_str_map(payload.get("engines")),
            description=str(payload.get("description") or ""),
            keywords=[str(k) for k in keywords],
            homepage=str(payload.get("homepage") or ""),
            repository=dict(repository) if isinstance(repository, Mapping) else {},
            bugs=dict(bugs) if isinstance(bugs, Mapping) else {},
            license=str(license_value),
            registry=registry,
        )

    @classmethod
    def fallback_for(
        cls,
        name: str,
        version: str,
        reason: FallbackReason,
        *,
        fetch_error: Optional[str] = None,
    ) -> "PackageManifest":
        """Synthesize an empty manifest tagged with ``reason``."""
        return cls(
            name=name,
            version=version,
            fallback=True,
            fallback_reason=reason,
            fetch_error=fetch_error,
        )

    @classmethod
    def offline_for(cls, name: str, version: str) -> "PackageManifest":
        """Synthesize the minimal manifest returned in offline mode."""
        return cls(name=name, version=version, offline=True)

    def as_fallback(self, reason: FallbackReason) -> "PackageManifest":
        """Return a copy of this manifest re-tagged as a fallback."""
        return replace(self, fallback=True, fallback_reason=reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def has_peer_dependencies(self) -> bool:
        return bool(self.peer_dependencies)

    @property
    def degraded(self) -> bool:
        """True for fallback or offline manifests."""
        return self.fallback or self.offline

    # ------------------------------------------------------------------
    # Serialization (disk cache)
    # ------------------------------------------------------------------

    def to_json(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation using npm field names."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "peerDependencies": dict(self.peer_dependencies),
            "dependencies": dict(self.dependencies),
            "devDependencies": dict(self.dev_dependencies),
            "engines": dict(self.engines),
            "keywords": list(self.keywords),
            "homepage": self.homepage,
            "repository": dict(self.repository),
            "bugs": dict(self.bugs),
            "license": self.license,
            "_registry": self.registry,
            "_fallback": self.fallback,
            "_fallbackReason": self.fallback_reason.value if self.fallback_reason else None,
            "_offline": self.offline,
            "_fetchError": self.fetch_error,
            "_fetchedAt": self.fetched_at,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "PackageManifest":
        """Rebuild a manifest previously produced by :meth:`to_json`.

        Raises:
            ValueError: ``data`` lacks ``name`` or ``version`` or carries an
                unknown fallback reason.
        """
        if not data.get("name") or not data.get("version"):
            raise ValueError("cached manifest is missing name or version")

        manifest = cls.from_registry(
            data,
            name=str(data["name"]),
            version=str(data["version"]),
            registry=data.get("_registry"),
        )
        reason = data.get("_fallbackReason")
        return replace(
            manifest,
            fallback=bool(data.get("_fallback", False)),
            fallback_reason=FallbackReason(reason) if reason else None,
            offline=bool(data.get("_offline", False)),
            fetch_error=data.get("_fetchError"),
            fetched_at=str(data.get("_fetchedAt") or manifest.fetched_at),
        )
