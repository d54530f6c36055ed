"""Two-tier metadata cache for peerkeeper.

Resolved :class:`~peerkeeper.models.manifest.PackageManifest` objects are
stored under ``name@range`` and ``name@version`` keys in two tiers that
share one interface:

* :class:`MemoryCache` - a plain dict guarded by a lock, private to one
  analyzer instance.
* :class:`DiskCache` - the same interface backed by a JSON file that
  survives between runs (``<cache_dir>/package-cache.json``).

Typical usage::

    memory = MemoryCache()
    disk = DiskCache("/tmp/peerkeeper-peer-cache")
    disk.load()

    manifest = memory.get("react@^18.2.0") or disk.get("react@^18.2.0")
    ...
    disk.save()
"""

from __future__ import annotations

import threading
from pathlib import Path
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Union

from peerkeeper.constants import CACHE_FILE_NAME
from peerkeeper.utils.logger import get_logger
from peerkeeper.exceptions import FileOperationError
from peerkeeper.models.manifest import PackageManifest
from peerkeeper.utils.filesystem import read_json_file, write_json_file

logger = get_logger("cache")

__all__ = ["MetadataCache", "MemoryCache", "DiskCache"]


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class MetadataCache(ABC):
    """Key/value store for package manifests.

    Keys are composite ``name@range`` or ``name@version`` strings. Writes
    are last-writer-wins; callers never read-modify-write an entry.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[PackageManifest]:
        """Return the manifest stored under ``key`` or ``None``."""

    @abstractmethod
    def put(self, key: str, manifest: PackageManifest) -> None:
        """Store ``manifest`` under ``key``."""

    @abstractmethod
    def has(self, key: str) -> bool:
        """Return True if ``key`` is present."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    @abstractmethod
    def keys(self) -> List[str]:
        """Return a snapshot of the stored keys in insertion order."""

    @abstractmethod
    def __len__(self) -> int: ...

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def find_by_package(self, name: str) -> Optional[PackageManifest]:
        """Return the first non-degraded manifest cached for ``name``.

        Used by the resolver's ``cached_version`` fallback, which accepts
        metadata recorded for the same package at any other range.
        """
        prefix = f"{name}@"
        for key in self.keys():
            if not key.startswith(prefix):
                continue
            manifest = self.get(key)
            if manifest is not None and not manifest.degraded:
                return manifest
        return None


# ---------------------------------------------------------------------------
# In-memory tier
# ---------------------------------------------------------------------------


class MemoryCache(MetadataCache):
    """Process-local cache backed by a dict and a :class:`threading.Lock`."""

    def __init__(self) -> None:
        self._entries: Dict[str, PackageManifest] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[PackageManifest]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, manifest: PackageManifest) -> None:
        with self._lock:
            self._entries[key] = manifest

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"MemoryCache(entries={len(self)})"


# ---------------------------------------------------------------------------
# On-disk tier
# ---------------------------------------------------------------------------


class DiskCache(MemoryCache):
    """Memory cache mirrored to ``<directory>/package-cache.json``.

    Entries live in memory between :meth:`load` and :meth:`save`. The
    file holds ``{"name@range": manifest_json}``; a missing file is an
    empty cache and a corrupt one is discarded with a warning.

    Args:
        directory: Directory holding the cache file (created on save).
        file_name: Name of the cache file.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        file_name: str = CACHE_FILE_NAME,
    ) -> None:
        super().__init__()
        self.directory = Path(directory)
        self.path = self.directory / file_name

    def load(self) -> int:
        """Replace the in-memory entries with the file contents.

        Returns:
            Number of entries loaded. ``0`` when the file is missing,
            unreadable or corrupt.
        """
        self.clear()

        if not self.path.exists():
            logger.debug("No disk cache at %s", self.path)
            return 0

        try:
            raw = read_json_file(self.path)
        except FileOperationError as exc:
            logger.warning("Ignoring unreadable disk cache %s: %s", self.path, exc)
            return 0

        if not isinstance(raw, dict):
            logger.warning("Ignoring disk cache %s: top level is not an object", self.path)
            return 0

        loaded = 0
        for key, payload in raw.items():
            if not isinstance(payload, dict):
                logger.debug("Skipping malformed cache entry %s", key)
                continue
            try:
                manifest = PackageManifest.from_json(payload)
            except ValueError as exc:
                logger.debug("Skipping malformed cache entry %s: %s", key, exc)
                continue
            self.put(key, manifest)
            loaded += 1

        logger.debug("Loaded %d entries from disk cache %s", loaded, self.path)
        return loaded

    def save(self) -> Path:
        """Write every entry to the cache file atomically.

        Raises:
            FileOperationError: The file could not be written.
        """
        with self._lock:
            snapshot = {key: m.to_json() for key, m in self._entries.items()}

        path = write_json_file(self.path, snapshot)
        logger.debug("Saved %d entries to disk cache %s", len(snapshot), path)
        return path

    def __repr__(self) -> str:
        return f"DiskCache(path={str(self.path)!r}, entries={len(self)})"
