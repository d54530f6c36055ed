"""
Centralized constants for peerkeeper.

This module defines immutable configuration values used across peerkeeper,
including registry settings, retry and batching defaults, cache locations,
and logging formats. All values are intended to be treated as read-only.
"""

import os
import tempfile
from typing import Final, Sequence

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = "peerkeeper/{version} (+https://github.com/peerkeeper/peerkeeper)"

# ---------------------------------------------------------------------------
# Registry endpoints
# ---------------------------------------------------------------------------

#: Default public npm registry.
DEFAULT_REGISTRY_URL: Final[str] = "https://registry.npmjs.org/"

#: Supported registry backends.
REGISTRY_BACKENDS: Final[Sequence[str]] = ("http", "npm")

#: Default backend used to query the registry.
DEFAULT_REGISTRY_BACKEND: Final[str] = "http"

#: Executable invoked by the ``npm`` backend.
NPM_EXECUTABLE: Final[str] = "npm"

# ---------------------------------------------------------------------------
# Network configuration
# ---------------------------------------------------------------------------

#: Default per-attempt timeout in seconds.
DEFAULT_TIMEOUT: Final[float] = 30.0

#: Default number of manifest fetch attempts.
DEFAULT_MAX_RETRIES: Final[int] = 3

#: Base delay (seconds) for exponential backoff between attempts.
DEFAULT_RETRY_DELAY: Final[float] = 1.0

#: Seconds between a graceful terminate and a forced kill of a registry subprocess.
DEFAULT_KILL_GRACE_PERIOD: Final[float] = 5.0

#: Substrings that mark an error message as network related.
NETWORK_ERROR_PATTERNS: Final[Sequence[str]] = (
    "enotfound",
    "econnrefused",
    "etimedout",
    "econnreset",
    "network",
    "timeout",
    "timed out",
    "registry",
    "fetch failed",
    "connection",
)

# ---------------------------------------------------------------------------
# Analysis configuration
# ---------------------------------------------------------------------------

#: Number of packages fetched concurrently per batch.
DEFAULT_BATCH_SIZE: Final[int] = 5

#: Delay (seconds) between fetch batches to respect registry rate limits.
DEFAULT_BATCH_DELAY: Final[float] = 0.1

#: Default conflict resolution strategy for the merger.
DEFAULT_STRATEGY: Final[str] = "smart"

#: Merge strategies understood by the version compatibility engine.
MERGE_STRATEGIES: Final[Sequence[str]] = ("highest", "lowest", "compatible", "smart", "manual")

#: Maximum length of an npm package name.
MAX_PACKAGE_NAME_LENGTH: Final[int] = 214

#: npm package name syntax (optional ``@scope/`` prefix).
PACKAGE_NAME_PATTERN: Final[str] = r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$"

#: Dist-tag used as the last-chance fallback when a range cannot be fetched.
LATEST_TAG: Final[str] = "latest"

# ---------------------------------------------------------------------------
# Cache configuration
# ---------------------------------------------------------------------------

#: Default directory for the persistent metadata cache.
DEFAULT_CACHE_DIR: Final[str] = os.path.join(
    tempfile.gettempdir(), "peerkeeper-peer-cache"
)

#: File name of the persistent metadata cache inside the cache directory.
CACHE_FILE_NAME: Final[str] = "package-cache.json"

# ---------------------------------------------------------------------------
# Security constraints
# ---------------------------------------------------------------------------

#: Maximum allowed file size (in bytes) when reading template or cache files.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
