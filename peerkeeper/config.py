"""Configuration for peerkeeper.

Each component takes an explicit configuration object with documented
defaults, validated at construction:

- :class:`ResolverConfig` - registry access, retries, caching, fallbacks
- :class:`AnalyzerConfig` - batching and the overall analysis timeout
- :class:`MergerConfig` - merge strategy and peer analysis toggle

Settings can also be read from a TOML file. Two formats are supported:

- ``peerkeeper.toml`` - settings under ``[peerkeeper]`` table
- ``pyproject.toml`` - settings under ``[tool.peerkeeper]`` table

Discovery order:

1. Explicit path from ``--config`` or ``PEERKEEPER_CONFIG``
2. ``peerkeeper.toml`` in current directory
3. ``pyproject.toml`` with ``[tool.peerkeeper]`` section

Configuration precedence: defaults < config file < CLI args.

Typical usage::

    config = load_config()  # Auto-discover
    merger = DependencyMerger(config.to_merger_config())

Example (``peerkeeper.toml``)::

    [peerkeeper]
    strategy = "highest"
    retries = 5
    registry_url = "https://npm.example.com/"
"""

from __future__ import annotations

import tomli as tomllib
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from peerkeeper.exceptions import ConfigError
from peerkeeper.utils.logger import get_logger
from peerkeeper.constants import (
    DEFAULT_BATCH_DELAY,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CACHE_DIR,
    DEFAULT_KILL_GRACE_PERIOD,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REGISTRY_BACKEND,
    DEFAULT_REGISTRY_URL,
    DEFAULT_RETRY_DELAY,
    DEFAULT_STRATEGY,
    DEFAULT_TIMEOUT,
    MERGE_STRATEGIES,
    REGISTRY_BACKENDS,
)

logger = get_logger("config")


def _require(condition: bool, message: str, option: str) -> None:
    if not condition:
        raise ConfigError(message, option=option)


# ---------------------------------------------------------------------------
# Component configuration
# ---------------------------------------------------------------------------


@dataclass
class ResolverConfig:
    """Settings for the package metadata resolver.

    Attributes:
        registry_url: npm registry base URL.
        backend: ``http`` (query the registry API directly) or ``npm``
            (shell out to the npm CLI).
        timeout: Per-attempt timeout in seconds.
        retries: Manifest fetch attempts before falling back.
        retry_delay: Base delay for exponential backoff, in seconds.
        offline: Never contact the registry.
        cache_enabled: Keep manifests in the in-memory cache.
        persist_cache: Load and save the on-disk cache.
        cache_dir: Directory of the on-disk cache.
        fallback_to_cache: Reuse a manifest cached for another range of
            the same package when fetching fails.
        skip_malformed: Count unrecoverable packages as skipped instead
            of failed.
        auth_token: Bearer token for a private registry.
        kill_grace_period: Seconds between terminating and killing a
            registry subprocess.
    """

    registry_url: str = DEFAULT_REGISTRY_URL
    backend: str = DEFAULT_REGISTRY_BACKEND
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    offline: bool = False
    cache_enabled: bool = True
    persist_cache: bool = True
    cache_dir: str = DEFAULT_CACHE_DIR
    fallback_to_cache: bool = True
    skip_malformed: bool = True
    auth_token: Optional[str] = field(default=None, repr=False)
    kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD

    def __post_init__(self) -> None:
        _require(bool(self.registry_url), "registry_url must not be empty", "registry_url")
        _require(
            self.backend in REGISTRY_BACKENDS,
            f"backend must be one of {', '.join(REGISTRY_BACKENDS)}, got {self.backend!r}",
            "backend",
        )
        _require(self.timeout > 0, "timeout must be positive", "timeout")
        _require(self.retries >= 1, "retries must be at least 1", "retries")
        _require(self.retry_delay >= 0, "retry_delay must not be negative", "retry_delay")
        _require(
            self.kill_grace_period >= 0,
            "kill_grace_period must not be negative",
            "kill_grace_period",
        )
        if not self.registry_url.endswith("/"):
            self.registry_url += "/"


@dataclass
class AnalyzerConfig:
    """Settings for the peer dependency analyzer.

    Attributes:
        resolver: Resolver settings.
        batch_size: Packages fetched concurrently per batch.
        batch_delay: Pause between batches, in seconds.
        analysis_timeout: Upper bound for a whole analysis, in seconds
            (``None`` for no limit).
    """

    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay: float = DEFAULT_BATCH_DELAY
    analysis_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        _require(self.batch_size >= 1, "batch_size must be at least 1", "batch_size")
        _require(self.batch_delay >= 0, "batch_delay must not be negative", "batch_delay")
        _require(
            self.analysis_timeout is None or self.analysis_timeout > 0,
            "analysis_timeout must be positive",
            "analysis_timeout",
        )


@dataclass
class MergerConfig:
    """Settings for the dependency merger.

    Attributes:
        strategy: Default conflict resolution strategy.
        enable_peer_analysis: Run the peer analyzer on the merged set.
        analyzer: Analyzer settings.
    """

    strategy: str = DEFAULT_STRATEGY
    enable_peer_analysis: bool = True
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)

    def __post_init__(self) -> None:
        _require(
            self.strategy in MERGE_STRATEGIES,
            f"strategy must be one of {', '.join(MERGE_STRATEGIES)}, got {self.strategy!r}",
            "strategy",
        )


# ---------------------------------------------------------------------------
# File configuration
# ---------------------------------------------------------------------------

_NUMBER = (int, float)

#: Option name -> (accepted types, owning component).
_OPTIONS: Dict[str, Tuple[Tuple[type, ...], str]] = {
    "registry_url": ((str,), "resolver"),
    "backend": ((str,), "resolver"),
    "timeout": (_NUMBER, "resolver"),
    "retries": ((int,), "resolver"),
    "retry_delay": (_NUMBER, "resolver"),
    "offline": ((bool,), "resolver"),
    "cache_enabled": ((bool,), "resolver"),
    "persist_cache": ((bool,), "resolver"),
    "cache_dir": ((str,), "resolver"),
    "fallback_to_cache": ((bool,), "resolver"),
    "skip_malformed": ((bool,), "resolver"),
    "auth_token": ((str,), "resolver"),
    "kill_grace_period": (_NUMBER, "resolver"),
    "batch_size": ((int,), "analyzer"),
    "batch_delay": (_NUMBER, "analyzer"),
    "analysis_timeout": (_NUMBER, "analyzer"),
    "strategy": ((str,), "merger"),
    "enable_peer_analysis": ((bool,), "merger"),
}


@dataclass
class PeerKeeperConfig:
    """Parsed and validated peerkeeper configuration file.

    Holds only the options the file actually set; everything else keeps
    the component defaults when :meth:`to_merger_config` builds the
    component configuration.

    Attributes:
        options: Option name to value, as read from the file.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    options: Dict[str, Any] = field(default_factory=dict)

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def get(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    def to_merger_config(self, **overrides: Any) -> MergerConfig:
        """Build component configuration from file options and overrides.

        ``overrides`` use the same option names as the file; ``None``
        values are ignored so CLI flags that were not given fall through.

        Raises:
            ConfigError: An override names an unknown option, or a value
                is out of range.
        """
        unknown = set(overrides) - set(_OPTIONS)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        merged = dict(self.options)
        merged.update({k: v for k, v in overrides.items() if v is not None})

        grouped: Dict[str, Dict[str, Any]] = {"resolver": {}, "analyzer": {}, "merger": {}}
        for name, value in merged.items():
            grouped[_OPTIONS[name][1]][name] = value

        try:
            resolver = ResolverConfig(**grouped["resolver"])
            analyzer = AnalyzerConfig(resolver=resolver, **grouped["analyzer"])
            return MergerConfig(analyzer=analyzer, **grouped["merger"])
        except ConfigError as exc:
            if self.source_path is not None:
                exc.config_path = str(self.source_path)
                exc.details["path"] = str(self.source_path)
            raise

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary for debug logging.

        Masks ``auth_token`` and excludes ``source_path`` metadata.
        """
        return {k: ("***" if k == "auth_token" else v) for k, v in self.options.items()}


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Search order:

    1. ``explicit_path`` (from ``--config`` or ``PEERKEEPER_CONFIG``)
    2. ``peerkeeper.toml`` in current directory
    3. ``pyproject.toml`` with ``[tool.peerkeeper]`` section in current directory

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    peerkeeper_toml = cwd / "peerkeeper.toml"
    if peerkeeper_toml.is_file():
        logger.debug("Found peerkeeper.toml: %s", peerkeeper_toml)
        return peerkeeper_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_peerkeeper_section(pyproject_toml):
        logger.debug("Found [tool.peerkeeper] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_peerkeeper_section(path: Path) -> bool:
    """Check if pyproject.toml contains a ``[tool.peerkeeper]`` section.

    An unparsable pyproject.toml is treated as having no section.
    """
    try:
        raw = _read_toml(path)
    except ConfigError as exc:
        logger.debug("Ignoring unreadable %s: %s", path, exc)
        return False
    return "peerkeeper" in raw.get("tool", {})


def load_config(config_path: Optional[Path] = None) -> PeerKeeperConfig:
    """Load and validate peerkeeper configuration.

    Args:
        config_path: Explicit path to config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`PeerKeeperConfig`; empty when no file was found.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return PeerKeeperConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get("peerkeeper", {})
    else:
        section = raw.get("peerkeeper", {})

    if not section:
        logger.debug("Config file found but no peerkeeper section, using defaults")
        return PeerKeeperConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    # Fail fast on out-of-range values, not only on wrong types
    config.to_merger_config()

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


def _parse_section(
    section: Dict[str, Any],
    *,
    config_path: str,
) -> PeerKeeperConfig:
    """Parse and validate the ``[peerkeeper]`` or ``[tool.peerkeeper]`` table.

    Rejects unknown keys and type mismatches. Booleans are never accepted
    where a number is expected.

    Raises:
        ConfigError: Unknown keys or incorrect types.
    """
    unknown = set(section.keys()) - set(_OPTIONS)
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=config_path,
        )

    options: Dict[str, Any] = {}
    for name, value in section.items():
        accepted, _ = _OPTIONS[name]
        wrong_bool = isinstance(value, bool) and bool not in accepted
        if wrong_bool or not isinstance(value, accepted):
            expected = " or ".join(t.__name__ for t in accepted)
            raise ConfigError(
                f"{name} must be {expected}, got {type(value).__name__}",
                config_path=config_path,
                option=name,
            )
        options[name] = value

    return PeerKeeperConfig(options=options)
