"""
Custom exception hierarchy for peerkeeper.

This module defines structured exception types used across peerkeeper.
All exceptions inherit from :class:`PeerKeeperError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.

Per-package failures (bad names, unreachable registries, malformed
manifests) are raised inside the resolver and recovered there into
fallback manifests; only orchestration failures such as
:class:`AnalysisPhaseError` reach the caller.
"""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional, Sequence


class PeerKeeperError(Exception):
    """Base exception for all peerkeeper errors.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        # Internally normalize to a mutable dict
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class InvalidPackageName(PeerKeeperError):
    """Raised when a package name violates npm naming rules.

    Args:
        package_name: The offending name.
        reason: Short explanation of the violated rule.
    """

    __slots__ = ("package_name", "reason")

    def __init__(self, package_name: str, *, reason: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {"package": package_name}
        _add_if(details, "reason", reason)
        super().__init__(f"Invalid package name: {package_name!r}", details)

        self.package_name = package_name
        self.reason = reason


class RegistryFetchError(PeerKeeperError):
    """Raised when the package registry cannot answer a query.

    Args:
        message: Error description.
        package_name: Package being queried.
        version: Version or range being queried.
        command: Command or URL used for the query.
        exit_code: Process exit code or HTTP status, if available.
        output: Raw error output, truncated for safety.
    """

    __slots__ = ("package_name", "version", "command", "exit_code", "output")

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        version: Optional[str] = None,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "package", package_name)
        _add_if(details, "version", version)
        _add_if(details, "command", command)
        _add_if(details, "exit_code", exit_code)
        if output:
            details["output"] = _truncate(output)

        super().__init__(message, details)

        self.package_name = package_name
        self.version = version
        self.command = command
        self.exit_code = exit_code
        self.output = output


class NetworkError(RegistryFetchError):
    """Raised when a registry query fails for network reasons.

    Timeouts, refused connections, DNS failures and registry-side
    outages all map to this class so that the resolver can record them
    separately from generic failures.
    """

    __slots__ = ()


class ManifestParseError(PeerKeeperError):
    """Raised when a registry answer is not a usable package manifest.

    Args:
        message: Error description.
        package_name: Package whose manifest was rejected.
        payload: Raw payload, truncated for safety.
    """

    __slots__ = ("package_name", "payload")

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        payload: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "package", package_name)
        if payload:
            details["payload"] = _truncate(payload)

        super().__init__(message, details)

        self.package_name = package_name
        self.payload = payload


class UnresolvableVersionConflict(PeerKeeperError):
    """Raised when two version ranges cannot be reconciled automatically.

    Args:
        message: Error description.
        package_name: Package whose ranges conflict.
        versions: The conflicting version ranges.
        manual: ``True`` when the ``manual`` strategy demanded human input.
    """

    __slots__ = ("package_name", "versions", "manual")

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        versions: Sequence[str] = (),
        manual: bool = False,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "package", package_name)
        if versions:
            details["versions"] = " vs ".join(versions)
        if manual:
            details["manual"] = True

        super().__init__(message, details)

        self.package_name = package_name
        self.versions = tuple(versions)
        self.manual = manual


class AnalysisPhaseError(PeerKeeperError):
    """Raised when an analysis fails outside the per-package recovery path.

    Args:
        message: Error description.
        phase: Name of the phase that was running.
        original_error: Exception that triggered this error.
    """

    __slots__ = ("phase", "original_error")

    def __init__(
        self,
        message: str,
        *,
        phase: str,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {"phase": phase}
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.phase = phase
        self.original_error = original_error


class ConfigError(PeerKeeperError):
    """Raised when configuration is invalid or cannot be loaded.

    Args:
        message: Error description.
        config_path: Path to the configuration file, if any.
        option: Name of the offending option.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


class FileOperationError(PeerKeeperError):
    """Raised when file system operations fail.

    Args:
        message: Error description.
        file_path: Path to the file involved.
        operation: Operation being performed (read/write/delete).
        original_error: Original exception that triggered this error.
    """

    __slots__ = ("file_path", "operation", "original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error


class TemplateFormatError(PeerKeeperError):
    """Raised when a template declaration file is malformed.

    Args:
        message: Error description.
        file_path: Path of the declaration file.
        index: Position of the offending template in the file.
        field: Name of the offending field.
    """

    __slots__ = ("file_path", "index", "field")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        index: Optional[int] = None,
        field: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "file", file_path)
        _add_if(details, "index", index)
        _add_if(details, "field", field)

        super().__init__(message, details)

        self.file_path = file_path
        self.index = index
        self.field = field
