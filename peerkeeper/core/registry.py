"""Registry query backends for peerkeeper.

The package metadata resolver talks to the npm registry through the
:class:`RegistryClient` interface, which answers two questions:

* which concrete version does ``name@range`` resolve to, and
* what does the manifest of ``name@version`` contain.

Two implementations are provided:

* :class:`HttpRegistry` queries the registry's JSON API with the shared
  :class:`~peerkeeper.utils.http.HTTPClient`.
* :class:`NpmCliRegistry` runs ``npm view`` / ``npm info`` as asyncio
  subprocesses, so that ``.npmrc`` settings apply.

Neither backend retries; retry, backoff and fallback belong to the
resolver.
"""

from __future__ import annotations

import os
import json
import asyncio
from abc import ABC, abstractmethod
from urllib.parse import quote, urlparse
from typing import Any, Dict, List, Optional

import httpx

from peerkeeper.config import ResolverConfig
from peerkeeper.utils.http import HTTPClient
from peerkeeper.utils.logger import get_logger
from peerkeeper.utils.version_utils import parse_exact, parse_range
from peerkeeper.exceptions import (
    ManifestParseError,
    NetworkError,
    RegistryFetchError,
)
from peerkeeper.constants import (
    DEFAULT_KILL_GRACE_PERIOD,
    DEFAULT_REGISTRY_URL,
    DEFAULT_TIMEOUT,
    LATEST_TAG,
    NETWORK_ERROR_PATTERNS,
    NPM_EXECUTABLE,
)

logger = get_logger("registry")

__all__ = [
    "RegistryClient",
    "HttpRegistry",
    "NpmCliRegistry",
    "create_registry",
    "is_network_error",
    "is_network_message",
]


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def is_network_message(message: str) -> bool:
    """True when ``message`` mentions a known network failure pattern."""
    lowered = message.lower()
    return any(pattern in lowered for pattern in NETWORK_ERROR_PATTERNS)


def is_network_error(error: BaseException) -> bool:
    """Classify an exception as network related.

    Matches by type first (:class:`NetworkError`, timeouts, httpx
    transport failures), then by message pattern.
    """
    if isinstance(error, (NetworkError, asyncio.TimeoutError, httpx.TransportError)):
        return True
    return is_network_message(str(error))


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class RegistryClient(ABC):
    """Source of package versions and manifests."""

    @abstractmethod
    async def resolve_version(self, name: str, version_range: str) -> str:
        """Return the concrete version ``name@version_range`` installs.

        Raises:
            RegistryFetchError: The registry could not answer.
        """

    @abstractmethod
    async def fetch_manifest(self, name: str, version: str) -> Dict[str, Any]:
        """Return the raw manifest document of ``name@version``.

        Raises:
            RegistryFetchError: The registry could not answer.
            ManifestParseError: The answer was not a JSON object.
        """

    async def close(self) -> None:
        """Release any held resources."""

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# HTTP backend
# ---------------------------------------------------------------------------


class HttpRegistry(RegistryClient):
    """Query the npm registry JSON API directly.

    Ranges are resolved from the package document (``GET /{name}``): a
    dist-tag resolves to its version, otherwise the ``latest`` tag wins
    when it satisfies the range, else the highest matching release.

    Args:
        registry_url: Registry base URL.
        timeout: Per-request timeout in seconds.
        auth_token: Bearer token for private registries.
        http_client: Pre-built client (mainly for tests).

    Example::

        async with HttpRegistry() as registry:
            version = await registry.resolve_version("react", "^18.0.0")
            manifest = await registry.fetch_manifest("react", version)
    """

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        auth_token: Optional[str] = None,
        http_client: Optional[HTTPClient] = None,
    ) -> None:
        self.registry_url = registry_url.rstrip("/") + "/"
        headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else None
        self._client = http_client or HTTPClient(
            timeout=timeout,
            max_retries=0,
            headers=headers,
        )

    def _url(self, name: str, version: Optional[str] = None) -> str:
        # Scoped names keep the leading "@" and encode the slash
        url = self.registry_url + quote(name, safe="@")
        if version is not None:
            url += "/" + quote(version, safe="")
        return url

    async def _packument(self, name: str) -> Dict[str, Any]:
        return await self._client.get_json(self._url(name))

    async def resolve_version(self, name: str, version_range: str) -> str:
        packument = await self._packument(name)
        dist_tags = packument.get("dist-tags") or {}
        wanted = version_range.strip() or "*"

        if wanted in dist_tags:
            return str(dist_tags[wanted])

        spec = parse_range(wanted)
        if spec is None:
            raise RegistryFetchError(
                f"Invalid version range for {name}: {version_range!r}",
                package_name=name,
                version=version_range,
            )

        latest = parse_exact(dist_tags.get(LATEST_TAG))
        if latest is not None and spec.match(latest):
            return str(latest)

        candidates = [
            parsed
            for parsed in (parse_exact(v) for v in (packument.get("versions") or {}))
            if parsed is not None
        ]
        best = spec.select(candidates)
        if best is None:
            raise RegistryFetchError(
                f"No version of {name} matches {version_range}",
                package_name=name,
                version=version_range,
            )
        return str(best)

    async def fetch_manifest(self, name: str, version: str) -> Dict[str, Any]:
        if not name.startswith("@"):
            return await self._client.get_json(self._url(name, version))

        # The per-version endpoint does not serve scoped packages
        packument = await self._packument(name)
        version = (packument.get("dist-tags") or {}).get(version, version)
        manifest = (packument.get("versions") or {}).get(version)
        if not isinstance(manifest, dict):
            raise RegistryFetchError(
                f"Version {version} of {name} not found in registry",
                package_name=name,
                version=version,
                command=self._url(name),
                exit_code=404,
            )
        return manifest

    async def close(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# npm CLI backend
# ---------------------------------------------------------------------------


class NpmCliRegistry(RegistryClient):
    """Query the registry by running the ``npm`` executable.

    A timed out or cancelled query terminates the child process and
    kills it if it is still alive after ``kill_grace_period`` seconds.

    Args:
        registry_url: Registry base URL (passed as ``--registry`` unless
            it is the public default).
        timeout: Per-command timeout in seconds.
        auth_token: Token passed as ``--//host/:_authToken=``.
        kill_grace_period: Seconds between terminate and kill.
        executable: npm executable name or path.
    """

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        auth_token: Optional[str] = None,
        kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD,
        executable: str = NPM_EXECUTABLE,
    ) -> None:
        self.registry_url = registry_url.rstrip("/") + "/"
        self.timeout = timeout
        self.auth_token = auth_token
        self.kill_grace_period = kill_grace_period
        self.executable = executable

    def _extra_args(self) -> List[str]:
        args: List[str] = []
        if self.registry_url != DEFAULT_REGISTRY_URL:
            args.append(f"--registry={self.registry_url}")
        if self.auth_token:
            parsed = urlparse(self.registry_url)
            args.append(f"--//{parsed.netloc}{parsed.path}:_authToken={self.auth_token}")
        return args

    def _display(self, args: List[str]) -> str:
        """Render a command line for logs and errors, hiding the token."""
        shown = [a if "_authToken=" not in a else a.split("=", 1)[0] + "=***" for a in args]
        return " ".join([self.executable, *shown])

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), self.kill_grace_period)
        except asyncio.TimeoutError:
            logger.warning("npm process %s ignored terminate, killing it", proc.pid)
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    async def _run(self, args: List[str], *, package_name: str, version: str) -> str:
        """Run npm with ``args`` and return its stdout.

        Raises:
            NetworkError: Timeout, or stderr that reads like a network failure.
            RegistryFetchError: Any other non-zero exit.
        """
        full_args = [*args, *self._extra_args()]
        command = self._display(full_args)
        logger.debug("Running %s", command)

        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                *full_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "NODE_ENV": "production"},
            )
        except OSError as exc:
            raise RegistryFetchError(
                f"Cannot start {self.executable}: {exc}",
                package_name=package_name,
                version=version,
                command=command,
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError as exc:
            await self._terminate(proc)
            raise NetworkError(
                f"Command timeout after {self.timeout}s: {command}",
                package_name=package_name,
                version=version,
                command=command,
            ) from exc
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace").strip()

        if proc.returncode != 0:
            error_cls = NetworkError if is_network_message(err) else RegistryFetchError
            raise error_cls(
                f"Command failed: {command}" + (f"\n{err}" if err else ""),
                package_name=package_name,
                version=version,
                command=command,
                exit_code=proc.returncode,
                output=err,
            )

        return out

    @staticmethod
    def _decode(text: str, *, package_name: str) -> Any:
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ManifestParseError(
                f"Failed to parse npm response for {package_name}: {exc}",
                package_name=package_name,
                payload=text,
            ) from exc

    async def resolve_version(self, name: str, version_range: str) -> str:
        output = await self._run(
            ["view", f"{name}@{version_range}", "version", "--json"],
            package_name=name,
            version=version_range,
        )
        if not output.strip():
            raise RegistryFetchError(
                f"No version of {name} matches {version_range}",
                package_name=name,
                version=version_range,
            )

        versions = self._decode(output, package_name=name)
        if isinstance(versions, list):
            if not versions:
                raise RegistryFetchError(
                    f"No version of {name} matches {version_range}",
                    package_name=name,
                    version=version_range,
                )
            # npm lists matches in ascending order
            return str(versions[-1])
        return str(versions)

    async def fetch_manifest(self, name: str, version: str) -> Dict[str, Any]:
        output = await self._run(
            ["info", f"{name}@{version}", "--json"],
            package_name=name,
            version=version,
        )
        data = self._decode(output, package_name=name)
        if isinstance(data, list) and data:
            data = data[-1]
        if not isinstance(data, dict):
            raise ManifestParseError(
                f"Expected a JSON object from npm info for {name}",
                package_name=name,
                payload=output,
            )
        return data


def create_registry(config: ResolverConfig) -> RegistryClient:
    """Build the registry backend selected by ``config.backend``."""
    if config.backend == "npm":
        return NpmCliRegistry(
            config.registry_url,
            timeout=config.timeout,
            auth_token=config.auth_token,
            kill_grace_period=config.kill_grace_period,
        )
    return HttpRegistry(
        config.registry_url,
        timeout=config.timeout,
        auth_token=config.auth_token,
    )
