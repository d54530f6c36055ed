from __future__ import annotations

import httpx
import pytest
from typing import Callable, List
from unittest.mock import AsyncMock, patch

from peerkeeper.utils.http import HTTPClient
from peerkeeper.exceptions import ManifestParseError, NetworkError, RegistryFetchError

REACT_URL = "https://registry.npmjs.org/react"

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, **kwargs) -> HTTPClient:
    """HTTPClient whose transport is answered by ``handler``."""
    client = HTTPClient(**kwargs)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def _sequence(*responses: httpx.Response) -> Handler:
    queue: List[httpx.Response] = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        return queue.pop(0)

    return handler


@pytest.mark.unit
class TestHTTPClientInit:
    """Tests for HTTPClient initialization and configuration."""

    def test_default_values(self) -> None:
        client = HTTPClient()

        assert client.timeout == 30
        assert client.max_retries == 3
        assert client.rate_limit_delay == 0.0
        assert client.verify_ssl is True
        assert client.max_concurrency == 10
        assert client.user_agent.startswith("peerkeeper/")
        assert client.headers == {}
        assert client._client is None

    def test_extra_headers_are_copied(self) -> None:
        headers = {"Authorization": "Bearer secret"}
        client = HTTPClient(headers=headers)
        headers.clear()

        assert client.headers == {"Authorization": "Bearer secret"}

    @pytest.mark.asyncio
    async def test_ensure_client_sends_headers(self) -> None:
        client = HTTPClient(headers={"Authorization": "Bearer secret"}, user_agent="test-agent")

        async with client:
            assert client._client is not None
            assert client._client.headers["Authorization"] == "Bearer secret"
            assert client._client.headers["User-Agent"] == "test-agent"
            assert client._client.headers["Accept"] == "application/json"

        assert client._client is None


@pytest.mark.unit
class TestHTTPClientRequestWithRetry:
    """Tests for status handling and retries."""

    @pytest.mark.asyncio
    async def test_get_json(self) -> None:
        seen: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"name": "react"})

        client = _client(handler)

        assert await client.get_json(f'  "{REACT_URL}" ') == {"name": "react"}
        assert seen == [REACT_URL]

    @pytest.mark.asyncio
    async def test_404_is_registry_error(self) -> None:
        client = _client(lambda request: httpx.Response(404), max_retries=2)

        with pytest.raises(RegistryFetchError) as exc_info:
            await client.get(REACT_URL)

        assert exc_info.value.exit_code == 404
        assert not isinstance(exc_info.value, NetworkError)

    @pytest.mark.asyncio
    async def test_other_4xx_not_retried(self) -> None:
        calls: List[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(403, text="forbidden")

        client = _client(handler, max_retries=3)

        with pytest.raises(RegistryFetchError) as exc_info:
            await client.get(REACT_URL)

        assert exc_info.value.exit_code == 403
        assert exc_info.value.output == "forbidden"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_5xx_retried_then_succeeds(self) -> None:
        client = _client(
            _sequence(httpx.Response(503), httpx.Response(200, json={"name": "react"})),
            max_retries=2,
        )

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client.get_json(REACT_URL) == {"name": "react"}

        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_transport_error_exhausts_retries(self) -> None:
        """Test repeated connection failures surface as a NetworkError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler, max_retries=1)

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(NetworkError, match="after 2 attempts"):
                await client.get(REACT_URL)

    @pytest.mark.asyncio
    async def test_timeout_with_zero_retries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(handler, max_retries=0)

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(NetworkError):
                await client.get(REACT_URL)

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_429_honours_retry_after(self) -> None:
        client = _client(
            _sequence(
                httpx.Response(429, headers={"Retry-After": "2"}),
                httpx.Response(200, json={"name": "react"}),
            ),
            max_retries=1,
        )

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await client.get(REACT_URL)

        sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_429_limit(self) -> None:
        client = _client(lambda request: httpx.Response(429), max_retries=2)
        client._max_429_retries = 2

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(NetworkError, match="rate limit") as exc_info:
                await client.get(REACT_URL)

        assert exc_info.value.exit_code == 429


@pytest.mark.unit
class TestGetJson:
    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ManifestParseError, match="Invalid JSON"):
            await client.get_json(REACT_URL)

    @pytest.mark.asyncio
    async def test_non_object_json(self) -> None:
        client = _client(lambda request: httpx.Response(200, json=["18.2.0"]))

        with pytest.raises(ManifestParseError, match="Expected JSON object"):
            await client.get_json(REACT_URL)


@pytest.mark.unit
class TestRateLimit:
    @pytest.mark.asyncio
    async def test_no_delay_when_disabled(self) -> None:
        client = HTTPClient(rate_limit_delay=0)

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await client._rate_limit()

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_back_to_back_requests_wait(self) -> None:
        client = HTTPClient(rate_limit_delay=1.0)

        with patch("peerkeeper.utils.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await client._rate_limit()
            await client._rate_limit()

        assert sleep.await_count == 1
        assert 0 < sleep.await_args.args[0] <= 1.0
