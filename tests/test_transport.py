"""Tests for the HTTP transport, driven through httpx.MockTransport."""
import json

import httpx
import pytest

from conftest import DONE, sse_body, sse_delta
from tabchat.config import ChatConfig
from tabchat.errors import (
    AuthError,
    ConfigError,
    ConnectionFailedError,
    ProxyError,
    RateLimitedError,
    RequestRejectedError,
    ServerError,
    TruncatedStreamError,
)
from tabchat.transport import Endpoint, HttpTransport, create_transport, transport_from_config

BODY = {"model": "gpt-4o-mini", "messages": [{"role": "user", "content": "Hi"}], "stream": True}


class BrokenStream(httpx.AsyncByteStream):
    """Body that fails after its first chunk."""

    async def __aiter__(self):
        yield sse_delta("Hi")
        raise httpx.ReadError("connection reset")


def make_transport(handler, **kwargs) -> HttpTransport:
    return HttpTransport(
        api_key="test-key",
        base_url="https://api.example.test/v1/",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def collect(transport: HttpTransport) -> bytes:
    async with transport.open_stream(BODY) as chunks:
        return b"".join([chunk async for chunk in chunks])


class TestOpenStream:
    """Tests for streaming requests."""

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """Test the method, path, headers and JSON body of the request."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["accept"] = request.headers["accept"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse_body("Hello"))

        transport = make_transport(handler)
        data = await collect(transport)
        await transport.close()

        assert seen == {
            "method": "POST",
            "url": "https://api.example.test/v1/chat/completions",
            "auth": "Bearer test-key",
            "accept": "text/event-stream",
            "body": BODY,
        }
        assert data == sse_body("Hello")

    @pytest.mark.asyncio
    async def test_completions_endpoint(self):
        """Test that text completions are posted to /completions."""
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, content=DONE)

        transport = make_transport(handler)
        async with transport.open_stream({"prompt": "Once", "stream": True}, Endpoint.COMPLETIONS) as chunks:
            data = b"".join([chunk async for chunk in chunks])
        await transport.close()

        assert urls == ["https://api.example.test/v1/completions"]
        assert data == DONE

    @pytest.mark.parametrize("status,error_type", [
        (401, AuthError),
        (403, AuthError),
        (429, RateLimitedError),
        (500, ServerError),
        (503, ServerError),
        (400, RequestRejectedError),
        (404, RequestRejectedError),
    ])
    @pytest.mark.asyncio
    async def test_status_mapping(self, status, error_type):
        """Test that error statuses map onto the matching error type."""
        transport = make_transport(
            lambda request: httpx.Response(status, json={"error": {"message": "nope"}})
        )

        with pytest.raises(error_type) as exc_info:
            await collect(transport)

        assert exc_info.value.status_code == status
        assert exc_info.value.message == "nope"
        await transport.close()

    @pytest.mark.asyncio
    async def test_retry_after_header(self):
        transport = make_transport(
            lambda request: httpx.Response(429, headers={"Retry-After": "2.5"}, text="slow down")
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await collect(transport)

        assert exc_info.value.retry_after == 2.5
        assert exc_info.value.message == "slow down"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ConnectionFailedError):
            await collect(make_transport(handler))

    @pytest.mark.asyncio
    async def test_proxy_error_is_fatal(self):
        def handler(request):
            raise httpx.ProxyError("407 Proxy Authentication Required", request=request)

        with pytest.raises(ProxyError) as exc_info:
            await collect(make_transport(handler))

        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self):
        """Test that a body broken after some data reports truncation."""
        transport = make_transport(lambda request: httpx.Response(200, stream=BrokenStream()))
        received = []

        with pytest.raises(TruncatedStreamError):
            async with transport.open_stream(BODY) as chunks:
                async for chunk in chunks:
                    received.append(chunk)

        assert received == [sse_delta("Hi")]


class TestListModels:
    """Tests for the model listing."""

    @pytest.mark.asyncio
    async def test_sorted_by_id(self):
        payload = {"data": [
            {"id": "gpt-4o", "owned_by": "openai", "object": "model"},
            {"id": "gpt-3.5-turbo", "owned_by": "openai", "object": "model"},
        ]}
        transport = make_transport(lambda request: httpx.Response(200, json=payload))

        models = await transport.list_models()

        assert [m.id for m in models] == ["gpt-3.5-turbo", "gpt-4o"]
        assert models[0].owned_by == "openai"

    @pytest.mark.asyncio
    async def test_error_status(self):
        transport = make_transport(lambda request: httpx.Response(401, json={"error": "bad key"}))

        with pytest.raises(AuthError):
            await transport.list_models()


class TestConstruction:
    """Tests for creating transports."""

    def test_empty_key_rejected(self):
        with pytest.raises(ConfigError):
            HttpTransport(api_key="")

    @pytest.mark.asyncio
    async def test_proxy_is_kept(self):
        transport = HttpTransport(api_key="k", proxy="http://127.0.0.1:8080")

        assert transport.proxy == "http://127.0.0.1:8080"
        await transport.close()

    @pytest.mark.asyncio
    async def test_factory(self):
        transport = create_transport("openai", api_key="k", base_url="https://x.test/v1/")

        assert isinstance(transport, HttpTransport)
        assert transport.base_url == "https://x.test/v1"
        await transport.close()

    def test_factory_errors(self):
        with pytest.raises(TypeError):
            create_transport("http")
        with pytest.raises(ValueError):
            create_transport("websocket", api_key="k")

    @pytest.mark.asyncio
    async def test_from_config(self):
        config = ChatConfig(api_key="k", base_url="https://x.test/v1", proxy=None)

        async with transport_from_config(config) as transport:
            assert transport.base_url == "https://x.test/v1"
            assert transport.proxy is None
