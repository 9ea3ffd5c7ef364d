from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from loguru import logger

from ..config import DEFAULT_BASE_URL, DEFAULT_CONNECT_TIMEOUT, DEFAULT_IDLE_TIMEOUT
from ..errors import (
    AuthError,
    ConfigError,
    ConnectionFailedError,
    HTTPStatusError,
    ProxyError,
    RateLimitedError,
    RequestRejectedError,
    ServerError,
    TruncatedStreamError,
)
from .base import ByteStream, Endpoint, ModelInfo, Transport

MODELS_PATH = "/models"


class HttpTransport(Transport):
    """HTTP(S) transport for OpenAI-compatible services.

    Hidden design decisions:
    - httpx AsyncClient setup, connection pooling and timeouts
    - Proxy wiring (resolved by the caller, never read from the environment)
    - Bearer authentication
    - Translation of httpx exceptions and HTTP statuses into tabchat errors
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        proxy: str | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the transport.

        Args:
            api_key: Bearer credential
            base_url: Service base URL, e.g. ``https://api.openai.com/v1``
            proxy: Proxy URL, or None for a direct connection
            connect_timeout: Seconds allowed for connection setup
            idle_timeout: Seconds allowed between two body chunks
            transport: Optional httpx transport (used by tests)
        """
        if not api_key:
            raise ConfigError("An API key is required")

        self._base_url = base_url.rstrip("/")
        self._proxy = proxy
        client_kwargs: dict[str, Any] = {
            "base_url": self._base_url,
            "headers": {"Authorization": f"Bearer {api_key}"},
            "timeout": httpx.Timeout(
                connect=connect_timeout,
                read=idle_timeout,
                write=connect_timeout,
                pool=connect_timeout,
            ),
            # Proxy resolution happens in config; don't let httpx re-read the env.
            "trust_env": False,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        elif proxy:
            client_kwargs["proxy"] = proxy
        self._client = httpx.AsyncClient(**client_kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def proxy(self) -> str | None:
        return self._proxy

    @asynccontextmanager
    async def open_stream(
        self,
        body: dict[str, Any],
        endpoint: Endpoint = Endpoint.CHAT,
    ) -> AsyncIterator[ByteStream]:
        request = self._client.build_request(
            "POST",
            endpoint.value,
            json=body,
            headers={"Accept": "text/event-stream"},
        )
        response = await self._send(request)
        try:
            if response.status_code >= 400:
                await response.aread()
                raise _status_error(response)
            logger.debug(
                "transport.stream.open endpoint={} status={} model={} messages={}",
                endpoint.value,
                response.status_code,
                body.get("model"),
                len(body.get("messages", [])),
            )
            yield _iter_body(response)
        finally:
            await response.aclose()
            logger.debug("transport.stream.closed")

    async def list_models(self) -> list[ModelInfo]:
        request = self._client.build_request("GET", MODELS_PATH)
        response = await self._send(request)
        try:
            await response.aread()
            if response.status_code >= 400:
                raise _status_error(response)
            try:
                data = response.json().get("data", [])
            except ValueError as e:
                raise RequestRejectedError(response.status_code, "Malformed model list") from e
        finally:
            await response.aclose()

        models = [ModelInfo.model_validate(item) for item in data if isinstance(item, dict)]
        return sorted(models, key=lambda m: m.id)

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()

    async def _send(self, request: httpx.Request) -> httpx.Response:
        """Send a request, mapping connection failures onto tabchat errors."""
        try:
            return await self._client.send(request, stream=True)
        except httpx.ProxyError as e:
            raise ProxyError(f"Proxy {self._proxy or ''} failed: {e}") from e
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise ConnectionFailedError(f"Cannot connect to {request.url.host}: {e}") from e
        except httpx.TransportError as e:
            raise ConnectionFailedError(f"{type(e).__name__}: {e}") from e


async def _iter_body(response: httpx.Response) -> ByteStream:
    """Yield body chunks; a broken body becomes TruncatedStreamError."""
    try:
        async for chunk in response.aiter_bytes():
            if chunk:
                yield chunk
    except httpx.TransportError as e:
        raise TruncatedStreamError(f"Stream interrupted: {type(e).__name__}: {e}") from e


def _status_error(response: httpx.Response) -> HTTPStatusError:
    """Map an error response onto the matching HTTPStatusError subclass."""
    code = response.status_code
    message = _error_message(response)
    if code in (401, 403):
        return AuthError(code, message)
    if code == 429:
        return RateLimitedError(code, message, retry_after=_retry_after(response))
    if code >= 500:
        return ServerError(code, message)
    return RequestRejectedError(code, message)


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    except (ValueError, AttributeError):
        pass
    return response.text[:200].strip()


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
