from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ByteStream = AsyncIterator[bytes]


class Endpoint(str, Enum):
    """Streaming endpoints, as paths relative to the base URL."""

    CHAT = "/chat/completions"
    COMPLETIONS = "/completions"


class ModelInfo(BaseModel):
    """A model offered by the completion service."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Model identifier used in requests")
    owned_by: str = Field(default="", description="Owning organization")
    created: int | None = Field(default=None, description="Creation time (unix seconds)")


class Transport(ABC):
    """Abstract connection to a completion service.

    This module hides how bytes reach us:
    - Connection setup (direct, proxy, TLS)
    - Request construction and authentication
    - Mapping of network and HTTP failures onto tabchat errors

    Supports async context manager protocol for proper resource cleanup:
        async with transport:
            async with transport.open_stream(body) as chunks:
                async for chunk in chunks:
                    ...
        # Automatically cleaned up
    """

    @abstractmethod
    def open_stream(
        self,
        body: dict[str, Any],
        endpoint: Endpoint = Endpoint.CHAT,
    ) -> AbstractAsyncContextManager[ByteStream]:
        """Open a streaming completion request.

        Entering the context connects, sends the request and checks the
        status. The context value is a lazy, single-pass iterator of raw body
        chunks. Leaving the context, on any path, closes the connection.

        Args:
            body: JSON request body (must have the stream flag set)
            endpoint: Chat or text completions

        Raises:
            ConnectionFailedError: DNS, TLS or refused connection
            ProxyError: The proxy failed the connection
            AuthError: Credential rejected
            RateLimitedError: HTTP 429
            ServerError: HTTP 5xx
            RequestRejectedError: Other HTTP 4xx
            TruncatedStreamError: Raised by the iterator if the body breaks off
        """

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """List the models available to this credential, sorted by id."""

    @abstractmethod
    async def close(self) -> None:
        """Close pooled connections."""

    async def __aenter__(self) -> "Transport":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup.

        Note: Suppresses "Event loop is closed" errors during cleanup.
        This is a known harmless race condition in httpx/anyio cleanup:
        https://github.com/encode/httpx/issues/914
        """
        try:
            await self.close()
        except RuntimeError as e:
            if "Event loop is closed" not in str(e):
                raise
