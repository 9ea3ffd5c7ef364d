from typing import Any

from ..config import ChatConfig
from .base import Transport
from .http import HttpTransport


def create_transport(kind: str = "http", **config: Any) -> Transport:
    """Create a transport instance.

    This factory function hides the instantiation logic for transports.

    Args:
        kind: Transport type (only 'http' for now)
        **config: Transport-specific configuration
            For http:
                - api_key: str (required)
                - base_url: str (default: 'https://api.openai.com/v1')
                - proxy: str | None
                - connect_timeout: float
                - idle_timeout: float

    Returns:
        Initialized transport instance

    Raises:
        ValueError: If transport type is not supported
        TypeError: If required configuration is missing

    Examples:
        >>> transport = create_transport(
        ...     "http",
        ...     api_key="sk-...",
        ...     proxy="http://127.0.0.1:8080"
        ... )
    """
    kind_lower = kind.lower()

    if kind_lower in ("http", "https", "openai"):
        if "api_key" not in config:
            raise TypeError("HTTP transport requires 'api_key' parameter")
        return HttpTransport(**config)

    raise ValueError(
        f"Unsupported transport: {kind}. "
        f"Supported transports: http"
    )


def transport_from_config(config: ChatConfig, **overrides: Any) -> Transport:
    """Create the HTTP transport described by a ChatConfig."""
    settings: dict[str, Any] = {
        "api_key": config.api_key,
        "base_url": config.base_url,
        "proxy": config.proxy,
        "connect_timeout": config.connect_timeout,
        "idle_timeout": config.idle_timeout,
    }
    settings.update(overrides)
    return create_transport("http", **settings)
