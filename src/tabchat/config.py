"""Application configuration.

ChatConfig is built once at startup and passed explicitly to the transport
and session manager constructors. Nothing in the engine reads the
environment on its own.
"""

import os
import urllib.request
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_COMPLETION_MODEL = "gpt-3.5-turbo-instruct"
# The completions endpoint defaults to 16 tokens, far too few for a document.
DEFAULT_COMPLETION_MAX_TOKENS = 2048

# Retry / timeout defaults
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 1.0  # seconds, doubled per attempt
DEFAULT_BACKOFF_MAX = 8.0  # seconds
DEFAULT_IDLE_TIMEOUT = 30.0  # seconds without a chunk before giving up
DEFAULT_CONNECT_TIMEOUT = 10.0

# Persistence defaults
DEFAULT_STORE_BACKEND = "json"
DEFAULT_STORE_PATHS = {
    "json": "chats.json",
    "sqlite": "tabchat.db",
}


class ChatConfig(BaseModel):
    """Immutable configuration snapshot."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(min_length=1, repr=False, description="Bearer credential for the service")
    base_url: str = Field(default=DEFAULT_BASE_URL, description="Completion service base URL")
    proxy: str | None = Field(default=None, description="Resolved proxy URL, None for direct")
    system_message: str | None = Field(default=None, description="Seeded into new sessions")
    default_model: str = Field(default=DEFAULT_MODEL)
    completion_model: str = Field(default=DEFAULT_COMPLETION_MODEL)

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, le=10)
    backoff_base: float = Field(default=DEFAULT_BACKOFF_BASE, ge=0.0)
    backoff_max: float = Field(default=DEFAULT_BACKOFF_MAX, ge=0.0)
    idle_timeout: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0.0)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0.0)

    store_backend: str = Field(default=DEFAULT_STORE_BACKEND)
    store_path: Path | None = Field(default=None)
    persist_on_close: bool = Field(default=True)

    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ChatConfig":
        """Build the configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Validated configuration

        Raises:
            ConfigError: If OPENAI_API_KEY is missing or a value is invalid
        """
        env = os.environ if environ is None else environ

        api_key = (env.get("OPENAI_API_KEY") or "").strip()
        if not api_key:
            raise ConfigError("OPENAI_API_KEY is not set")

        explicit_proxy = env.get("TABCHAT_PROXY") or env.get("HTTP_PROXY")
        store_backend = env.get("TABCHAT_STORE", DEFAULT_STORE_BACKEND).lower()
        store_path = env.get("TABCHAT_STORE_PATH") or DEFAULT_STORE_PATHS.get(store_backend)

        values: dict[str, object] = {
            "api_key": api_key,
            "base_url": env.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
            "proxy": resolve_proxy(explicit_proxy),
            "system_message": env.get("SYSTEM_MESSAGE") or None,
            "default_model": env.get("TABCHAT_MODEL") or DEFAULT_MODEL,
            "completion_model": env.get("TABCHAT_COMPLETION_MODEL") or DEFAULT_COMPLETION_MODEL,
            "store_backend": store_backend,
            "store_path": Path(store_path) if store_path else None,
            "log_level": env.get("TABCHAT_LOG_LEVEL", "INFO").upper(),
        }
        numeric = {
            "max_attempts": "TABCHAT_MAX_ATTEMPTS",
            "backoff_base": "TABCHAT_BACKOFF_BASE",
            "backoff_max": "TABCHAT_BACKOFF_MAX",
            "idle_timeout": "TABCHAT_IDLE_TIMEOUT",
            "connect_timeout": "TABCHAT_CONNECT_TIMEOUT",
        }
        for field_name, var in numeric.items():
            if env.get(var):
                values[field_name] = env[var]

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def resolve_proxy(explicit: str | None = None) -> str | None:
    """Resolve the proxy to use.

    Order: explicit value, then the platform default proxy, then None
    (direct connection).
    """
    if explicit and explicit.strip():
        return explicit.strip()

    platform = urllib.request.getproxies()
    for scheme in ("https", "all", "http"):
        if platform.get(scheme):
            return platform[scheme]
    return None
