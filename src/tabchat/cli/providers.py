"""Factory functions for CLI.

Centralizes creation of the config, transport and transcript store from
environment variables. Hides configuration details from command
implementations.
"""

from rich.console import Console

from ..config import DEFAULT_STORE_PATHS, ChatConfig
from ..errors import ConfigError
from ..persistence import TranscriptStore, create_transcript_store
from ..transport import Transport, transport_from_config

# Default console for output
_console = Console()


def get_config(console: Console | None = None) -> ChatConfig:
    """Load configuration from the environment.

    Args:
        console: Optional Rich console for output

    Returns:
        Validated configuration

    Raises:
        SystemExit: If OPENAI_API_KEY is not set or a value is invalid

    Environment variables:
        OPENAI_API_KEY: Service credential (required)
        OPENAI_BASE_URL: Service base URL (default: https://api.openai.com/v1)
        TABCHAT_PROXY / HTTP_PROXY: Proxy URL (default: platform proxy, else direct)
        SYSTEM_MESSAGE: System message seeded into new sessions
        TABCHAT_MODEL: Default model (default: gpt-4o-mini)
        TABCHAT_STORE: json, sqlite or memory (default: json)
        TABCHAT_STORE_PATH: Store file (default: chats.json / tabchat.db)
        TABCHAT_LOG_LEVEL: Log level (default: INFO)
    """
    import typer

    con = console or _console
    try:
        return ChatConfig.from_env()
    except ConfigError as e:
        con.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


def get_transport(config: ChatConfig) -> Transport:
    """Create the HTTP transport for a configuration."""
    return transport_from_config(config)


def get_store(
    config: ChatConfig,
    backend: str | None = None,
    path: str | None = None,
) -> TranscriptStore:
    """Create the transcript store.

    Args:
        config: Loaded configuration
        backend: Override of TABCHAT_STORE
        path: Override of TABCHAT_STORE_PATH

    Returns:
        Transcript store instance (not yet connected)
    """
    backend = (backend or config.store_backend).lower()
    if backend == "memory":
        return create_transcript_store("memory")

    if path is None:
        # Only reuse the configured path when it belongs to the same backend.
        if backend == config.store_backend and config.store_path is not None:
            path = str(config.store_path)
        else:
            path = DEFAULT_STORE_PATHS.get(backend)
    return create_transcript_store(backend, path=path)
