"""Main CLI application using Typer."""
import asyncio
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..chat import (
    DeltaApplied,
    ErrorRaised,
    GenerateCommand,
    RetryScheduled,
    SendCommand,
    SessionManager,
    StreamOutcome,
)
from ..errors import TabchatError
from ..logging_utils import configure_logging
from ..models import MessageStatus, Role, SessionKind
from .providers import get_config, get_store, get_transport

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="tabchat",
    help="Tabbed client for concurrent streaming chat sessions",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

_ROLE_STYLES = {
    Role.SYSTEM: "bold magenta",
    Role.USER: "bold cyan",
    Role.ASSISTANT: "bold green",
}


@app.command()
def chat(
    store: str | None = typer.Option(
        None,
        "--store",
        "-s",
        help="Transcript store: 'json', 'sqlite' or 'memory' (default: TABCHAT_STORE)"
    ),
    store_path: str | None = typer.Option(
        None,
        "--store-path",
        help="Store file (default: chats.json / tabchat.db)"
    ),
    resume: list[str] = typer.Option(
        [],
        "--resume",
        "-r",
        help="Reopen a saved session in a tab (repeatable)"
    ),
    log_file: Path = typer.Option(
        Path("tabchat.log"),
        "--log-file",
        help="Log file while the TUI owns the terminal"
    ),
):
    """Launch the tabbed TUI chat interface."""
    config = get_config(console)
    configure_logging(config.log_level, log_file=log_file)

    async def _tui():
        from ..ui import run_textual_tui

        try:
            transcript_store = get_store(config, store, store_path)
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)

        manager = SessionManager(config, get_transport(config), store=transcript_store)
        try:
            async with manager:
                await run_textual_tui(manager, resume=resume, log_level=config.log_level)
        except TabchatError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            console.print("\n[dim]Goodbye![/dim]")

    try:
        asyncio.run(_tui())
    except KeyboardInterrupt:
        pass


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Message to send"),
    model: str | None = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to use (default: TABCHAT_MODEL)"
    ),
    temperature: float = typer.Option(
        1.0,
        "--temperature",
        "-t",
        min=0.0,
        max=2.0,
        help="Sampling temperature"
    ),
    max_tokens: int | None = typer.Option(
        None,
        "--max-tokens",
        min=1,
        help="Maximum tokens in the answer"
    ),
    system: str | None = typer.Option(
        None,
        "--system",
        help="System message (default: SYSTEM_MESSAGE)"
    ),
    save: bool = typer.Option(
        False,
        "--save",
        help="Save the exchange to the transcript store"
    ),
):
    """Send one message and stream the answer to the terminal."""
    config = get_config(console)
    configure_logging("WARNING" if config.log_level == "INFO" else config.log_level)

    async def _ask():
        manager = SessionManager(
            config,
            get_transport(config),
            store=get_store(config) if save else None,
        )
        async with manager:
            parameters = manager.default_parameters().with_changes(
                temperature=temperature,
                max_tokens=max_tokens,
                **({"model": model} if model else {}),
                **({"system_message": system} if system else {}),
            )
            session = manager.open(parameters=parameters)
            outcome = await _stream_to_console(manager, session.session_id, SendCommand(text=prompt))
            if outcome.error is not None:
                console.print(f"[red]Error: {outcome.error}[/red]")
                raise typer.Exit(code=1)
            if save:
                await manager.save(session.session_id)
                console.print(f"[dim]Saved as {session.session_id}[/dim]")

    try:
        asyncio.run(_ask())
    except TabchatError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(code=130)


@app.command()
def complete(
    prompt: str = typer.Argument(..., help="Text to continue"),
    suffix: str | None = typer.Option(
        None,
        "--suffix",
        help="Text that follows the insertion point"
    ),
    model: str | None = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to use (default: TABCHAT_COMPLETION_MODEL)"
    ),
    temperature: float = typer.Option(
        1.0,
        "--temperature",
        "-t",
        min=0.0,
        max=2.0,
        help="Sampling temperature"
    ),
    max_tokens: int | None = typer.Option(
        None,
        "--max-tokens",
        min=1,
        help="Maximum tokens to generate"
    ),
    save: bool = typer.Option(
        False,
        "--save",
        help="Save the document to the transcript store"
    ),
):
    """Stream a text completion of PROMPT, or an insertion before --suffix."""
    config = get_config(console)
    configure_logging("WARNING" if config.log_level == "INFO" else config.log_level)

    async def _complete():
        manager = SessionManager(
            config,
            get_transport(config),
            store=get_store(config) if save else None,
        )
        async with manager:
            parameters = manager.default_parameters(SessionKind.COMPLETE).with_changes(
                temperature=temperature,
                **({"max_tokens": max_tokens} if max_tokens else {}),
                **({"model": model} if model else {}),
            )
            session = manager.open_completion(parameters=parameters, prompt=prompt + (suffix or ""))
            command = GenerateCommand(insert_at=len(prompt) if suffix else None)
            outcome = await _stream_to_console(manager, session.session_id, command)
            if outcome.error is not None:
                console.print(f"[red]Error: {outcome.error}[/red]")
                raise typer.Exit(code=1)
            if save:
                await manager.save(session.session_id)
                console.print(f"[dim]Saved as {session.session_id}[/dim]")

    try:
        asyncio.run(_complete())
    except TabchatError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(code=130)


async def _stream_to_console(manager: SessionManager, session_id: str, command) -> StreamOutcome:
    """Dispatch a streaming command and print its text as it arrives."""
    subscription = manager.subscribe(session_id)
    handle = manager.dispatch(session_id, command)

    async def _render():
        async for note in subscription:
            if isinstance(note, DeltaApplied):
                console.print(note.text, end="", markup=False, highlight=False)
            elif isinstance(note, RetryScheduled):
                console.print(
                    f"[yellow]Retrying (attempt {note.attempt}) in {note.delay:.1f}s...[/yellow]"
                )
            elif isinstance(note, ErrorRaised) and note.recoverable and note.error_type == "DecodeError":
                console.print(f"\n[yellow]Warning: {note.message}[/yellow]")

    renderer = asyncio.create_task(_render())
    try:
        outcome = await handle.wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        handle.cancel()
        raise
    finally:
        subscription.close()
        await renderer

    console.print()
    return outcome


@app.command()
def models():
    """List the models available to the configured credential."""
    config = get_config(console)
    configure_logging("WARNING")

    async def _models():
        async with get_transport(config) as transport:
            try:
                available = await transport.list_models()
            except TabchatError as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(code=1)

        if not available:
            console.print("[yellow]No models found[/yellow]")
            return

        table = Table(title=f"Models ({len(available)})")
        table.add_column("Model", style="bold cyan")
        table.add_column("Owner", style="dim")
        for info in available:
            marker = " [green]*[/green]" if info.id == config.default_model else ""
            table.add_row(f"{info.id}{marker}", info.owned_by)
        console.print(table)

    asyncio.run(_models())


@app.command()
def sessions(
    store: str | None = typer.Option(None, "--store", "-s", help="Transcript store backend"),
    store_path: str | None = typer.Option(None, "--store-path", help="Store file"),
):
    """List saved sessions."""
    config = get_config(console)
    configure_logging("WARNING")

    async def _sessions():
        try:
            async with get_store(config, store, store_path) as transcript_store:
                ids = await transcript_store.list_sessions()
                records = [await transcript_store.load(session_id) for session_id in ids]
        except (TabchatError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)

        if not records:
            console.print("[yellow]No saved sessions[/yellow]")
            return

        table = Table(show_header=True)
        table.add_column("Session", style="bold cyan")
        table.add_column("Kind")
        table.add_column("Messages", justify="right")
        table.add_column("Model")
        table.add_column("Updated", style="dim")
        table.add_column("Title")
        for record in records:
            table.add_row(
                record.session_id,
                record.kind.value,
                str(len(record.messages)) if record.kind is SessionKind.CHAT else "-",
                record.parameters.model,
                record.updated_at.strftime("%Y-%m-%d %H:%M"),
                record.title,
            )
        console.print(table)

    asyncio.run(_sessions())


@app.command()
def show(
    session_id: str = typer.Argument(..., help="Saved session to print"),
    store: str | None = typer.Option(None, "--store", "-s", help="Transcript store backend"),
    store_path: str | None = typer.Option(None, "--store-path", help="Store file"),
):
    """Print a saved session's transcript or document."""
    config = get_config(console)
    configure_logging("WARNING")

    async def _show():
        try:
            async with get_store(config, store, store_path) as transcript_store:
                record = await transcript_store.load(session_id)
        except (TabchatError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)

        params = record.parameters
        console.print(
            f"[dim]{record.session_id} | {params.model} | temperature {params.temperature} | "
            f"top_p {params.top_p}[/dim]\n"
        )
        if record.kind is SessionKind.COMPLETE:
            console.print(Panel(Text(record.prompt), title="document", title_align="left", border_style="dim"))
            return
        for message in record.messages:
            title = message.role.value
            if message.status is MessageStatus.ABORTED:
                title += " (aborted)"
            console.print(Panel(
                message.content,
                title=f"[{_ROLE_STYLES[message.role]}]{title}[/]",
                title_align="left",
                border_style="dim",
            ))

    asyncio.run(_show())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
