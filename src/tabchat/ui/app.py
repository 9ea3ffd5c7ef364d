"""Main Textual TUI application.

Orchestrates the tabs and routes user input to the session manager. Each
tab renders one session, a chat transcript or a completion document, and
is updated only from that session's notification subscription. Log
records are mirrored into a toggleable panel through a loguru sink.
"""

import threading
from collections.abc import Iterable

import pyperclip
from loguru import logger
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.css.query import NoMatches
from textual.widgets import Footer, Header, TabbedContent, TabPane

from ..chat import (
    CancelCommand,
    ChatSession,
    CompletionSession,
    DeltaApplied,
    DocumentChanged,
    ErrorRaised,
    GenerateCommand,
    MessageAppended,
    Notification,
    RetryCommand,
    RetryScheduled,
    SendCommand,
    SessionManager,
    StateChanged,
    StreamingSession,
    Subscription,
    TranscriptChanged,
)
from ..errors import (
    InvalidSessionStateError,
    PersistenceError,
    SessionError,
    SessionNotFoundError,
    SubscriptionLaggedError,
    TabchatError,
)
from ..models import MessageStatus, SessionState
from .config import (
    COMMAND_PREFIX,
    DEFAULT_THEME,
    ERROR_NOTIFY_TIMEOUT,
    NOTIFY_TIMEOUT,
    SETTABLE_PARAMETERS,
    TAB_TITLE_MAX_LENGTH,
)
from .styles import APP_CSS
from .widgets import ChatInputBar, DocumentPane, LogPanel, SessionPane

_FINAL_STATUS = {
    SessionState.COMPLETED: MessageStatus.COMPLETE,
    SessionState.CANCELLED: MessageStatus.ABORTED,
    SessionState.FAILED: MessageStatus.ABORTED,
}

Pane = SessionPane | DocumentPane


class TabChatApp(App):
    """Textual TUI with one tab per session."""

    CSS = APP_CSS
    TITLE = "Tabchat"

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("ctrl+t", "new_tab", "New Chat"),
        Binding("ctrl+o", "new_completion_tab", "New Completion"),
        Binding("ctrl+w", "close_tab", "Close Tab"),
        Binding("escape", "cancel", "Cancel"),
        Binding("ctrl+r", "retry", "Retry"),
        Binding("ctrl+g", "generate", "Generate"),
        Binding("ctrl+b", "insert_at_cursor", "Insert", show=False),
        Binding("ctrl+s", "save", "Save"),
        Binding("ctrl+z", "remove_last", "Remove Last"),
        Binding("ctrl+k", "clear_chat", "Clear"),
        Binding("ctrl+y", "copy_last_response", "Copy Response"),
        Binding("ctrl+l", "toggle_log", "Log", show=False),
    ]

    def __init__(
        self,
        manager: SessionManager,
        resume: Iterable[str] = (),
        log_level: str = "INFO",
    ) -> None:
        super().__init__()
        self._manager = manager
        self._resume = list(resume)
        self._log_level = log_level
        self._log_sink_id: int | None = None
        self._thread_id = threading.get_ident()
        self._panes: dict[str, str] = {}  # pane id -> session id
        self._pane_counter = 0

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield TabbedContent(id="tabs")
        yield LogPanel(id="log-panel")
        yield ChatInputBar(id="chat-input-bar")
        yield Footer()

    async def on_mount(self) -> None:
        """Attach the log sink, then open resumed sessions or a fresh one."""
        self.theme = DEFAULT_THEME
        self._thread_id = threading.get_ident()
        self._log_sink_id = logger.add(
            self._on_log,
            level=self._log_level,
            format="{message}",
            backtrace=False,
            diagnose=False,
        )
        store = self._manager.store
        self.sub_title = f"store: {store.backend_type}" if store is not None else "store: none"

        for session_id in self._resume:
            try:
                session = await self._manager.load(session_id)
            except (TabchatError, ValueError) as e:
                self.notify(f"Cannot resume {session_id}: {e}", severity="error", timeout=ERROR_NOTIFY_TIMEOUT)
                continue
            await self._add_tab(session)

        if not self._panes:
            await self._add_tab(self._manager.open())
        self.query_one("#chat-input-bar", ChatInputBar).focus_input()

    def on_unmount(self) -> None:
        if self._log_sink_id is not None:
            logger.remove(self._log_sink_id)
            self._log_sink_id = None

    # ------------------------------------------------------------------
    # Log panel
    # ------------------------------------------------------------------

    def _on_log(self, message) -> None:
        """Loguru sink; records from other threads are handed to the app thread."""
        record = message.record
        try:
            panel = self.query_one("#log-panel", LogPanel)
        except NoMatches:
            # Screen already torn down during shutdown.
            return
        if threading.get_ident() == self._thread_id:
            panel.write_record(record)
        else:
            self.call_from_thread(panel.write_record, record)

    def action_toggle_log(self) -> None:
        """Show or hide the log panel."""
        visible = self.query_one("#log-panel", LogPanel).toggle()
        self.notify(f"Log panel {'shown' if visible else 'hidden'}", timeout=NOTIFY_TIMEOUT)

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    async def _add_tab(self, session: StreamingSession) -> None:
        self._pane_counter += 1
        pane_id = f"tab-{self._pane_counter}"
        subscription = self._manager.subscribe(session.session_id)

        pane: Pane
        if isinstance(session, CompletionSession):
            pane = DocumentPane(session.session_id)
        else:
            pane = SessionPane(session.session_id)
        tabs = self.query_one("#tabs", TabbedContent)
        await tabs.add_pane(TabPane(_tab_title(session.session_id), pane, id=pane_id))
        self._panes[pane_id] = session.session_id
        tabs.active = pane_id

        self._show_session(session, pane)
        self.run_worker(
            self._pump(session.session_id, pane, subscription),
            name=f"pump-{session.session_id}",
            group="pumps",
            exit_on_error=False,
        )

    def _active(self) -> tuple[str, Pane] | None:
        tabs = self.query_one("#tabs", TabbedContent)
        session_id = self._panes.get(tabs.active)
        if session_id is None:
            return None
        pane = tabs.get_pane(tabs.active).query_one("SessionPane, DocumentPane")
        return session_id, pane

    def _show_session(self, session: StreamingSession, pane: Pane) -> None:
        """Redraw a pane from the session's current contents."""
        if isinstance(pane, DocumentPane) and isinstance(session, CompletionSession):
            pane.show_text(session.text, streaming=session.busy)
        elif isinstance(pane, SessionPane) and isinstance(session, ChatSession):
            pane.transcript_view.render_transcript(session.transcript)
        pane.status.show(session.state, session.parameters)

    # ------------------------------------------------------------------
    # Notification pump
    # ------------------------------------------------------------------

    async def _pump(self, session_id: str, pane: Pane, subscription: Subscription) -> None:
        """Render one session's notifications until its subscription ends."""
        while True:
            try:
                async for note in subscription:
                    self._render(session_id, pane, note)
                return
            except SubscriptionLaggedError:
                logger.warning("ui.resync session_id={}", session_id)
                try:
                    session = self._manager.get(session_id)
                except SessionNotFoundError:
                    return
                subscription = self._manager.subscribe(session_id)
                self._show_session(session, pane)

    def _render(self, session_id: str, pane: Pane, note: Notification) -> None:
        try:
            session = self._manager.get(session_id)
        except SessionNotFoundError:
            # Tab already closed; drop what was still queued.
            return

        if isinstance(note, RetryScheduled):
            pane.status.show(
                session.state,
                session.parameters,
                f"retry {note.attempt} in {note.delay:.1f}s",
            )
        elif isinstance(note, ErrorRaised):
            severity = "warning" if note.error_type == "DecodeError" else "error"
            self.notify(
                f"{session_id}: {note.message}",
                title=note.error_type,
                severity=severity,
                timeout=ERROR_NOTIFY_TIMEOUT,
            )
        elif isinstance(pane, DocumentPane):
            self._render_document(session, pane, note)
        else:
            self._render_transcript(session, pane, note)

    def _render_transcript(self, session: StreamingSession, pane: SessionPane, note: Notification) -> None:
        view = pane.transcript_view
        if isinstance(note, DeltaApplied):
            view.apply_delta(note.index, note.text)
        elif isinstance(note, MessageAppended):
            view.add_message(note.index, note.role, note.content, note.status)
        elif isinstance(note, StateChanged):
            if note.state in _FINAL_STATUS:
                view.finish_last(_FINAL_STATUS[note.state])
            pane.status.show(note.state, session.parameters)
        elif isinstance(note, TranscriptChanged) and isinstance(session, ChatSession):
            view.render_transcript(session.transcript)

    def _render_document(self, session: StreamingSession, pane: DocumentPane, note: Notification) -> None:
        if not isinstance(session, CompletionSession):
            return
        if isinstance(note, (DeltaApplied, DocumentChanged)):
            pane.show_text(session.text, streaming=session.busy)
        elif isinstance(note, StateChanged):
            pane.show_text(session.text, streaming=session.busy)
            pane.status.show(note.state, session.parameters)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def on_chat_input_bar_submitted(self, event: ChatInputBar.Submitted) -> None:
        """Send the input to the active session, or run a /command.

        In a completion tab the input is appended to the document, which is
        then extended.
        """
        active = self._active()
        if active is None:
            return
        session_id, pane = active

        if event.value.startswith(COMMAND_PREFIX):
            self._run_command(session_id, pane, event.value[len(COMMAND_PREFIX):])
            return

        session = self._manager.get(session_id)
        try:
            if isinstance(session, CompletionSession):
                session.set_prompt(session.document + event.value)
                self._manager.dispatch(session_id, GenerateCommand())
            else:
                self._manager.dispatch(session_id, SendCommand(text=event.value))
        except SessionError as e:
            self.notify(str(e), severity="warning", timeout=NOTIFY_TIMEOUT)

    def on_document_pane_edited(self, event: DocumentPane.Edited) -> None:
        """Hand user edits of a completion document to its session."""
        try:
            session = self._manager.get(event.session_id)
        except SessionNotFoundError:
            return
        if not isinstance(session, CompletionSession) or session.busy:
            return
        if event.text != session.document:
            session.set_prompt(event.text)

    def _run_command(self, session_id: str, pane: Pane, command: str) -> None:
        parts = command.split(maxsplit=2)
        if len(parts) == 3 and parts[0] == "set" and parts[1] in SETTABLE_PARAMETERS:
            name, raw = parts[1], parts[2]
            session = self._manager.get(session_id)
            try:
                value = None if raw.lower() == "none" else SETTABLE_PARAMETERS[name](raw)
                params = session.update_parameters(**{name: value})
            except ValueError as e:
                self.notify(f"Invalid {name}: {e}", severity="error", timeout=ERROR_NOTIFY_TIMEOUT)
                return
            pane.status.show(session.state, params)
            self.notify(f"{name} = {value}", timeout=NOTIFY_TIMEOUT)
            return

        names = "|".join(SETTABLE_PARAMETERS)
        self.notify(f"Usage: /set <{names}> <value>", severity="warning", timeout=ERROR_NOTIFY_TIMEOUT)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def action_new_tab(self) -> None:
        """Open a new chat session in a new tab."""
        await self._add_tab(self._manager.open())

    async def action_new_completion_tab(self) -> None:
        """Open a new completion session in a new tab."""
        await self._add_tab(self._manager.open_completion())

    async def action_close_tab(self) -> None:
        """Close the active tab, saving its session."""
        active = self._active()
        if active is None:
            return
        session_id, _ = active
        tabs = self.query_one("#tabs", TabbedContent)
        pane_id = tabs.active

        try:
            await self._manager.close(session_id)
        except PersistenceError as e:
            self.notify(f"Could not save {session_id}: {e}", severity="error", timeout=ERROR_NOTIFY_TIMEOUT)
            return

        del self._panes[pane_id]
        await tabs.remove_pane(pane_id)
        if not self._panes:
            await self._add_tab(self._manager.open())

    def action_cancel(self) -> None:
        """Cancel the active session's stream."""
        active = self._active()
        if active is None:
            return
        try:
            self._manager.dispatch(active[0], CancelCommand())
        except InvalidSessionStateError:
            self.notify("Nothing to cancel", timeout=NOTIFY_TIMEOUT)

    def action_retry(self) -> None:
        """Stream a new reply to the last user message."""
        self._dispatch_active(RetryCommand())

    def action_generate(self) -> None:
        """Extend the active completion document."""
        self._dispatch_active(GenerateCommand())

    def action_insert_at_cursor(self) -> None:
        """Stream text into the active completion document at the cursor."""
        active = self._active()
        if active is None or not isinstance(active[1], DocumentPane):
            self.notify("Insert works in completion tabs", severity="warning", timeout=NOTIFY_TIMEOUT)
            return
        self._dispatch_active(GenerateCommand(insert_at=active[1].cursor_offset()))

    def _dispatch_active(self, command) -> None:
        active = self._active()
        if active is None:
            return
        try:
            self._manager.dispatch(active[0], command)
        except (SessionError, ValueError) as e:
            self.notify(str(e), severity="warning", timeout=NOTIFY_TIMEOUT)

    async def action_save(self) -> None:
        """Save the active session."""
        active = self._active()
        if active is None:
            return
        try:
            record = await self._manager.save(active[0])
        except PersistenceError as e:
            self.notify(f"Save failed: {e}", severity="error", timeout=ERROR_NOTIFY_TIMEOUT)
            return
        self.notify(f"Saved {record.session_id} ({record.title})", timeout=NOTIFY_TIMEOUT)

    def _active_chat(self) -> ChatSession | None:
        active = self._active()
        if active is None:
            return None
        session = self._manager.get(active[0])
        if not isinstance(session, ChatSession):
            self.notify("Only chat tabs have messages", severity="warning", timeout=NOTIFY_TIMEOUT)
            return None
        return session

    def action_remove_last(self) -> None:
        """Remove the last message of the active session."""
        session = self._active_chat()
        if session is None:
            return
        try:
            session.remove_last()
        except SessionError as e:
            self.notify(str(e), severity="warning", timeout=NOTIFY_TIMEOUT)

    def action_clear_chat(self) -> None:
        """Clear the active session, keeping its system message."""
        session = self._active_chat()
        if session is None:
            return
        try:
            session.clear()
        except SessionError as e:
            self.notify(str(e), severity="warning", timeout=NOTIFY_TIMEOUT)
            return
        self.notify("Chat cleared", timeout=NOTIFY_TIMEOUT)

    def action_copy_last_response(self) -> None:
        """Copy the last assistant response, or the whole document, to the clipboard."""
        active = self._active()
        response = None
        if active is not None:
            session = self._manager.get(active[0])
            if isinstance(session, CompletionSession):
                response = session.document
            elif isinstance(active[1], SessionPane):
                response = active[1].transcript_view.last_assistant_text()
        if not response:
            self.notify("No response to copy", severity="warning", timeout=NOTIFY_TIMEOUT)
            return
        try:
            pyperclip.copy(response)
            self.notify("Response copied", timeout=NOTIFY_TIMEOUT)
        except pyperclip.PyperclipException:
            # No system clipboard (e.g. over SSH); use the terminal's.
            self.copy_to_clipboard(response)
            self.notify("Response copied (terminal)", timeout=NOTIFY_TIMEOUT)


def _tab_title(session_id: str) -> str:
    if len(session_id) <= TAB_TITLE_MAX_LENGTH:
        return session_id
    return session_id[: TAB_TITLE_MAX_LENGTH - 3] + "..."


async def run_textual_tui(
    manager: SessionManager,
    resume: Iterable[str] = (),
    log_level: str = "INFO",
) -> None:
    """Run the Textual TUI.

    Args:
        manager: Session manager (already entered); the caller closes it
        resume: Saved session ids to reopen as tabs
        log_level: Lowest level mirrored into the log panel
    """
    app = TabChatApp(manager, resume=resume, log_level=log_level)
    try:
        await app.run_async()
    except KeyboardInterrupt:
        pass
