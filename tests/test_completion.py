"""Tests for text-completion sessions: generate and insert."""
import asyncio

import pytest

from conftest import DONE, ScriptedTransport, sse_text
from tabchat.chat import (
    CompletionSession,
    DeltaApplied,
    DocumentChanged,
    NotificationHub,
    RetryPolicy,
    StateChanged,
)
from tabchat.errors import AuthError, SessionBusyError
from tabchat.models import MessageStatus, ModelParameters, SessionKind, SessionState
from tabchat.transport import Endpoint


def make_session(transport, config, prompt="", **kwargs) -> CompletionSession:
    kwargs.setdefault("retry_policy", RetryPolicy.from_config(config))
    kwargs.setdefault("idle_timeout", config.idle_timeout)
    kwargs.setdefault("hub", NotificationHub())
    kwargs.setdefault("parameters", ModelParameters(model="gpt-3.5-turbo-instruct", max_tokens=64))
    return CompletionSession("complete_1", transport, prompt=prompt, **kwargs)


async def wait_for_state(session, state: SessionState) -> None:
    for _ in range(1000):
        if session.state is state:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"session never reached {state.value}")


class TestGenerate:
    """Tests for extending the end of the document."""

    @pytest.mark.asyncio
    async def test_generated_text_is_appended(self, config):
        """Test that the generation lands after the prompt and the session is idle again."""
        transport = ScriptedTransport([sse_text(" upon"), sse_text(" a time"), DONE])
        session = make_session(transport, config, prompt="Once")

        outcome = await session.generate().wait()

        assert outcome.ok
        assert outcome.message.content == " upon a time"
        assert outcome.message.status is MessageStatus.COMPLETE
        assert session.document == "Once upon a time"
        assert session.text == session.document
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_request_goes_to_completions(self, config):
        """Test the endpoint and body of a text-completion request."""
        transport = ScriptedTransport([DONE])
        session = make_session(transport, config, prompt="Once")

        await session.generate().wait()

        assert transport.endpoints == [Endpoint.COMPLETIONS]
        body = transport.requests[0]
        assert body["prompt"] == "Once"
        assert body["model"] == "gpt-3.5-turbo-instruct"
        assert body["max_tokens"] == 64
        assert body["stream"] is True
        assert "suffix" not in body
        assert "messages" not in body

    @pytest.mark.asyncio
    async def test_deltas_carry_the_insertion_offset(self, config):
        """Test that delta notifications point at the character offset of the text."""
        transport = ScriptedTransport([sse_text("b"), sse_text("c"), DONE])
        session = make_session(transport, config, prompt="a")
        subscription = session.subscribe()

        await session.generate().wait()

        notes = subscription.drain()
        deltas = [n for n in notes if isinstance(n, DeltaApplied)]
        assert [(d.index, d.text) for d in deltas] == [(1, "b"), (1, "c")]
        changes = [n for n in notes if isinstance(n, DocumentChanged)]
        assert changes[-1].length == 3

    @pytest.mark.asyncio
    async def test_text_includes_stream_in_flight(self, config):
        """Test that text shows the partial generation while document doesn't."""
        release = asyncio.Event()
        transport = ScriptedTransport([sse_text(" upon"), release, DONE])
        session = make_session(transport, config, prompt="Once", idle_timeout=5.0)

        handle = session.generate()
        await wait_for_state(session, SessionState.STREAMING)
        for _ in range(10):
            await asyncio.sleep(0)

        assert session.text == "Once upon"
        assert session.document == "Once"

        release.set()
        await handle.wait()
        assert session.document == "Once upon"

    @pytest.mark.asyncio
    async def test_busy_rejects_edits_and_generation(self, config):
        release = asyncio.Event()
        transport = ScriptedTransport([release, DONE])
        session = make_session(transport, config, prompt="x", idle_timeout=5.0)

        handle = session.generate()
        with pytest.raises(SessionBusyError):
            session.generate()
        with pytest.raises(SessionBusyError):
            session.insert(0)
        with pytest.raises(SessionBusyError):
            session.set_prompt("y")

        release.set()
        await handle.wait()

    def test_generate_needs_running_loop(self, config):
        session = make_session(ScriptedTransport(), config)

        with pytest.raises(RuntimeError):
            session.generate()


class TestInsert:
    """Tests for inserting text inside the document."""

    @pytest.mark.asyncio
    async def test_insert_sends_suffix(self, config):
        """Test that the document is split at the offset and the tail goes out as suffix."""
        transport = ScriptedTransport([sse_text("brown "), DONE])
        session = make_session(transport, config, prompt="The quick fox")

        outcome = await session.insert(10).wait()

        assert outcome.ok
        body = transport.requests[0]
        assert body["prompt"] == "The quick "
        assert body["suffix"] == "fox"
        assert session.document == "The quick brown fox"

    @pytest.mark.asyncio
    async def test_insert_at_end_has_no_suffix(self, config):
        transport = ScriptedTransport([sse_text("!"), DONE])
        session = make_session(transport, config, prompt="Hi")

        await session.insert(2).wait()

        assert "suffix" not in transport.requests[0]
        assert session.document == "Hi!"

    @pytest.mark.parametrize("index", [-1, 4])
    def test_offset_outside_document(self, config, index):
        session = make_session(ScriptedTransport(), config, prompt="abc")

        with pytest.raises(ValueError):
            session.insert(index)
        assert session.document == "abc"

    @pytest.mark.asyncio
    async def test_failure_restores_suffix(self, config):
        """Test that a failed insertion leaves the document as it was."""
        transport = ScriptedTransport(AuthError(401, "bad key"))
        session = make_session(transport, config, prompt="Hello world")

        outcome = await session.insert(5).wait()

        assert outcome.state is SessionState.FAILED
        assert session.document == "Hello world"
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_insertion(self, config):
        """Test that a cancelled insertion keeps what arrived, before the suffix."""
        release = asyncio.Event()
        transport = ScriptedTransport([sse_text("big "), release, sse_text("red "), DONE])
        session = make_session(transport, config, prompt="a dog", idle_timeout=5.0)

        handle = session.insert(2)
        await wait_for_state(session, SessionState.STREAMING)
        for _ in range(10):
            await asyncio.sleep(0)
        session.cancel()

        assert session.state is SessionState.IDLE
        assert session.document == "a big dog"

        release.set()
        outcome = await handle.wait()
        assert outcome.state is SessionState.CANCELLED
        assert outcome.message.status is MessageStatus.ABORTED
        assert session.document == "a big dog"


class TestDocument:
    """Tests for editing the document."""

    def test_set_prompt_publishes_change(self, config):
        session = make_session(ScriptedTransport(), config, prompt="old")
        subscription = session.subscribe()

        session.set_prompt("brand new")

        assert session.document == "brand new"
        notes = subscription.drain()
        assert [type(n) for n in notes] == [DocumentChanged]
        assert notes[0].length == len("brand new")

    @pytest.mark.asyncio
    async def test_state_sequence(self, config):
        transport = ScriptedTransport([sse_text("x"), DONE])
        session = make_session(transport, config)
        subscription = session.subscribe()

        await session.generate().wait()

        states = [n.state for n in subscription.drain() if isinstance(n, StateChanged)]
        assert states == [
            SessionState.SENDING,
            SessionState.STREAMING,
            SessionState.COMPLETED,
            SessionState.IDLE,
        ]

    def test_kind(self, config):
        session = make_session(ScriptedTransport(), config)

        assert session.kind is SessionKind.COMPLETE
        assert session.snapshot().kind is SessionKind.COMPLETE
        assert session.snapshot().prompt == ""
