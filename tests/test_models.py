"""Unit tests for conversation data models."""
import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from tabchat.errors import InvalidSessionStateError, MessageFinalizedError
from tabchat.models import (
    STATE_TRANSITIONS,
    Message,
    MessageStatus,
    ModelParameters,
    Role,
    SessionState,
    Transcript,
    build_completion_body,
    build_request_body,
)


class TestMessage:
    """Tests for Message."""

    def test_append_only_while_streaming(self):
        """Test that complete messages reject fragments."""
        message = Message(role=Role.ASSISTANT, status=MessageStatus.STREAMING)
        message.append("Hi")
        message.status = MessageStatus.COMPLETE

        with pytest.raises(MessageFinalizedError):
            message.append("!")
        assert message.content == "Hi"

    def test_to_wire(self):
        """Test the wire representation."""
        assert Message(role=Role.USER, content="Hi").to_wire() == {"role": "user", "content": "Hi"}


class TestModelParameters:
    """Tests for ModelParameters."""

    def test_defaults(self):
        """Test the documented defaults."""
        params = ModelParameters()
        assert params.model == "gpt-4o-mini"
        assert params.temperature == 1.0
        assert params.top_p == 1.0
        assert params.max_tokens is None
        assert params.presence_penalty == 0.0
        assert params.frequency_penalty == 0.0

    @given(st.floats(min_value=0.0, max_value=2.0))
    def test_temperature_in_range_accepted(self, value):
        """Test that any temperature in [0, 2] validates."""
        assert ModelParameters(temperature=value).temperature == value

    @pytest.mark.parametrize("field,value", [
        ("temperature", 2.1),
        ("temperature", -0.1),
        ("top_p", 1.5),
        ("max_tokens", 0),
        ("presence_penalty", 2.5),
        ("frequency_penalty", -3),
    ])
    def test_out_of_range_rejected(self, field, value):
        """Test that out-of-range values fail validation."""
        with pytest.raises(ValidationError):
            ModelParameters(**{field: value})

    def test_frozen(self):
        """Test that a snapshot can't be mutated."""
        params = ModelParameters()
        with pytest.raises(ValidationError):
            params.temperature = 0.5

    def test_with_changes_validates(self):
        """Test that with_changes returns a new validated copy."""
        params = ModelParameters()
        changed = params.with_changes(temperature=0.2)

        assert changed.temperature == 0.2
        assert params.temperature == 1.0
        with pytest.raises(ValidationError):
            params.with_changes(top_p=9)


class TestTranscript:
    """Tests for Transcript."""

    def test_append_returns_index(self):
        transcript = Transcript()
        assert transcript.append(Message(role=Role.USER, content="a")) == 0
        assert transcript.append(Message(role=Role.ASSISTANT, content="b")) == 1
        assert len(transcript) == 2
        assert transcript.last.content == "b"

    def test_append_while_streaming_rejected(self):
        """Test that only the trailing message may be in progress."""
        transcript = Transcript([Message(role=Role.ASSISTANT, status=MessageStatus.STREAMING)])

        with pytest.raises(InvalidSessionStateError):
            transcript.append(Message(role=Role.USER, content="x"))

    def test_pop_last(self):
        transcript = Transcript([Message(role=Role.USER, content="a")])
        assert transcript.pop_last().content == "a"
        with pytest.raises(InvalidSessionStateError):
            transcript.pop_last()

    def test_pop_streaming_rejected(self):
        transcript = Transcript([Message(role=Role.ASSISTANT, status=MessageStatus.STREAMING)])
        with pytest.raises(InvalidSessionStateError):
            transcript.pop_last()

    def test_clear_keeps_system_message(self):
        """Test that clear keeps a leading system message by default."""
        transcript = Transcript([
            Message(role=Role.SYSTEM, content="be brief"),
            Message(role=Role.USER, content="hi"),
        ])
        transcript.clear()
        assert [m.role for m in transcript] == [Role.SYSTEM]

        transcript.clear(keep_system=False)
        assert len(transcript) == 0


class TestRequestBody:
    """Tests for build_request_body."""

    def test_body_fields(self):
        """Test that the body carries the parameters and stream flag."""
        transcript = Transcript([Message(role=Role.USER, content="hi")])
        body = build_request_body(transcript, ModelParameters(temperature=0.3))

        assert body["model"] == "gpt-4o-mini"
        assert body["messages"] == [{"role": "user", "content": "hi"}]
        assert body["temperature"] == 0.3
        assert body["n"] == 1
        assert body["stream"] is True
        assert "max_tokens" not in body

    def test_max_tokens_only_when_set(self):
        body = build_request_body(Transcript(), ModelParameters(max_tokens=64))
        assert body["max_tokens"] == 64

    def test_completion_body(self):
        """Test that a text-completion body carries the prompt instead of messages."""
        body = build_completion_body("Once", ModelParameters(model="gpt-3.5-turbo-instruct", max_tokens=16))

        assert body["prompt"] == "Once"
        assert body["model"] == "gpt-3.5-turbo-instruct"
        assert body["max_tokens"] == 16
        assert body["stream"] is True
        assert "messages" not in body
        assert "suffix" not in body

    def test_completion_body_suffix(self):
        body = build_completion_body("a ", ModelParameters(), suffix=" c")
        assert body["suffix"] == " c"
        assert "suffix" not in build_completion_body("a ", ModelParameters(), suffix="")


class TestStateTransitions:
    """Tests for the session state graph."""

    def test_terminal_states_return_to_idle(self):
        for state in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED):
            assert STATE_TRANSITIONS[state] == frozenset({SessionState.IDLE})

    def test_busy_states(self):
        assert SessionState.SENDING.is_busy
        assert SessionState.STREAMING.is_busy
        assert not SessionState.IDLE.is_busy
