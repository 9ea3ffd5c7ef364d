"""Fold stream events into the trailing assistant message.

One DeltaAssembler serves one assistant turn. Events are applied one at a
time in arrival order, so the message content is always exactly the
concatenation of the fragments applied so far.
"""

from dataclasses import dataclass

from ..errors import DecodeError, MessageFinalizedError
from ..models import Message, MessageStatus
from .models import ContentDelta, DecodeFailure, StreamDone, StreamEvent


@dataclass(frozen=True, slots=True)
class AssemblyStep:
    """Outcome of applying one event."""

    fragment: str = ""
    completed: bool = False
    error: DecodeError | None = None


class DeltaAssembler:
    """Apply stream events to a streaming message.

    Only choice ``choice_index`` is assembled; deltas for other choices are
    ignored. A decode failure marks the message partial and is returned to
    the caller, but never discards text already received.
    """

    def __init__(self, message: Message, choice_index: int = 0):
        if message.status is not MessageStatus.STREAMING:
            raise MessageFinalizedError("Assembler needs a streaming message")
        self._message = message
        self._choice_index = choice_index
        self._errors: list[DecodeError] = []
        self._fragments = 0

    @property
    def message(self) -> Message:
        return self._message

    @property
    def errors(self) -> list[DecodeError]:
        """Decode errors seen during this turn, in order."""
        return list(self._errors)

    @property
    def fragments(self) -> int:
        """Number of non-empty fragments applied."""
        return self._fragments

    @property
    def finished(self) -> bool:
        return self._message.status is not MessageStatus.STREAMING

    def apply(self, event: StreamEvent) -> AssemblyStep:
        """Apply a single event to the message.

        Raises:
            MessageFinalizedError: If the message was already completed or aborted
        """
        if self.finished:
            raise MessageFinalizedError(
                f"Message is {self._message.status.value}; no further events may be applied"
            )

        if isinstance(event, ContentDelta):
            if event.index != self._choice_index:
                return AssemblyStep()
            if event.role is not None:
                self._message.role = event.role
            if event.text:
                self._message.append(event.text)
                self._fragments += 1
            return AssemblyStep(fragment=event.text)

        if isinstance(event, StreamDone):
            self._message.status = MessageStatus.COMPLETE
            return AssemblyStep(completed=True)

        if isinstance(event, DecodeFailure):
            error = DecodeError(event.reason, event.payload)
            self._message.partial = True
            self._errors.append(error)
            return AssemblyStep(error=error)

        raise TypeError(f"Unknown stream event: {event!r}")

    def abort(self) -> None:
        """Stop assembling, keeping whatever content arrived."""
        if not self.finished:
            self._message.status = MessageStatus.ABORTED
