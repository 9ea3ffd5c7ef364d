"""Event-stream decoding and delta assembly.

- models.py: stream event types and wire payload shapes
- decoder.py: incremental event-stream decoder
- assembler.py: folds events into the trailing assistant message
"""

from .assembler import AssemblyStep, DeltaAssembler
from .decoder import SSEDecoder, decode_stream
from .models import (
    DONE_SENTINEL,
    ChatChunk,
    ContentDelta,
    DecodeFailure,
    ServerEvent,
    StreamDone,
    StreamEvent,
)

__all__ = [
    "AssemblyStep",
    "ChatChunk",
    "ContentDelta",
    "DONE_SENTINEL",
    "DecodeFailure",
    "DeltaAssembler",
    "SSEDecoder",
    "ServerEvent",
    "StreamDone",
    "StreamEvent",
    "decode_stream",
]
