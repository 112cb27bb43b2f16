from __future__ import annotations

from .decoder import EventDecoder, iter_events
from .events import (
    StreamEnd,
    StreamEvent,
    TextDelta,
    ToolInputAvailable,
    ToolInputStart,
    ToolOutputAvailable,
    ToolOutputError,
)
from .reader import AbortSignal, LineReader, iter_lines

__all__ = [
    "AbortSignal",
    "EventDecoder",
    "LineReader",
    "StreamEnd",
    "StreamEvent",
    "TextDelta",
    "ToolInputAvailable",
    "ToolInputStart",
    "ToolOutputAvailable",
    "ToolOutputError",
    "iter_events",
    "iter_lines",
]
