"""Typed events carried by the agent's response stream.

Each significant line of the body is a frame: ``data: `` followed by either the
``[DONE]`` sentinel or a JSON object whose ``type`` selects one of the variants
below. Events are transient; the accumulator consumes them immediately.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class TextDelta:
    delta: str


@dataclass(frozen=True, slots=True)
class ToolInputStart:
    tool_call_id: str
    tool_name: str


@dataclass(frozen=True, slots=True)
class ToolInputAvailable:
    tool_call_id: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolOutputAvailable:
    tool_call_id: str
    output: Any = None


@dataclass(frozen=True, slots=True)
class ToolOutputError:
    tool_call_id: str
    error_text: str = ""


@dataclass(frozen=True, slots=True)
class StreamEnd:
    pass


StreamEvent = Union[TextDelta, ToolInputStart, ToolInputAvailable, ToolOutputAvailable, ToolOutputError, StreamEnd]

STREAM_END = StreamEnd()
