from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, AsyncIterator

from agentstream.core.errors import DecodeError
from agentstream.observability import add_error
from agentstream.observability.logging import get_logger

from .events import (
    STREAM_END,
    StreamEvent,
    TextDelta,
    ToolInputAvailable,
    ToolInputStart,
    ToolOutputAvailable,
    ToolOutputError,
)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_log = get_logger(__name__)


def _require_str(obj: Mapping[str, Any], key: str, *, line: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise DecodeError(f"Frame field {key!r} must be a non-empty string", line=line)
    return value


def _parse_text_delta(obj: Mapping[str, Any], line: str) -> StreamEvent:
    delta = obj.get("delta")
    return TextDelta(delta=delta if isinstance(delta, str) else "")


def _parse_tool_input_start(obj: Mapping[str, Any], line: str) -> StreamEvent:
    return ToolInputStart(
        tool_call_id=_require_str(obj, "toolCallId", line=line),
        tool_name=_require_str(obj, "toolName", line=line),
    )


def _parse_tool_input_available(obj: Mapping[str, Any], line: str) -> StreamEvent:
    raw_input = obj.get("input")
    if raw_input is None:
        raw_input = {}
    if not isinstance(raw_input, dict):
        raise DecodeError("Frame field 'input' must be an object", line=line)
    return ToolInputAvailable(tool_call_id=_require_str(obj, "toolCallId", line=line), input=raw_input)


def _parse_tool_output_available(obj: Mapping[str, Any], line: str) -> StreamEvent:
    return ToolOutputAvailable(tool_call_id=_require_str(obj, "toolCallId", line=line), output=obj.get("output"))


def _parse_tool_output_error(obj: Mapping[str, Any], line: str) -> StreamEvent:
    error_text = obj.get("errorText")
    return ToolOutputError(
        tool_call_id=_require_str(obj, "toolCallId", line=line),
        error_text=str(error_text) if error_text is not None else "",
    )


_PARSERS = {
    "text-delta": _parse_text_delta,
    "tool-input-start": _parse_tool_input_start,
    "tool-input-available": _parse_tool_input_available,
    "tool-output-available": _parse_tool_output_available,
    "tool-output-error": _parse_tool_output_error,
}


class EventDecoder:
    """Turn frames of one response stream into StreamEvents.

    Malformed frames never raise out of ``decode_line``; they are kept in
    ``errors`` and the line is skipped. After ``[DONE]`` every further line is
    ignored.
    """

    def __init__(self) -> None:
        self.errors: list[DecodeError] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def decode_line(self, line: str) -> StreamEvent | None:
        if self._finished or not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX) :]
        if data == DONE_SENTINEL:
            self._finished = True
            return STREAM_END

        try:
            return self._decode_payload(data, line)
        except DecodeError as e:
            self._record(e)
            return None

    def _decode_payload(self, data: str, line: str) -> StreamEvent | None:
        try:
            obj = json.loads(data)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Invalid JSON in frame: {e}", line=line) from e

        if not isinstance(obj, dict):
            raise DecodeError("Frame payload must be a JSON object", line=line)

        event_type = obj.get("type")
        parser = _PARSERS.get(event_type) if isinstance(event_type, str) else None
        if parser is None:
            # Unknown event types are reserved for newer servers.
            return None
        return parser(obj, line)

    def _record(self, err: DecodeError) -> None:
        self.errors.append(err)
        add_error(f"decode_error: {err}")
        _log.warning("frame_decode_failed", error=str(err), frame=(err.line or "")[:200])


async def iter_events(lines: AsyncIterator[str], decoder: EventDecoder | None = None) -> AsyncIterator[StreamEvent]:
    """Decode lines until ``[DONE]`` or the end of the line stream.

    The terminating StreamEnd is yielded when the sentinel is seen; a stream
    that simply closes ends without one.
    """

    decoder = decoder or EventDecoder()
    async for line in lines:
        event = decoder.decode_line(line)
        if event is None:
            continue
        yield event
        if decoder.finished:
            return
