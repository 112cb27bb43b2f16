"""Streaming conversation accumulator.

Folds the decoded events of one turn into the running assistant text and an
insertion-ordered set of tool-call records. Every mutation publishes a fresh
TurnSnapshot so a front end can re-render progressively.

Events that reference unknown or terminal tool calls are non-fatal: they are
logged and leave the state untouched.
"""

from __future__ import annotations

from typing import Callable

from agentstream.bus.channel import Channel
from agentstream.core.errors import ProtocolError
from agentstream.core.types import ToolCall, ToolCallStatus, TurnSnapshot
from agentstream.observability.logging import get_logger
from agentstream.stream.events import (
    StreamEvent,
    TextDelta,
    ToolInputAvailable,
    ToolInputStart,
    ToolOutputAvailable,
    ToolOutputError,
)

from .tool_state import ToolCallRecord

UNDELIVERED_OUTPUT = "Tool output was not delivered before the response ended."


class ConversationAccumulator:
    def __init__(self) -> None:
        self._text_parts: list[str] = []
        self._tool_calls: dict[str, ToolCallRecord] = {}
        self._snapshots: Channel[TurnSnapshot] = Channel("turn_snapshot")
        self._last = TurnSnapshot()
        self._finalized = False
        self._log = get_logger("agentstream.accumulator")

    @property
    def full_text(self) -> str:
        return self._last.text

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return self._last.tool_calls

    @property
    def finalized(self) -> bool:
        return self._finalized

    def snapshot(self) -> TurnSnapshot:
        return self._last

    def on_snapshot(self, callback: Callable[[TurnSnapshot], None]) -> Callable[[], None]:
        return self._snapshots.subscribe(callback)

    def apply(self, event: StreamEvent) -> bool:
        """Fold one event into the state. Returns True when anything changed."""

        if self._finalized:
            self._log.debug("event_after_finalize_ignored", event=type(event).__name__)
            return False

        try:
            changed = self._apply(event)
        except ProtocolError as e:
            self._log.debug("tool_event_ignored", tool_call_id=e.tool_call_id, reason=str(e))
            return False

        if changed:
            self._publish()
        return changed

    def apply_all(self, events: list[StreamEvent]) -> None:
        for ev in events:
            self.apply(ev)

    def finalize(self) -> TurnSnapshot:
        """Freeze the turn.

        Calls still running never received their output; they end as errors so
        the record survives with an explicit outcome.
        """

        if self._finalized:
            return self._last

        changed = False
        for record in self._tool_calls.values():
            if record.is_terminal:
                continue
            record.transition(ToolCallStatus.ERROR, output=UNDELIVERED_OUTPUT)
            self._log.info("tool_call_undelivered", tool_call_id=record.id, tool_name=record.name)
            changed = True

        if changed:
            self._publish()
        self._finalized = True
        return self._last

    def _apply(self, event: StreamEvent) -> bool:
        if isinstance(event, TextDelta):
            if not event.delta:
                return False
            self._text_parts.append(event.delta)
            return True

        if isinstance(event, ToolInputStart):
            if event.tool_call_id in self._tool_calls:
                raise ProtocolError("Duplicate tool-input-start", tool_call_id=event.tool_call_id)
            self._tool_calls[event.tool_call_id] = ToolCallRecord(id=event.tool_call_id, name=event.tool_name)
            return True

        if isinstance(event, ToolInputAvailable):
            record = self._require(event.tool_call_id)
            if record.is_terminal:
                raise ProtocolError("Tool input arrived after the call finished", tool_call_id=record.id)
            record.input = dict(event.input)
            return True

        if isinstance(event, ToolOutputAvailable):
            return self._require(event.tool_call_id).transition(ToolCallStatus.COMPLETED, output=event.output)

        if isinstance(event, ToolOutputError):
            return self._require(event.tool_call_id).transition(ToolCallStatus.ERROR, output=event.error_text)

        # StreamEnd and anything unrecognised carry no state.
        return False

    def _require(self, tool_call_id: str) -> ToolCallRecord:
        record = self._tool_calls.get(tool_call_id)
        if record is None:
            raise ProtocolError("Event references a tool call that was never started", tool_call_id=tool_call_id)
        return record

    def _publish(self) -> None:
        self._last = TurnSnapshot(
            text="".join(self._text_parts),
            tool_calls=tuple(record.freeze() for record in self._tool_calls.values()),
        )
        self._snapshots.publish(self._last)
