"""Lifecycle of a single tool-call record.

running ──output──▶ completed
   │
   └──error/undelivered──▶ error

Both terminal states are sinks. Re-entering the current state is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from agentstream.core.errors import ProtocolError
from agentstream.core.types import ToolCall, ToolCallStatus

TERMINAL_STATES = frozenset({ToolCallStatus.COMPLETED, ToolCallStatus.ERROR})


def can_transition(current: ToolCallStatus, target: ToolCallStatus) -> bool:
    if current == target:
        return True
    return current == ToolCallStatus.RUNNING and target in TERMINAL_STATES


@dataclass(slots=True)
class ToolCallRecord:
    """Mutable record owned by the accumulator for the length of one turn."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    status: ToolCallStatus = ToolCallStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def transition(self, target: ToolCallStatus, *, output: Any = None) -> bool:
        """Move to ``target`` and store ``output``.

        Returns False when the record is already in ``target`` (nothing changes).

        Raises:
            ProtocolError: the record is terminal and ``target`` differs.
        """

        if self.status == target:
            return False
        if not can_transition(self.status, target):
            raise ProtocolError(
                f"Tool call {self.id!r} cannot move from {self.status.value} to {target.value}",
                tool_call_id=self.id,
            )
        self.status = target
        self.output = output
        return True

    def freeze(self) -> ToolCall:
        return ToolCall(
            id=self.id,
            name=self.name,
            input=dict(self.input),
            status=self.status,
            output=self.output,
        )
