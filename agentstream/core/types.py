from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

Sender = Literal["user", "assistant"]


def new_message_id() -> str:
    return secrets.token_urlsafe(15)


class ToolCallStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """Immutable view of one tool invocation record."""

    id: str
    name: str
    input: dict[str, Any]
    status: ToolCallStatus = ToolCallStatus.RUNNING
    output: Any = None


@dataclass(frozen=True, slots=True)
class TurnSnapshot:
    """What the accumulator has built so far: running text plus tool calls in first-seen order."""

    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True, slots=True)
class Message:
    content: str
    sender: Sender
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tool_calls: tuple[ToolCall, ...] = ()

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(content=content, sender="user")

    @classmethod
    def assistant(cls, content: str, *, tool_calls: tuple[ToolCall, ...] = ()) -> "Message":
        return cls(content=content, sender="assistant", tool_calls=tuple(tool_calls))

    @property
    def role(self) -> str:
        return "user" if self.sender == "user" else "assistant"


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    """One row of the persistence service's conversation list."""

    id: str
    title: str = ""
    created_at: str | None = None
    updated_at: str | None = None
