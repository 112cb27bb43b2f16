"""Per-turn logging context.

A turn runs inside ``turn_scope``; every record logged from that task (and
from tasks it spawns) carries the turn's trace id, phase and the errors
collected so far.
"""

from __future__ import annotations

import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator


class TurnPhase(str, Enum):
    SEND = "SEND"
    STREAM = "STREAM"
    FINALIZE = "FINALIZE"
    CANCEL = "CANCEL"
    ABORT = "ABORT"
    IDLE = "IDLE"


@dataclass(slots=True)
class TurnContext:
    session_id: str
    turn_id: int
    trace_id: str = field(default_factory=lambda: secrets.token_hex(16))
    phase: TurnPhase = TurnPhase.SEND
    errors: list[str] = field(default_factory=list)


_current: ContextVar[TurnContext | None] = ContextVar("agentstream_turn", default=None)


def new_session_id() -> str:
    return secrets.token_hex(12)


@contextmanager
def turn_scope(*, session_id: str, turn_id: int) -> Iterator[TurnContext]:
    ctx = TurnContext(session_id=session_id, turn_id=turn_id)
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)


def set_phase(phase: TurnPhase) -> None:
    if (ctx := _current.get()) is not None:
        ctx.phase = phase


def add_error(message: str) -> None:
    if (ctx := _current.get()) is not None:
        ctx.errors.append(message)


def current_errors() -> list[str]:
    ctx = _current.get()
    return list(ctx.errors) if ctx is not None else []


def snapshot() -> dict[str, object]:
    """Fields of the active turn for the log formatter; empty outside a turn."""

    ctx = _current.get()
    if ctx is None:
        return {}
    return {
        "trace_id": ctx.trace_id,
        "session_id": ctx.session_id,
        "turn_id": ctx.turn_id,
        "state": ctx.phase.value,
        "errors": list(ctx.errors),
    }
