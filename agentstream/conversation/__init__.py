from __future__ import annotations

from .accumulator import ConversationAccumulator
from .interrupt import (
    REQUEST_USER_INPUT,
    InputField,
    InputRequest,
    find_input_request,
    format_submission,
    missing_required,
    renderable_tool_calls,
)
from .tool_state import ToolCallRecord

__all__ = [
    "REQUEST_USER_INPUT",
    "ConversationAccumulator",
    "InputField",
    "InputRequest",
    "ToolCallRecord",
    "find_input_request",
    "format_submission",
    "missing_required",
    "renderable_tool_calls",
]
