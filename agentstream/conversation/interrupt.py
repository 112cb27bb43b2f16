"""Human-in-the-loop input requests.

The agent asks for structured input by calling the reserved REQUEST_USER_INPUT
tool. That call is not shown as tool progress; its input describes a small form
instead. Submitting the form does not resume anything server-side: the values
are replayed to the agent as an ordinary user message.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from agentstream.core.types import ToolCall

REQUEST_USER_INPUT = "REQUEST_USER_INPUT"
DEFAULT_PROVIDER = "Service"


@dataclass(frozen=True, slots=True)
class InputField:
    name: str
    label: str
    type: str = "text"
    required: bool = False
    placeholder: str | None = None


@dataclass(frozen=True, slots=True)
class InputRequest:
    tool_call_id: str
    provider: str = DEFAULT_PROVIDER
    fields: tuple[InputField, ...] = ()
    logo_url: str | None = None


def _parse_field(raw: Any) -> InputField | None:
    if not isinstance(raw, Mapping):
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        return None

    label = raw.get("label")
    field_type = raw.get("type")
    placeholder = raw.get("placeholder")
    return InputField(
        name=name,
        label=label if isinstance(label, str) and label else name,
        type=field_type if isinstance(field_type, str) and field_type else "text",
        required=bool(raw.get("required", False)),
        placeholder=placeholder if isinstance(placeholder, str) else None,
    )


def parse_input_request(tool_call: ToolCall) -> InputRequest:
    data = tool_call.input or {}

    provider = data.get("provider")
    logo_url = data.get("logoUrl")
    raw_fields = data.get("fields")

    fields: list[InputField] = []
    if isinstance(raw_fields, list):
        for raw in raw_fields:
            parsed = _parse_field(raw)
            if parsed is not None:
                fields.append(parsed)

    return InputRequest(
        tool_call_id=tool_call.id,
        provider=provider if isinstance(provider, str) and provider else DEFAULT_PROVIDER,
        fields=tuple(fields),
        logo_url=logo_url if isinstance(logo_url, str) and logo_url else None,
    )


def find_interrupt(tool_calls: Sequence[ToolCall]) -> ToolCall | None:
    """First REQUEST_USER_INPUT call in scan order, if any."""

    for tc in tool_calls:
        if tc.name == REQUEST_USER_INPUT:
            return tc
    return None


def find_input_request(tool_calls: Sequence[ToolCall]) -> InputRequest | None:
    tc = find_interrupt(tool_calls)
    return parse_input_request(tc) if tc is not None else None


def renderable_tool_calls(tool_calls: Sequence[ToolCall]) -> list[ToolCall]:
    """Tool calls for generic progress display, minus the active input request.

    Only the first REQUEST_USER_INPUT call is taken over by the form; any later
    one is rendered like any other call.
    """

    interrupt = find_interrupt(tool_calls)
    if interrupt is None:
        return list(tool_calls)
    return [tc for tc in tool_calls if tc is not interrupt]


def missing_required(request: InputRequest, values: Mapping[str, str]) -> list[str]:
    return [f.name for f in request.fields if f.required and not str(values.get(f.name, "")).strip()]


def format_submission(values: Mapping[str, Any]) -> str:
    """Render submitted form values as the user message that resumes the flow."""

    summary = ", ".join(f"{key}: {value}" for key, value in values.items())
    return f"I've provided the following inputs: {summary}. Please proceed with the connection."
