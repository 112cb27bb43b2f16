from __future__ import annotations

import asyncio
import io

from agentstream.conversation.interrupt import InputField, InputRequest
from agentstream.core import cli
from agentstream.core.cli import StreamPrinter, main
from agentstream.core.types import ToolCall, ToolCallStatus, TurnSnapshot


def test_printer_writes_text_suffix_and_status_changes() -> None:
    out = io.StringIO()
    printer = StreamPrinter(out)
    running = ToolCall(id="t1", name="SEARCH", input={})
    done = ToolCall(id="t1", name="SEARCH", input={}, status=ToolCallStatus.COMPLETED)
    form = ToolCall(id="t2", name="REQUEST_USER_INPUT", input={})

    printer(TurnSnapshot(text="Hel"))
    printer(TurnSnapshot(text="Hello", tool_calls=(running,)))
    printer(TurnSnapshot(text="Hello", tool_calls=(running, form)))
    printer(TurnSnapshot(text="Hello!", tool_calls=(done, form)))
    printer(None)

    assert out.getvalue() == "Hel\n  [SEARCH] running\nlo\n  [SEARCH] completed\n!\n"


def test_printer_resets_between_turns() -> None:
    out = io.StringIO()
    printer = StreamPrinter(out)

    printer(TurnSnapshot(text="one"))
    printer(None)
    printer(TurnSnapshot(text="two"))
    printer(None)

    assert out.getvalue() == "one\ntwo\n"


def test_main_reports_config_errors(tmp_path, capsys) -> None:
    missing = tmp_path / "nope.yaml"

    assert main(["--config", str(missing), "-m", "hi"]) == 2
    assert "config error" in capsys.readouterr().err


def test_collect_input_reprompts_only_missing_required_fields(monkeypatch, capsys) -> None:
    request = InputRequest(
        tool_call_id="t9",
        provider="Gmail",
        fields=(
            InputField(name="email", label="Email"),
            InputField(name="code", label="Code", required=True),
        ),
    )
    answers = iter(["me@example.com", "  ", "123"])
    prompts: list[str] = []

    async def fake_ask(prompt: str) -> str:
        prompts.append(prompt)
        return next(answers)

    monkeypatch.setattr(cli, "_ask", fake_ask)

    values = asyncio.run(cli._collect_input(request))

    assert values == {"email": "me@example.com", "code": "123"}
    assert prompts == ["  Email: ", "  Code*: ", "  Code*: "]
    assert "Required: Code" in capsys.readouterr().out
