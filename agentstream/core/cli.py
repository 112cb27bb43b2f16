from __future__ import annotations

import argparse
import asyncio
import sys
from typing import TextIO

from agentstream.conversation.interrupt import (
    InputRequest,
    find_input_request,
    missing_required,
    renderable_tool_calls,
)
from agentstream.core.types import ToolCallStatus, TurnSnapshot
from agentstream.observability.logging import configure_logging, get_logger
from agentstream.orchestrator.session import ERROR_TEXT, NO_CONTENT_TEXT, ChatSession
from agentstream.transport.chat import ChatTransport
from agentstream.transport.conversations import HttpConversationStore

from .config import load_config
from .errors import ConfigError

HELP = "Commands: /new, /list, /load <id>, /delete <id>, /quit"


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Terminal chat against a tool-using agent")
    p.add_argument("--config", default="configs/app.yaml", help="YAML config path")
    p.add_argument("--log-level", default=None, help="Override logging.level from the config")
    p.add_argument("--message", "-m", default=None, help="Send one message and exit")
    return p


class StreamPrinter:
    """Prints a streaming reply incrementally from session snapshots."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._text_mark = 0
        self._line_open = False
        self._statuses: dict[str, ToolCallStatus] = {}

    def __call__(self, snapshot: TurnSnapshot | None) -> None:
        if snapshot is None:
            self._end_line()
            self._text_mark = 0
            self._statuses.clear()
            self._out.flush()
            return

        for tc in renderable_tool_calls(snapshot.tool_calls):
            if self._statuses.get(tc.id) == tc.status:
                continue
            self._statuses[tc.id] = tc.status
            self._end_line()
            self._out.write(f"  [{tc.name}] {tc.status.value}\n")

        if len(snapshot.text) > self._text_mark:
            self._out.write(snapshot.text[self._text_mark :])
            self._text_mark = len(snapshot.text)
            self._line_open = True
        self._out.flush()

    def _end_line(self) -> None:
        if self._line_open:
            self._out.write("\n")
            self._line_open = False


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def _collect_input(request: InputRequest) -> dict[str, str]:
    print(f"{request.provider} needs some details to continue.")
    fields = {f.name: f for f in request.fields}
    values: dict[str, str] = {}
    pending = list(fields)
    while pending:
        for name in pending:
            f = fields[name]
            hint = f" ({f.placeholder})" if f.placeholder else ""
            marker = "*" if f.required else ""
            values[name] = (await _ask(f"  {f.label}{marker}{hint}: ")).strip()
        pending = missing_required(request, values)
        if pending:
            print(f"  Required: {', '.join(fields[n].label for n in pending)}")
    return values


async def _turn(session: ChatSession, text: str) -> None:
    reply = await session.send_message(text)
    # The agent may chain several input requests; keep answering until it stops asking.
    while reply is not None and (request := find_input_request(reply.tool_calls)) is not None:
        values = await _collect_input(request)
        reply = await session.submit_user_input(values)
    if reply is not None and reply.content in (ERROR_TEXT, NO_CONTENT_TEXT):
        print(reply.content)


async def _handle_command(session: ChatSession, line: str) -> bool:
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()
    if cmd == "/quit":
        return False
    if cmd == "/new":
        session.start_new_chat()
        print("Started a new chat.")
    elif cmd == "/list":
        for c in await session.refresh_conversations():
            print(f"  {c.id}  {c.title or '(untitled)'}  {c.updated_at or c.created_at or ''}")
    elif cmd == "/load" and arg:
        if await session.load_conversation(arg):
            for m in session.messages:
                print(f"{m.sender}: {m.content}")
        else:
            print(f"Could not load conversation {arg}.")
    elif cmd == "/delete" and arg:
        print("Deleted." if await session.delete_conversation(arg) else f"Could not delete {arg}.")
    else:
        print(HELP)
    return True


async def _repl(session: ChatSession) -> None:
    print(HELP)
    while True:
        try:
            line = (await _ask("> ")).strip()
        except EOFError:
            return
        if not line:
            continue
        if line.startswith("/"):
            if not await _handle_command(session, line):
                return
            continue
        await _turn(session, line)


async def _run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    configure_logging(args.log_level or cfg.logging.level)
    log = get_logger("agentstream.cli")

    transport = ChatTransport(cfg.agent)
    store = HttpConversationStore(cfg.agent, cfg.persistence)
    session = ChatSession(transport=transport, store=store)
    session.on_snapshot(StreamPrinter(sys.stdout))

    log.info("cli_started", base_url=cfg.agent.base_url)
    try:
        if args.message:
            await _turn(session, args.message)
        else:
            await _repl(session)
    finally:
        await transport.aclose()
        await store.aclose()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130
