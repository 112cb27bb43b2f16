from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import httpx

from agentstream.conversation.interrupt import find_input_request, renderable_tool_calls
from agentstream.core.config import AgentConfig
from agentstream.core.errors import TransportError
from agentstream.core.types import ConversationSummary, Message, ToolCallStatus, TurnSnapshot
from agentstream.orchestrator.session import ERROR_TEXT, NO_CONTENT_TEXT, ChatSession
from agentstream.transport.chat import ChatTransport


def _frame(obj: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(obj)}\n".encode()


DONE = b"data: [DONE]\n"


async def _body(chunks: list[bytes], *, fail: Exception | None = None) -> AsyncIterator[bytes]:
    for c in chunks:
        yield c
    if fail is not None:
        raise fail


@dataclass(slots=True)
class FakeStore:
    conversations: list[ConversationSummary] = field(default_factory=list)
    histories: dict[str, list[Message]] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    list_calls: int = 0

    async def list_conversations(self) -> list[ConversationSummary]:
        self.list_calls += 1
        return list(self.conversations)

    async def load_messages(self, conversation_id: str) -> list[Message]:
        if conversation_id not in self.histories:
            raise TransportError("HTTP 404", status_code=404)
        return list(self.histories[conversation_id])

    async def delete_conversation(self, conversation_id: str) -> None:
        self.deleted.append(conversation_id)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]


def _make_session(
    handler: Callable[[httpx.Request], Any],
    *,
    store: FakeStore | None = None,
    idle_timeout_s: float | None = None,
) -> ChatSession:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = ChatTransport(AgentConfig(base_url="http://agent.test"), client=client)
    return ChatSession(transport=transport, store=store, idle_timeout_s=idle_timeout_s)


def _streaming(chunks: list[bytes], *, headers: dict[str, str] | None = None, fail: Exception | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers=headers, content=_body(chunks, fail=fail))

    return handler


def test_text_only_turn() -> None:
    session = _make_session(
        _streaming(
            [
                _frame({"type": "text-delta", "delta": "Hel"}),
                _frame({"type": "text-delta", "delta": "lo"}),
                DONE,
            ]
        )
    )

    reply = asyncio.run(session.send_message("hi"))

    assert reply is not None
    assert reply.content == "Hello"
    assert reply.sender == "assistant"
    assert reply.tool_calls == ()
    assert [m.sender for m in session.messages] == ["user", "assistant"]
    assert session.messages[0].content == "hi"
    assert session.is_loading is False


def test_frames_split_across_chunks() -> None:
    raw = _frame({"type": "text-delta", "delta": "héllo"}) + DONE
    chunks = [raw[i : i + 3] for i in range(0, len(raw), 3)]

    reply = asyncio.run(_make_session(_streaming(chunks)).send_message("hi"))

    assert reply is not None and reply.content == "héllo"


def test_tool_call_turn_publishes_progress() -> None:
    session = _make_session(
        _streaming(
            [
                _frame({"type": "tool-input-start", "toolCallId": "t1", "toolName": "SEARCH"}),
                _frame({"type": "tool-input-available", "toolCallId": "t1", "input": {"q": "cats"}}),
                _frame({"type": "tool-output-available", "toolCallId": "t1", "output": {"results": []}}),
                _frame({"type": "text-delta", "delta": "No cats found."}),
                DONE,
            ]
        )
    )
    seen: list[TurnSnapshot | None] = []
    session.on_snapshot(seen.append)

    reply = asyncio.run(session.send_message("find cats"))

    assert reply is not None
    assert reply.content == "No cats found."
    (tc,) = reply.tool_calls
    assert (tc.id, tc.name, tc.input, tc.output, tc.status) == (
        "t1",
        "SEARCH",
        {"q": "cats"},
        {"results": []},
        ToolCallStatus.COMPLETED,
    )
    assert seen[0] is not None and seen[0].tool_calls[0].status is ToolCallStatus.RUNNING
    assert seen[-1] is None


def test_malformed_frame_mid_stream_is_skipped() -> None:
    session = _make_session(
        _streaming(
            [
                _frame({"type": "text-delta", "delta": "a"}),
                b'data: {"type": "text-delta", "delta": \n',
                _frame({"type": "text-delta", "delta": "b"}),
                DONE,
            ]
        )
    )

    reply = asyncio.run(session.send_message("hi"))

    assert reply is not None and reply.content == "ab"


def test_dropped_connection_appends_one_error_message() -> None:
    session = _make_session(
        _streaming(
            [_frame({"type": "text-delta", "delta": "partial"}), b'data: {"type": "text-del'],
            fail=httpx.ReadError("connection reset"),
        )
    )

    reply = asyncio.run(session.send_message("hi"))

    assert reply is not None and reply.content == ERROR_TEXT
    assistant = [m for m in session.messages if m.sender == "assistant"]
    assert [m.content for m in assistant] == [ERROR_TEXT]
    assert session.is_loading is False
    assert session.streaming is None


def test_non_success_status_is_an_error_reply() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    session = _make_session(handler)
    reply = asyncio.run(session.send_message("hi"))

    assert reply is not None and reply.content == ERROR_TEXT
    assert len(session.messages) == 2


def test_empty_reply_gets_placeholder_text() -> None:
    reply = asyncio.run(_make_session(_streaming([DONE])).send_message("hi"))

    assert reply is not None and reply.content == NO_CONTENT_TEXT


def test_stream_closing_without_done_still_finalizes() -> None:
    session = _make_session(
        _streaming(
            [
                _frame({"type": "tool-input-start", "toolCallId": "t1", "toolName": "SEARCH"}),
                _frame({"type": "text-delta", "delta": "Working"}),
            ]
        )
    )

    reply = asyncio.run(session.send_message("hi"))

    assert reply is not None and reply.content == "Working"
    assert reply.tool_calls[0].status is ToolCallStatus.ERROR


def test_blank_input_is_rejected_without_a_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=_body([DONE]))

    session = _make_session(handler)

    assert asyncio.run(session.send_message("")) is None
    assert asyncio.run(session.send_message("   \n")) is None
    assert calls == []
    assert session.messages == ()


def test_request_body_carries_history_and_conversation_id() -> None:
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            headers={"X-Conversation-Id": "c1"},
            content=_body([_frame({"type": "text-delta", "delta": "ok"}), DONE]),
        )

    store = FakeStore(conversations=[ConversationSummary(id="c1", title="First chat")])
    session = _make_session(handler, store=store)

    async def two_turns() -> None:
        await session.send_message("one")
        await session.send_message("two")

    asyncio.run(two_turns())

    assert "conversationId" not in bodies[0]
    assert bodies[0]["messages"] == [{"role": "user", "content": "one"}]
    assert bodies[1]["conversationId"] == "c1"
    assert bodies[1]["messages"] == [
        {"role": "user", "content": "one"},
        {"role": "assistant", "content": "ok"},
        {"role": "user", "content": "two"},
    ]
    assert session.conversation_id == "c1"
    assert [c.id for c in session.conversations] == ["c1"]
    assert store.list_calls == 1


def test_input_request_round_trip() -> None:
    bodies: list[dict[str, Any]] = []
    replies = [
        [
            _frame({"type": "tool-input-start", "toolCallId": "t9", "toolName": "REQUEST_USER_INPUT"}),
            _frame(
                {
                    "type": "tool-input-available",
                    "toolCallId": "t9",
                    "input": {"provider": "Gmail", "fields": [{"name": "code", "label": "Code", "required": True}]},
                }
            ),
            DONE,
        ],
        [_frame({"type": "text-delta", "delta": "Connected."}), DONE],
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, content=_body(replies[len(bodies) - 1]))

    session = _make_session(handler)

    async def flow() -> tuple[Message | None, Message | None]:
        first = await session.send_message("connect gmail")
        assert first is not None
        assert renderable_tool_calls(first.tool_calls) == []
        request = find_input_request(first.tool_calls)
        assert request is not None and request.provider == "Gmail"
        second = await session.submit_user_input({"code": "123"})
        return first, second

    _, second = asyncio.run(flow())

    assert second is not None and second.content == "Connected."
    assert bodies[1]["messages"][-1] == {
        "role": "user",
        "content": "I've provided the following inputs: code: 123. Please proceed with the connection.",
    }


def test_second_send_while_streaming_is_rejected() -> None:
    release = asyncio.Event()

    async def slow_body() -> AsyncIterator[bytes]:
        yield _frame({"type": "text-delta", "delta": "x"})
        await release.wait()
        yield DONE

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=slow_body())

    session = _make_session(handler)

    async def flow() -> tuple[Message | None, Message | None]:
        task = asyncio.create_task(session.send_message("first"))
        while session.streaming is None or not session.streaming.text:
            await asyncio.sleep(0)
        rejected = await session.send_message("second")
        release.set()
        return rejected, await task

    rejected, reply = asyncio.run(flow())

    assert rejected is None
    assert reply is not None and reply.content == "x"
    assert [m.content for m in session.messages] == ["first", "x"]


def test_new_chat_cancels_the_turn_in_flight() -> None:
    async def stalled_body() -> AsyncIterator[bytes]:
        yield _frame({"type": "text-delta", "delta": "par"})
        await asyncio.sleep(30)
        yield DONE

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=stalled_body())

    session = _make_session(handler)
    seen: list[TurnSnapshot | None] = []
    session.on_snapshot(seen.append)

    async def flow() -> Message | None:
        task = asyncio.create_task(session.send_message("hi"))
        while session.streaming is None or not session.streaming.text:
            await asyncio.sleep(0)
        session.start_new_chat()
        return await asyncio.wait_for(task, timeout=5)

    result = asyncio.run(flow())

    assert result is None
    assert session.messages == ()
    assert session.conversation_id is None
    assert session.is_loading is False
    assert seen[-1] is None


def test_idle_stream_times_out_into_error_reply() -> None:
    async def silent_body() -> AsyncIterator[bytes]:
        yield _frame({"type": "text-delta", "delta": "hm"})
        await asyncio.sleep(30)
        yield DONE

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=silent_body())

    session = _make_session(handler, idle_timeout_s=0.05)

    reply = asyncio.run(asyncio.wait_for(session.send_message("hi"), timeout=5))

    assert reply is not None and reply.content == ERROR_TEXT
    assert session.is_loading is False


def test_load_conversation_replaces_transcript() -> None:
    history = [Message.user("old question"), Message.assistant("old answer")]
    store = FakeStore(histories={"c7": history})
    session = _make_session(_streaming([DONE]), store=store)

    assert asyncio.run(session.load_conversation("c7")) is True
    assert session.conversation_id == "c7"
    assert [m.content for m in session.messages] == ["old question", "old answer"]

    assert asyncio.run(session.load_conversation("missing")) is False
    assert session.conversation_id == "c7"


def test_delete_current_conversation_starts_new_chat() -> None:
    store = FakeStore(
        conversations=[ConversationSummary(id="c7"), ConversationSummary(id="c8")],
        histories={"c7": [Message.user("q")]},
    )
    session = _make_session(_streaming([DONE]), store=store)

    async def flow() -> bool:
        await session.load_conversation("c7")
        return await session.delete_conversation("c7")

    assert asyncio.run(flow()) is True
    assert store.deleted == ["c7"]
    assert session.conversation_id is None
    assert session.messages == ()
    assert [c.id for c in session.conversations] == ["c8"]


def test_transcript_subscribers_see_immutable_tuples() -> None:
    session = _make_session(_streaming([_frame({"type": "text-delta", "delta": "ok"}), DONE]))
    seen: list[tuple[Message, ...]] = []
    session.on_transcript(seen.append)

    asyncio.run(session.send_message("hi"))

    assert [len(t) for t in seen] == [1, 2]
    assert all(isinstance(t, tuple) for t in seen)


def test_loading_a_conversation_cancels_the_turn_in_flight() -> None:
    async def stalled_body() -> AsyncIterator[bytes]:
        yield _frame({"type": "text-delta", "delta": "par"})
        await asyncio.sleep(30)
        yield DONE

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=stalled_body())

    history = [Message.user("old question"), Message.assistant("old answer")]
    session = _make_session(handler, store=FakeStore(histories={"c7": history}))

    async def flow() -> tuple[Message | None, bool]:
        task = asyncio.create_task(session.send_message("hi"))
        while session.streaming is None or not session.streaming.text:
            await asyncio.sleep(0)
        loaded = await session.load_conversation("c7")
        return await asyncio.wait_for(task, timeout=5), loaded

    result, loaded = asyncio.run(flow())

    assert loaded is True
    assert result is None
    assert [m.content for m in session.messages] == ["old question", "old answer"]
    assert session.conversation_id == "c7"
    assert session.is_loading is False
    assert session.streaming is None
