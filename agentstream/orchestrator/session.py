from __future__ import annotations

import time
from collections.abc import Mapping
from contextlib import aclosing
from typing import Any, Callable

from agentstream.bus.channel import Channel
from agentstream.conversation.accumulator import ConversationAccumulator
from agentstream.conversation.interrupt import format_submission
from agentstream.core.errors import TransportError, TurnCancelled
from agentstream.core.types import ConversationSummary, Message, TurnSnapshot
from agentstream.observability import TurnPhase, add_error, current_errors, get_logger, set_phase, turn_scope
from agentstream.observability.context import new_session_id
from agentstream.stream.decoder import EventDecoder, iter_events
from agentstream.stream.reader import AbortSignal, iter_lines
from agentstream.transport.chat import ChatTransport
from agentstream.transport.conversations import ConversationStore

NO_CONTENT_TEXT = "Sorry, I could not process your request."
ERROR_TEXT = "Sorry, I encountered an error while processing your message. Please try again."


class ChatSession:
    """Owns one conversation transcript and drives turns against the agent.

    The session is the only writer of the transcript. Readers get tuples of
    immutable Messages, either from ``messages`` or through ``on_transcript``.
    While a turn streams, ``on_snapshot`` receives the partial reply after
    every change, and ``is_loading`` stays True.
    """

    def __init__(
        self,
        *,
        transport: ChatTransport,
        store: ConversationStore | None = None,
        idle_timeout_s: float | None = None,
    ) -> None:
        self._transport = transport
        self._store = store
        self._idle_timeout_s = idle_timeout_s if idle_timeout_s is not None else transport.config.read_timeout_s

        self._messages: tuple[Message, ...] = ()
        self._conversation_id: str | None = None
        self._conversations: list[ConversationSummary] = []
        self.input_buffer = ""

        self._loading = False
        self._abort: AbortSignal | None = None
        self._accumulator: ConversationAccumulator | None = None
        # Bumped whenever the transcript is replaced; a turn that started under
        # an older generation must not write into the new transcript.
        self._generation = 0

        self._snapshots: Channel[TurnSnapshot | None] = Channel("session_snapshot")
        self._transcripts: Channel[tuple[Message, ...]] = Channel("session_transcript")

        self._session_id = new_session_id()
        self._turn_id = 0
        self._log = get_logger("agentstream.session")

    # -- read side -----------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def conversations(self) -> list[ConversationSummary]:
        return list(self._conversations)

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def streaming(self) -> TurnSnapshot | None:
        """Partial reply of the in-flight turn, or None when idle."""

        return self._accumulator.snapshot() if self._accumulator is not None else None

    def on_snapshot(self, callback: Callable[[TurnSnapshot | None], None]) -> Callable[[], None]:
        """Subscribe to streaming snapshots; None is published when a turn ends."""

        return self._snapshots.subscribe(callback)

    def on_transcript(self, callback: Callable[[tuple[Message, ...]], None]) -> Callable[[], None]:
        return self._transcripts.subscribe(callback)

    # -- turns -----------------------------------------------------------------

    async def send_message(self, text: str) -> Message | None:
        """Run one turn.

        Returns the assistant Message appended to the transcript (the reply, or
        the error notice), or None when the call was rejected or the turn was
        cancelled.
        """

        if not text or not text.strip():
            return None
        if self._loading:
            self._log.info("send_rejected_turn_in_flight")
            return None

        self._turn_id += 1
        with turn_scope(session_id=self._conversation_id or self._session_id, turn_id=self._turn_id):
            return await self._send(text.strip())

    async def _send(self, text: str) -> Message | None:
        generation = self._generation
        abort = AbortSignal()
        accumulator = ConversationAccumulator()

        self._append(Message.user(text))
        self.input_buffer = ""
        self._loading = True
        self._abort = abort
        self._accumulator = accumulator
        unsubscribe = accumulator.on_snapshot(self._snapshots.publish)

        t0 = time.perf_counter()
        try:
            final = await self._run_turn(accumulator, abort)
        except TurnCancelled:
            set_phase(TurnPhase.CANCEL)
            self._log.info("turn_cancelled", latency_ms=round((time.perf_counter() - t0) * 1000, 2))
            return None
        except Exception as e:  # noqa: BLE001
            if generation != self._generation:
                set_phase(TurnPhase.CANCEL)
                self._log.info("turn_failed_after_cancel", error=str(e))
                return None
            set_phase(TurnPhase.ABORT)
            add_error(f"{type(e).__name__}: {e}")
            self._log.error(
                "turn_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=not isinstance(e, TransportError),
            )
            reply = Message.assistant(ERROR_TEXT)
            self._append(reply)
            return reply
        finally:
            unsubscribe()
            if self._abort is abort:
                self._abort = None
                self._accumulator = None
                self._loading = False
                self._snapshots.publish(None)

        if generation != self._generation:
            return None

        set_phase(TurnPhase.FINALIZE)
        reply = Message.assistant(final.text or NO_CONTENT_TEXT, tool_calls=final.tool_calls)
        self._append(reply)
        self._log.info(
            "turn_done",
            latency_ms=round((time.perf_counter() - t0) * 1000, 2),
            assistant_text_len=len(final.text),
            tool_calls=len(final.tool_calls),
            decode_errors=len(current_errors()),
        )
        set_phase(TurnPhase.IDLE)
        return reply

    async def submit_user_input(self, values: Mapping[str, Any]) -> Message | None:
        """Replay collected form values to the agent as the next user turn."""

        return await self.send_message(format_submission(values))

    async def _run_turn(self, accumulator: ConversationAccumulator, abort: AbortSignal) -> TurnSnapshot:
        body = self._build_request_body()
        async with self._transport.open_stream(body) as response:
            if abort.aborted:
                raise TurnCancelled("Turn aborted before streaming")

            if self._conversation_id is None and response.conversation_id:
                await self._adopt_conversation(response.conversation_id)

            set_phase(TurnPhase.STREAM)
            async with aclosing(
                iter_lines(response.chunks, abort=abort, idle_timeout_s=self._idle_timeout_s)
            ) as lines, aclosing(iter_events(lines, EventDecoder())) as events:
                async for event in events:
                    accumulator.apply(event)

        if abort.aborted:
            raise TurnCancelled("Turn aborted")
        return accumulator.finalize()

    def _build_request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [{"role": m.role, "content": m.content} for m in self._messages],
        }
        if self._conversation_id:
            body["conversationId"] = self._conversation_id
        return body

    async def _adopt_conversation(self, conversation_id: str) -> None:
        self._conversation_id = conversation_id
        self._log.info("conversation_created", conversation_id=conversation_id)
        await self.refresh_conversations()

    # -- transcript & history ----------------------------------------------------

    def _append(self, message: Message) -> None:
        self._messages = (*self._messages, message)
        self._transcripts.publish(self._messages)

    def _cancel_turn(self) -> None:
        self._generation += 1
        if self._abort is not None:
            self._abort.abort()
            self._log.info("turn_cancel_requested")
        self._abort = None
        self._accumulator = None
        if self._loading:
            self._loading = False
            self._snapshots.publish(None)

    def _replace_transcript(self, messages: tuple[Message, ...], conversation_id: str | None) -> None:
        self._cancel_turn()
        self._messages = messages
        self._conversation_id = conversation_id
        self._transcripts.publish(self._messages)

    def start_new_chat(self) -> None:
        self._replace_transcript((), None)
        self.input_buffer = ""

    async def refresh_conversations(self) -> list[ConversationSummary]:
        """Reload the history list. Failures keep the previous list."""

        if self._store is None:
            return []
        try:
            self._conversations = await self._store.list_conversations()
        except TransportError as e:
            self._log.warning("conversations_refresh_failed", error=str(e))
        return list(self._conversations)

    async def load_conversation(self, conversation_id: str) -> bool:
        """Switch to a stored conversation; an in-flight turn is discarded."""

        if self._store is None:
            return False
        try:
            history = await self._store.load_messages(conversation_id)
        except TransportError as e:
            self._log.error("conversation_load_failed", conversation_id=conversation_id, error=str(e))
            return False

        self._replace_transcript(tuple(history), conversation_id)
        self._log.info("conversation_loaded", conversation_id=conversation_id, messages=len(history))
        return True

    async def delete_conversation(self, conversation_id: str) -> bool:
        if self._store is None:
            return False
        try:
            await self._store.delete_conversation(conversation_id)
        except TransportError as e:
            self._log.error("conversation_delete_failed", conversation_id=conversation_id, error=str(e))
            return False

        if conversation_id == self._conversation_id:
            self.start_new_chat()
        await self.refresh_conversations()
        return True
