from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from agentstream.core.config import AgentConfig
from agentstream.core.errors import TransportError
from agentstream.observability.logging import get_logger


@dataclass(frozen=True, slots=True)
class ChatResponse:
    """An open, successful streaming reply from the agent backend."""

    status_code: int
    conversation_id: str | None
    chunks: AsyncIterator[bytes]


async def _translate_errors(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    try:
        async for chunk in chunks:
            yield chunk
    except httpx.HTTPError as e:
        raise TransportError(f"Stream interrupted: {e}") from e


class ChatTransport:
    """POSTs a turn to the agent backend and exposes the streamed body."""

    def __init__(self, cfg: AgentConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = cfg
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(cfg.read_timeout_s, connect=cfg.connect_timeout_s),
        )
        self._log = get_logger("agentstream.transport.chat")

    @property
    def config(self) -> AgentConfig:
        return self._cfg

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @asynccontextmanager
    async def open_stream(self, body: dict[str, Any]) -> AsyncIterator[ChatResponse]:
        """Send ``body`` and yield the streamed reply.

        Raises:
            TransportError: the request failed or the status is not 2xx.
        """

        request = self._client.build_request("POST", self._cfg.chat_url, json=body)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"Chat request failed: {e}") from e

        try:
            if not response.is_success:
                raise TransportError(
                    f"Chat API error: {response.status_code}",
                    status_code=response.status_code,
                )

            conversation_id = response.headers.get(self._cfg.conversation_header) or None
            self._log.debug(
                "chat_stream_opened",
                status_code=response.status_code,
                has_conversation_id=conversation_id is not None,
            )
            chunks = _translate_errors(response.aiter_bytes())
            try:
                yield ChatResponse(
                    status_code=response.status_code,
                    conversation_id=conversation_id,
                    chunks=chunks,
                )
            finally:
                await chunks.aclose()
        finally:
            await response.aclose()
