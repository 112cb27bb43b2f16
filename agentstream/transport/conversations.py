"""HTTP client for the conversation persistence service.

Only used to hydrate a transcript and to browse/delete history; the streaming
pipeline never talks to it directly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from agentstream.core.config import AgentConfig, PersistenceConfig
from agentstream.core.errors import TransportError
from agentstream.core.types import ConversationSummary, Message


class ConversationStore(Protocol):
    async def list_conversations(self) -> list[ConversationSummary]: ...

    async def load_messages(self, conversation_id: str) -> list[Message]: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def message_from_api(raw: dict[str, Any]) -> Message:
    sender = "user" if raw.get("role") == "user" else "assistant"
    kwargs: dict[str, Any] = {}
    if isinstance(raw.get("id"), str) and raw["id"]:
        kwargs["id"] = raw["id"]
    return Message(
        content=str(raw.get("content") or ""),
        sender=sender,
        timestamp=_parse_timestamp(raw.get("created_at")),
        **kwargs,
    )


def summary_from_api(raw: dict[str, Any]) -> ConversationSummary | None:
    conversation_id = raw.get("id")
    if not isinstance(conversation_id, str) or not conversation_id:
        return None
    title = raw.get("title")
    created_at = raw.get("created_at")
    updated_at = raw.get("updated_at")
    return ConversationSummary(
        id=conversation_id,
        title=title if isinstance(title, str) else "",
        created_at=created_at if isinstance(created_at, str) else None,
        updated_at=updated_at if isinstance(updated_at, str) else None,
    )


class HttpConversationStore:
    def __init__(
        self,
        agent: AgentConfig,
        persistence: PersistenceConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = f"{agent.base_url}{persistence.conversations_path}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(agent.read_timeout_s, connect=agent.connect_timeout_s),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_conversations(self) -> list[ConversationSummary]:
        data = await self._request("GET", self._base)
        rows = data.get("conversations") if isinstance(data, dict) else None
        out: list[ConversationSummary] = []
        for raw in rows or []:
            if isinstance(raw, dict) and (summary := summary_from_api(raw)) is not None:
                out.append(summary)
        return out

    async def load_messages(self, conversation_id: str) -> list[Message]:
        data = await self._request("GET", f"{self._base}/{conversation_id}/messages")
        rows = data.get("messages") if isinstance(data, dict) else None
        return [message_from_api(raw) for raw in rows or [] if isinstance(raw, dict)]

    async def delete_conversation(self, conversation_id: str) -> None:
        await self._request("DELETE", f"{self._base}/{conversation_id}")

    async def _request(self, method: str, url: str) -> Any:
        try:
            resp = await self._client.request(method, url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code}: {method} {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from {url}: {e}") from e
