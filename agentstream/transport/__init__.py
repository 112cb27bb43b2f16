from __future__ import annotations

from .chat import ChatResponse, ChatTransport
from .conversations import ConversationStore, HttpConversationStore

__all__ = ["ChatResponse", "ChatTransport", "ConversationStore", "HttpConversationStore"]
