from __future__ import annotations

from .session import ERROR_TEXT, NO_CONTENT_TEXT, ChatSession

__all__ = ["ERROR_TEXT", "NO_CONTENT_TEXT", "ChatSession"]
