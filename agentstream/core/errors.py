from __future__ import annotations


class AgentStreamError(Exception):
    """Base exception for this project."""


class ConfigError(AgentStreamError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class TransportError(AgentStreamError):
    """Network failure, non-success response status or a stalled read."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(AgentStreamError):
    """Malformed bytes, or a frame whose payload cannot be parsed.

    A per-line DecodeError is recorded and skipped; a byte-level one aborts the turn.
    """

    def __init__(self, message: str, *, line: str | None = None):
        super().__init__(message)
        self.line = line


class ProtocolError(AgentStreamError):
    """A well-formed event that references unknown or terminal tool-call state."""

    def __init__(self, message: str, *, tool_call_id: str | None = None):
        super().__init__(message)
        self.tool_call_id = tool_call_id


class TurnCancelled(AgentStreamError):
    """The in-flight turn was aborted by the caller (new chat, conversation switch)."""
