from __future__ import annotations

from .context import TurnPhase, add_error, current_errors, set_phase, turn_scope
from .logging import configure_logging, get_logger

__all__ = ["TurnPhase", "add_error", "configure_logging", "current_errors", "get_logger", "set_phase", "turn_scope"]
