from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from .context import snapshot

# Attributes every LogRecord carries; anything else arrived through `extra`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(snapshot())

        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRS or k.startswith("_"):
                continue
            try:
                json.dumps(v)
                payload[k] = v
            except TypeError:
                payload[k] = repr(v)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


class KVLogger:
    """Logger adapter that turns keyword arguments into structured fields.

    ``log.info("turn_done", latency_ms=12.5)`` emits a record whose JSON payload
    carries ``latency_ms`` next to the bound trace/session/turn context.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args: object, **fields: object) -> None:
        self._log(logging.DEBUG, msg, args, fields)

    def info(self, msg: str, *args: object, **fields: object) -> None:
        self._log(logging.INFO, msg, args, fields)

    def warning(self, msg: str, *args: object, **fields: object) -> None:
        self._log(logging.WARNING, msg, args, fields)

    def error(self, msg: str, *args: object, **fields: object) -> None:
        self._log(logging.ERROR, msg, args, fields)

    def exception(self, msg: str, *args: object, **fields: object) -> None:
        fields.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, fields)

    def _log(self, level: int, msg: str, args: tuple[object, ...], fields: dict[str, object]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)
        extra = fields.pop("extra", None)
        extra_dict: dict[str, object] = dict(extra) if isinstance(extra, dict) else {}
        extra_dict.update(fields)
        self._logger.log(level, msg, *args, extra=extra_dict, exc_info=exc_info, stacklevel=3)


_configured = False


def configure_logging(level: str = "INFO", *, stream: TextIO | None = None) -> None:
    """Install the JSON handler on the root logger.

    Safe to call multiple times; later calls only adjust the level.
    """

    global _configured
    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    _configured = True


def get_logger(name: str = "agentstream") -> KVLogger:
    return KVLogger(logging.getLogger(name))
