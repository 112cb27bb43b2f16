from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

__all__ = [
    "AgentConfig",
    "AppConfig",
    "ConfigError",
    "LoggingConfig",
    "PersistenceConfig",
    "load_config",
]


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

BASE_URL_ENV = "AGENTSTREAM_BASE_URL"


def _expand_env_in_str(value: str, *, path: str) -> str:
    def repl(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in os.environ or os.environ[key] == "":
            raise ConfigError(f"environment variable {key!r} is not set", path=path)
        return os.environ[key]

    return _ENV_PATTERN.sub(repl, value)


def _expand_env(obj: Any, *, path: str) -> Any:
    if isinstance(obj, str):
        return _expand_env_in_str(obj, path=path)
    if isinstance(obj, list):
        return [_expand_env(v, path=f"{path}[{i}]") for i, v in enumerate(obj)]
    if isinstance(obj, dict):
        return {k: _expand_env(v, path=f"{path}.{k}" if path else str(k)) for k, v in obj.items()}
    return obj


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("must be a mapping", path=key)
    return value


def _positive_float(section: dict[str, Any], key: str, default: float, *, path: str) -> float:
    try:
        value = float(section.get(key, default))
    except (TypeError, ValueError) as e:
        raise ConfigError("must be a number", path=f"{path}.{key}") from e
    if value <= 0:
        raise ConfigError("must be > 0", path=f"{path}.{key}")
    return value


def _url_path(section: dict[str, Any], key: str, default: str, *, path: str) -> str:
    value = str(section.get(key, default))
    if not value.startswith("/"):
        raise ConfigError("must start with '/'", path=f"{path}.{key}")
    return value.rstrip("/") or "/"


@dataclass(frozen=True)
class AgentConfig:
    base_url: str = "http://127.0.0.1:3000"
    chat_path: str = "/api/chat"
    conversation_header: str = "X-Conversation-Id"
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 60.0

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}{self.chat_path}"


@dataclass(frozen=True)
class PersistenceConfig:
    conversations_path: str = "/api/conversations"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    agent: AgentConfig = field(default_factory=AgentConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> AppConfig:
    """Load YAML config and expand ${ENV_VAR}.

    The agent base URL may be left out of the file; it then comes from
    AGENTSTREAM_BASE_URL, and finally from the built-in default.

    Raises:
        ConfigError: missing file, invalid YAML, unset placeholder or bad value.
    """

    # Local dev: allow injecting settings from .env (do not commit it).
    load_dotenv(override=False)

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError("config file does not exist", path=str(config_path))

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}", path=str(config_path)) from e

    if not isinstance(raw, dict):
        raise ConfigError("top level must be a YAML mapping", path=str(config_path))

    expanded = _expand_env(raw, path="")

    agent_raw = _section(expanded, "agent")
    base_url = agent_raw.get("base_url") or os.getenv(BASE_URL_ENV) or AgentConfig.base_url
    if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
        raise ConfigError("must be an http(s) URL", path="agent.base_url")

    header = agent_raw.get("conversation_header", AgentConfig.conversation_header)
    if not isinstance(header, str) or not header.strip():
        raise ConfigError("must be a non-empty string", path="agent.conversation_header")

    agent = AgentConfig(
        base_url=base_url.rstrip("/"),
        chat_path=_url_path(agent_raw, "chat_path", AgentConfig.chat_path, path="agent"),
        conversation_header=header.strip(),
        connect_timeout_s=_positive_float(agent_raw, "connect_timeout_s", AgentConfig.connect_timeout_s, path="agent"),
        read_timeout_s=_positive_float(agent_raw, "read_timeout_s", AgentConfig.read_timeout_s, path="agent"),
    )

    persistence_raw = _section(expanded, "persistence")
    persistence = PersistenceConfig(
        conversations_path=_url_path(
            persistence_raw, "conversations_path", PersistenceConfig.conversations_path, path="persistence"
        ),
    )

    logging_raw = _section(expanded, "logging")
    level = str(logging_raw.get("level", LoggingConfig.level)).upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigError(f"unknown log level {level!r}", path="logging.level")

    return AppConfig(agent=agent, persistence=persistence, logging=LoggingConfig(level=level))
