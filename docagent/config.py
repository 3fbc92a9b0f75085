"""
Client configuration for DocAgent.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .exceptions import ConfigError
from .validation import InputValidationError, validate_url

DEFAULT_BACKEND_URL = "http://localhost:8000"


@dataclass
class ClientConfig:
    """Configuration for the agent-session client."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None

    chat_path: str = "/api/copilot/chat"
    tool_result_path: str = "/api/copilot/tool_result"
    stop_path: str = "/api/copilot/stop"

    timeout: float = 30.0
    # Agent turns can be long; None disables the read timeout on the stream
    stream_read_timeout: Optional[float] = None

    history_limit: int = 20

    ai_author: str = "AI Assistant"
    settle_delay: float = 0.15
    status_ttl: float = 5.0

    log_level: str = "info"

    def __post_init__(self):
        if self.base_url is None:
            self.base_url = os.environ.get("DOCAGENT_BACKEND_URL", DEFAULT_BACKEND_URL)
        self.base_url = self.base_url.rstrip("/")
        try:
            validate_url(self.base_url, "base_url")
        except InputValidationError as e:
            raise ConfigError(e.message)

        if self.api_key is None:
            self.api_key = os.environ.get("DOCAGENT_API_KEY")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create configuration from environment variables."""
        try:
            return cls(
                base_url=os.environ.get("DOCAGENT_BACKEND_URL"),
                api_key=os.environ.get("DOCAGENT_API_KEY"),
                timeout=float(os.environ.get("DOCAGENT_TIMEOUT", "30")),
                history_limit=int(os.environ.get("DOCAGENT_HISTORY_LIMIT", "20")),
                ai_author=os.environ.get("DOCAGENT_AI_AUTHOR", "AI Assistant"),
                log_level=os.environ.get("DOCAGENT_LOG_LEVEL", "info"),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid DocAgent environment setting: {e}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ClientConfig":
        """Load configuration from a YAML file.

        The file may hold the settings at top level or under a ``docagent`` key.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        if isinstance(data.get("docagent"), dict):
            data = data["docagent"]
        return cls.from_dict(data)
