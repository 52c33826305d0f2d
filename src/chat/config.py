"""Chat engine configuration with environment variable loading.

Pydantic-based configuration for the streaming client, the watchdog and
the local session storage.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_STORAGE_LIMIT = 5 * 1024 * 1024  # 5MB


class ChatConfig(BaseModel):
    """Configuration for the chat engine.

    Attributes:
        api_base_url: Base URL of the agent backend.
        agent_id: Backend agent that answers this chat.
        api_key: Optional API key sent as X-API-Key.
        request_timeout: Read timeout of the streaming request in seconds.
        watchdog_mobile_seconds: Watchdog threshold on mobile devices.
        watchdog_desktop_seconds: Watchdog threshold on desktop devices.
        completion_grace_seconds: How long the completed flag stays visible.
        persist_debounce_seconds: Coalescing window for session writes.
        storage_dir: Directory of the local session storage.
        storage_limit_bytes: Storage budget used for stats and eviction.
        near_limit_percent: Usage percentage reported as near the limit.
        reclaim_target_percent: Usage percentage eviction reclaims down to.
        session_ttl_days: Sessions idle longer than this are evicted.
        max_stored_sessions: Most sessions kept, the oldest go first.
        default_file_prompt: Message sent when files come without text.
    """

    api_base_url: str = Field(
        default_factory=lambda: os.getenv("CHAT_API_URL", "http://localhost:7777"),
        validate_default=True,
        description="Agent backend base URL",
    )
    agent_id: str = Field(
        default_factory=lambda: os.getenv("CHAT_AGENT_ID", "legal-chat"),
        min_length=1,
        description="Backend agent identifier",
    )
    api_key: str | None = Field(
        default_factory=lambda: os.getenv("CHAT_API_KEY") or None,
        validate_default=True,
        description="API key for the agent backend",
    )
    request_timeout: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_REQUEST_TIMEOUT", "1800")),
        gt=0.0,
        description="Streaming read timeout in seconds",
    )
    watchdog_mobile_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_WATCHDOG_MOBILE_SECONDS", "60")),
        gt=0.0,
    )
    watchdog_desktop_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_WATCHDOG_DESKTOP_SECONDS", "120")),
        gt=0.0,
    )
    completion_grace_seconds: float = Field(default=1.0, ge=0.0)
    persist_debounce_seconds: float = Field(default=0.5, ge=0.0)
    storage_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("CHAT_STORAGE_DIR", "data/storage")),
    )
    storage_limit_bytes: int = Field(
        default_factory=lambda: int(
            os.getenv("CHAT_STORAGE_LIMIT_BYTES", str(DEFAULT_STORAGE_LIMIT))
        ),
        gt=0,
    )
    near_limit_percent: float = Field(default=80.0, gt=0.0, le=100.0)
    reclaim_target_percent: float = Field(default=60.0, gt=0.0, le=100.0)
    session_ttl_days: float = Field(default=7.0, gt=0.0)
    max_stored_sessions: int = Field(default=10, ge=1)
    default_file_prompt: str = Field(
        default="Please analyze the attached file(s).", min_length=1
    )

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended."""
        v = v.strip()
        if not v:
            raise ValueError("API base URL required. Set CHAT_API_URL in .env")
        return v.rstrip("/")

    @field_validator("api_key")
    @classmethod
    def blank_key_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def check_thresholds(self) -> "ChatConfig":
        """Mobile watchdog must not outlast desktop, reclaim must sit below near-limit."""
        if self.watchdog_mobile_seconds > self.watchdog_desktop_seconds:
            raise ValueError("watchdog_mobile_seconds must not exceed watchdog_desktop_seconds")
        if self.reclaim_target_percent >= self.near_limit_percent:
            raise ValueError("reclaim_target_percent must be below near_limit_percent")
        return self

    @property
    def runs_url(self) -> str:
        return f"{self.api_base_url}/v1/playground/agents/{self.agent_id}/runs"


def get_chat_config() -> ChatConfig:
    """Create chat configuration from environment.

    Returns:
        Configured ChatConfig instance.

    Raises:
        ValueError: If a value is out of range.
    """
    return ChatConfig()
