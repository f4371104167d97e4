"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from support_chat.utils.security import FILTER_VALUE_PATTERN

DEFAULT_QUICK_REPLIES = [
    "Thank you for contacting us! How can I help you today?",
    "I'll look into this for you right away.",
    "Could you please provide more details about your request?",
    "Your order has been processed successfully.",
    "We apologize for any inconvenience. Let me resolve this for you.",
    "Is there anything else I can help you with?",
    "Thank you for your patience. Your issue has been resolved.",
    "I'll escalate this to our technical team for further assistance.",
]


class SupabaseConfig(BaseModel):
    """Hosted store (PostgREST + realtime) configuration."""

    url: HttpUrl
    anon_key: str
    table: str = "chat_messages"
    schema_name: str = "public"
    request_timeout: float = Field(10.0, gt=0, le=120)
    heartbeat_interval: float = Field(25.0, ge=5, le=60)

    @field_validator("anon_key")
    @classmethod
    def validate_anon_key(cls, v: str) -> str:
        """Reject empty keys early; the store answers 401 otherwise."""
        if not v.strip():
            raise ValueError("anon_key must not be empty")
        return v

    @field_validator("table", "schema_name")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Table and schema names end up in URLs and channel topics."""
        if not v.replace("_", "").isalnum():
            raise ValueError(f"Invalid identifier: {v}")
        return v

    @property
    def base_url(self) -> str:
        return str(self.url).rstrip("/")


class StoreConfig(BaseModel):
    """Message store selection."""

    provider: Literal["supabase", "memory"] = "memory"
    supabase: SupabaseConfig | None = None


class AlertConfig(BaseModel):
    """Admin alert webhook configuration."""

    enabled: bool = True
    url: HttpUrl | None = None
    every_message: bool = False
    timeout: float = Field(10.0, gt=0, le=60)


class ReconciliationConfig(BaseModel):
    """Optimistic send reconciliation."""

    duplicate_window_seconds: float = Field(10.0, ge=0.0, le=300.0)


class FeedConfig(BaseModel):
    """Push subscription behavior."""

    subscribe_timeout: float = Field(10.0, gt=0, le=120)
    reconnect_attempts: int = Field(5, ge=1, le=20)
    reconnect_min_wait: float = Field(0.5, ge=0.0, le=30.0)
    reconnect_max_wait: float = Field(30.0, ge=0.0, le=300.0)
    typing_indicator_seconds: float = Field(1.0, ge=0.0, le=10.0)


class ConsoleConfig(BaseModel):
    """Admin console behavior."""

    admin_sender_id: str = "admin"
    quick_replies: list[str] = Field(default_factory=lambda: list(DEFAULT_QUICK_REPLIES))

    @field_validator("admin_sender_id")
    @classmethod
    def validate_admin_sender_id(cls, v: str) -> str:
        """Sender ids are compared inside store filters and topics."""
        if not FILTER_VALUE_PATTERN.match(v):
            raise ValueError(f"Invalid admin_sender_id: {v!r}")
        return v


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("/var/log/support-chat/chat.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    file: FileLoggingConfig = FileLoggingConfig()


class RetryConfig(BaseModel):
    """Retry configuration for transient HTTP failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.0, le=10.0)
    max_delay: float = Field(30.0, ge=0.0, le=300.0)


class ChatSyncConfig(BaseSettings):
    """Root configuration for the support chat engine."""

    store: StoreConfig = StoreConfig()
    alerts: AlertConfig = AlertConfig()
    reconciliation: ReconciliationConfig = ReconciliationConfig()
    feeds: FeedConfig = FeedConfig()
    console: ConsoleConfig = ConsoleConfig()
    logging: LoggingConfig = LoggingConfig()
    retry: RetryConfig = RetryConfig()

    model_config = SettingsConfigDict(
        env_prefix="SUPPORT_CHAT_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @property
    def alert_url(self) -> str | None:
        """Webhook URL, defaulting to the store's notify-admin function."""
        if self.alerts.url is not None:
            return str(self.alerts.url)
        if self.store.supabase is not None:
            return f"{self.store.supabase.base_url}/functions/v1/notify-admin"
        return None
