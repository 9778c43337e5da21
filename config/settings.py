# ProcWise/config/settings.py

import os
from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')


class ChannelMode(str, Enum):
    """Message channel variant resolved once at startup."""

    SIMULATED = "simulated"
    LIVE = "live"


class CapabilityMode(str, Enum):
    """Language capability variant used for extraction, matching and ranking."""

    RULE_BASED = "rule_based"
    LMSTUDIO = "lmstudio"


class CorrelationPolicy(str, Enum):
    """How an inbound reply is attributed to a pending quote unit."""

    MOST_RECENT = "most_recent"
    TOKEN = "token"


class WaitMode(str, Enum):
    POLL = "poll"
    NOTIFY = "notify"


class Settings(BaseSettings):
    """Immutable configuration for one quote workflow context.

    Every field can be supplied through the environment (``PROCWISE_<FIELD>``)
    or the project ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROCWISE_",
        env_file=ENV_FILE_PATH,
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    city: str = Field(default="local")
    quote_timeout_minutes: float = Field(default=30.0)
    urgent_timeout_minutes: float = Field(default=5.0)
    poll_interval_seconds: float = Field(default=10.0)
    dry_run: bool = Field(default=False)

    # Persistence
    database_path: str = Field(
        default=os.path.join(PROJECT_ROOT, "data", "procwise_quotes.db")
    )
    database_url: Optional[str] = Field(default=None)

    # Message channel
    channel_mode: ChannelMode = Field(default=ChannelMode.SIMULATED)
    channel_base_url: str = Field(default="http://127.0.0.1:3000")
    channel_api_key: Optional[str] = Field(default=None)
    channel_timeout: int = Field(default=30)
    channel_inbound_poll_seconds: float = Field(default=2.0)

    # Language capability
    capability_mode: CapabilityMode = Field(default=CapabilityMode.RULE_BASED)
    lmstudio_base_url: str = Field(default="http://127.0.0.1:1234")
    lmstudio_model: str = Field(default="qwen2.5-7b-instruct")
    lmstudio_timeout: int = Field(default=120)
    lmstudio_api_key: Optional[str] = Field(default=None)

    # Correlation and waiting
    correlation_policy: CorrelationPolicy = Field(default=CorrelationPolicy.MOST_RECENT)
    wait_mode: WaitMode = Field(default=WaitMode.POLL)

    log_level: str = Field(default="INFO")

    @field_validator(
        "quote_timeout_minutes",
        "urgent_timeout_minutes",
        "poll_interval_seconds",
        "channel_inbound_poll_seconds",
    )
    @classmethod
    def _require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be greater than zero")
        return value

    @field_validator("channel_mode", "capability_mode", "correlation_policy", "wait_mode", mode="before")
    @classmethod
    def _normalise_choice(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("database_url", "channel_api_key", "lmstudio_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return str(value or "INFO").strip().upper()

    def timeout_for(self, urgent: bool) -> timedelta:
        """Return the reply window for a request, shortened in urgent mode."""

        minutes = self.urgent_timeout_minutes if urgent else self.quote_timeout_minutes
        return timedelta(minutes=minutes)


def load_settings() -> Settings:
    """Read settings from the environment and ``.env``, failing loudly on bad values."""

    try:
        return Settings()
    except Exception as e:
        print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
        raise
