"""Configuration helpers for the Ery bot."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, ValidationError

_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
_DEFAULT_MODEL = "openai/gpt-4o-mini"
_DEFAULT_FALLBACK_MODEL = "openai/gpt-3.5-turbo"


class BotSettings(BaseModel):
    """Runtime configuration parsed from environment variables."""

    discord_token: str = Field(..., alias="DISCORD_TOKEN")
    database_url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        validation_alias=AliasChoices("DATABASE_URL", "SUPABASE_DB_URL", "database_url"),
    )
    health_host: str = Field(default="0.0.0.0", alias="HEALTH_HOST")
    health_port: int = Field(default=8080, alias="HEALTH_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    bot_name: str = Field(default="Ery", alias="BOT_NAME")

    # Language model provider
    ai_api_key: Optional[str] = Field(
        default=None,
        alias="AI_API_KEY",
        validation_alias=AliasChoices(
            "AI_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY", "ai_api_key"
        ),
    )
    ai_base_url: Optional[str] = Field(default=_DEFAULT_BASE_URL, alias="AI_BASE_URL")
    ai_model: str = Field(default=_DEFAULT_MODEL, alias="AI_MODEL")
    ai_fallback_model: Optional[str] = Field(
        default=_DEFAULT_FALLBACK_MODEL, alias="AI_FALLBACK_MODEL"
    )
    ai_temperature: float = Field(default=0.7, alias="AI_TEMPERATURE")
    ai_max_tokens: int = Field(default=2000, alias="AI_MAX_TOKENS")
    ai_fallback_max_tokens: int = Field(default=1000, alias="AI_FALLBACK_MAX_TOKENS")
    ai_site_url: Optional[str] = Field(default=None, alias="AI_SITE_URL")
    ai_site_name: Optional[str] = Field(default="Ery", alias="AI_SITE_NAME")

    # Message batching
    batch_message_count: int = Field(default=5, alias="BATCH_MESSAGE_COUNT", ge=1)
    batch_time_window_ms: int = Field(default=30_000, alias="BATCH_TIME_WINDOW_MS", ge=0)
    max_queue_age_ms: int = Field(default=300_000, alias="MAX_QUEUE_AGE_MS", ge=0)
    queue_cleanup_interval_ms: int = Field(
        default=60_000, alias="QUEUE_CLEANUP_INTERVAL_MS", gt=0
    )
    reply_chain_max_depth: int = Field(default=5, alias="REPLY_CHAIN_MAX_DEPTH", ge=0)
    reply_chain_max_age_ms: int = Field(default=3_600_000, alias="REPLY_CHAIN_MAX_AGE_MS", ge=0)

    # Task threads
    max_active_threads_per_guild: int = Field(
        default=10, alias="MAX_ACTIVE_THREADS_PER_GUILD", ge=1
    )
    thread_timeout_ms: int = Field(default=300_000, alias="THREAD_TIMEOUT_MS", gt=0)
    thread_cleanup_interval_ms: int = Field(
        default=60_000, alias="THREAD_CLEANUP_INTERVAL_MS", gt=0
    )

    # Agent loop
    agent_max_iterations: int = Field(default=10, alias="AGENT_MAX_ITERATIONS", ge=1)
    agent_max_processing_ms: int = Field(default=30_000, alias="AGENT_MAX_PROCESSING_MS", gt=0)
    reply_excerpt_max_length: int = Field(default=100, alias="REPLY_EXCERPT_MAX_LENGTH", ge=1)
    reply_excerpt_suffix: str = Field(default="...", alias="REPLY_EXCERPT_SUFFIX")

    class Config:
        populate_by_name = True

    @property
    def ai_configured(self) -> bool:
        return bool(self.ai_api_key)


def load_settings(env_file: str | None = ".env") -> BotSettings:
    """Load and validate configuration, raising a helpful error if missing."""

    if env_file and Path(env_file).exists():
        load_dotenv(env_file)

    try:
        settings = BotSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [err["loc"][0] for err in exc.errors() if err["type"] == "missing"]
        if not missing:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc
        raise RuntimeError(
            (
                "Missing required configuration values: "
                f"{', '.join(str(name) for name in missing)}. "
                "Ensure DISCORD_TOKEN is set before running the bot."
            )
        ) from exc

    return settings
