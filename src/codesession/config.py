"""Configuration management for the CodeSession relay."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUMMARIZER_INSTRUCTION = (
    "Generate a git commit message in conventional commit format. The first line should be "
    "in the format 'type(scope): description'. Follow with a bullet-point list of key changes "
    "made in the session. Keep the entire message concise."
)


class ConfigurationError(RuntimeError):
    """Raised when required settings are missing or inconsistent."""


class RelaySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    bot_token: str | None = Field(default=None, validation_alias="DISCORD_BOT_TOKEN")
    chat_api_base: str = Field(
        default="https://discord.com/api/v10", validation_alias="CODESESSION_CHAT_API_BASE"
    )
    agent_host: str = Field(default="127.0.0.1", validation_alias="OPENCODE_HOST")
    agent_port: int = Field(default=4096, validation_alias="OPENCODE_PORT")
    agent_executable: str | None = Field(default=None, validation_alias="OPENCODE_PATH")
    spawn_agent_server: bool = Field(default=True, validation_alias="CODESESSION_SPAWN_AGENT_SERVER")
    agent_prompt_timeout: float = Field(default=600.0, validation_alias="CODESESSION_PROMPT_TIMEOUT")
    sessions_path: Path = Field(default=Path("./.sessions"), validation_alias="CODESESSION_SESSIONS_PATH")
    worktrees_path: Path = Field(
        default=Path("./.worktrees"), validation_alias="CODESESSION_WORKTREES_PATH"
    )
    catalog_path: Path = Field(
        default=Path("./codesession.yaml"), validation_alias="CODESESSION_CATALOG_PATH"
    )
    summarizer_instruction: str = Field(
        default=DEFAULT_SUMMARIZER_INSTRUCTION, validation_alias="CODESESSION_SUMMARIZER_INSTRUCTION"
    )
    chat_message_limit: int = Field(default=2000, validation_alias="CODESESSION_CHAT_MESSAGE_LIMIT")
    chat_safety_margin: int = Field(default=100, validation_alias="CODESESSION_CHAT_SAFETY_MARGIN")
    min_edit_interval: float = Field(default=1.0, validation_alias="CODESESSION_MIN_EDIT_INTERVAL")
    log_level: str = Field(default="INFO", validation_alias="CODESESSION_LOG_LEVEL")

    @property
    def agent_base_url(self) -> str:
        return f"http://{self.agent_host}:{self.agent_port}"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CODESESSION_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("agent_port")
    @classmethod
    def _validate_agent_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("OPENCODE_PORT must be between 1 and 65535")
        return value

    @field_validator("agent_prompt_timeout")
    @classmethod
    def _validate_prompt_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CODESESSION_PROMPT_TIMEOUT must be > 0")
        return value

    @field_validator("min_edit_interval")
    @classmethod
    def _validate_edit_interval(cls, value: float) -> float:
        if value < 0:
            raise ValueError("CODESESSION_MIN_EDIT_INTERVAL must be >= 0")
        return value

    @field_validator("summarizer_instruction")
    @classmethod
    def _default_summarizer_instruction(cls, value: str) -> str:
        return value.strip() or DEFAULT_SUMMARIZER_INSTRUCTION

    @model_validator(mode="after")
    def _validate_message_budget(self) -> "RelaySettings":
        if self.chat_safety_margin < 0 or self.chat_safety_margin >= self.chat_message_limit:
            raise ValueError(
                "CODESESSION_CHAT_SAFETY_MARGIN must be >= 0 and smaller than the message limit"
            )
        return self

    @property
    def message_budget(self) -> int:
        """Largest body the relay will post in a single chat message."""

        return self.chat_message_limit - self.chat_safety_margin


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Return cached settings instance."""

    settings = RelaySettings()
    settings.sessions_path = settings.sessions_path.expanduser().resolve()
    settings.worktrees_path = settings.worktrees_path.expanduser().resolve()
    settings.catalog_path = settings.catalog_path.expanduser().resolve()
    return settings


__all__ = ["ConfigurationError", "DEFAULT_SUMMARIZER_INSTRUCTION", "RelaySettings", "get_settings"]
