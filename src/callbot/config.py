"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly voice assistant on a phone call. Keep answers short and "
    "conversational. Insert a '•' symbol every 5 to 10 words at natural pauses "
    "so your reply can be spoken in pieces."
)
DEFAULT_GREETING = "Hello! How can I help you today?"
DEFAULT_FALLBACK_MESSAGE = (
    "I apologize, but I'm having trouble processing your request. "
    "• Could you please repeat that?"
)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    completion_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices(
            "COMPLETION_API_KEY", "OPENAI_API_KEY", "completion_api_key"
        ),
    )
    completion_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("COMPLETION_BASE_URL", "completion_base_url"),
    )
    completion_model: str = Field(
        default="gpt-4-1106-preview",
        validation_alias=AliasChoices("COMPLETION_MODEL", "completion_model"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("COMPLETION_TIMEOUT", "request_timeout"),
        ge=1,
    )

    retry_limit: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("COMPLETION_RETRY_LIMIT", "retry_limit"),
    )
    backoff_base: float = Field(
        default=2.0,
        gt=1,
        validation_alias=AliasChoices("COMPLETION_BACKOFF_BASE", "backoff_base"),
        description="Seconds; attempt N waits backoff_base ** N before retrying.",
    )
    trim_threshold: int = Field(
        default=10,
        ge=2,
        validation_alias=AliasChoices("TRANSCRIPT_TRIM_THRESHOLD", "trim_threshold"),
    )
    boundary_marker: str = Field(
        default="•",
        min_length=1,
        max_length=1,
        validation_alias=AliasChoices("BOUNDARY_MARKER", "boundary_marker"),
    )

    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
    )
    greeting: str = Field(
        default=DEFAULT_GREETING,
        validation_alias=AliasChoices("GREETING", "greeting"),
    )
    fallback_message: str = Field(
        default=DEFAULT_FALLBACK_MESSAGE,
        validation_alias=AliasChoices("FALLBACK_MESSAGE", "fallback_message"),
    )

    conversation_log_dir: Path = Field(
        default_factory=lambda: Path("logs/conversations"),
        validation_alias=AliasChoices(
            "CONVERSATION_LOG_DIR",
            "conversation_log_dir",
        ),
    )
    logging_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices(
            "LOGGING_SETTINGS_PATH",
            "logging_settings_path",
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
