import pytest
from pydantic import SecretStr, ValidationError

from callbot.config import Settings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("COMPLETION_RETRY_LIMIT", "5")
    monkeypatch.setenv("TRANSCRIPT_TRIM_THRESHOLD", "20")

    settings = Settings()  # pyright: ignore[reportCallIssue]

    assert settings.completion_api_key.get_secret_value() == "sk-env"
    assert settings.retry_limit == 5
    assert settings.trim_threshold == 20
    assert settings.backoff_base == 2.0
    assert settings.boundary_marker == "•"


def test_settings_reject_multi_character_marker() -> None:
    with pytest.raises(ValidationError):
        Settings(completion_api_key=SecretStr("x"), boundary_marker="||")


def test_settings_reject_zero_retry_limit() -> None:
    with pytest.raises(ValidationError):
        Settings(completion_api_key=SecretStr("x"), retry_limit=0)


def test_settings_reject_shrinking_backoff() -> None:
    with pytest.raises(ValidationError):
        Settings(completion_api_key=SecretStr("x"), backoff_base=0.5)
