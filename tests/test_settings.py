import pytest
from pydantic import ValidationError

from claudestream.settings import (
    DEFAULT_CHANNEL_BUFFER,
    StreamSettings,
    get_settings,
    reset_settings,
)


def test_defaults() -> None:
    settings = StreamSettings()

    assert settings.binary == "claude"
    assert settings.channel_buffer == DEFAULT_CHANNEL_BUFFER
    assert settings.error_buffer == 10
    assert settings.max_line_bytes == 1024 * 1024


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("CLAUDESTREAM__CHANNEL_BUFFER", "5")
    monkeypatch.setenv("CLAUDESTREAM__BINARY", "  claude-beta  ")
    reset_settings()

    settings = get_settings()

    assert settings.channel_buffer == 5
    assert settings.binary == "claude-beta"
    assert get_settings() is settings


@pytest.mark.parametrize(
    "kwargs",
    [{"binary": ""}, {"binary": 3}, {"channel_buffer": 0}, {"max_line_bytes": 1024}],
)
def test_invalid_values(kwargs) -> None:
    with pytest.raises(ValidationError):
        StreamSettings(**kwargs)
