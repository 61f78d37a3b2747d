"""Settings validation and user-facing error descriptions."""

import pytest

from tandem.config import Settings
from tandem.core.errors import (
    ConfigurationError,
    LoopLimitError,
    ModelErrorKind,
    OrchestrationError,
    RemoteModelError,
    ToolNotFoundError,
    describe_error,
)


def test_valid_credentials_pass() -> None:
    """Both keys set is a valid configuration."""
    Settings(PROGRAMMER_API_KEY="p", CONTEXT_API_KEY="c").validate_credentials()


@pytest.mark.parametrize(
    "overrides",
    [
        {"PROGRAMMER_API_KEY": None, "CONTEXT_API_KEY": "c"},
        {"PROGRAMMER_API_KEY": "p", "CONTEXT_API_KEY": ""},
        {"PROGRAMMER_API_KEY": "YOUR_API_KEY_HERE", "CONTEXT_API_KEY": "c"},
        {"PROGRAMMER_API_KEY": "p", "CONTEXT_API_KEY": "c", "MAX_TOOL_ROUNDS": 0},
        {"PROGRAMMER_API_KEY": "p", "CONTEXT_API_KEY": "c", "MAX_REPEATED_CALLS": 1},
        {"PROGRAMMER_API_KEY": "p", "CONTEXT_API_KEY": "c", "MAX_SESSIONS": 0},
    ],
)
def test_invalid_settings_are_rejected(overrides: dict) -> None:
    """Missing or placeholder keys and bad bounds are configuration errors."""
    with pytest.raises(ConfigurationError):
        Settings(**overrides).validate_credentials()


def test_settings_read_environment(monkeypatch) -> None:
    """Settings are read from the environment."""
    monkeypatch.setenv("PROVIDER", "anthropic")
    monkeypatch.setenv("FEEDBACK_ENABLED", "false")
    monkeypatch.setenv("MAX_TOOL_ROUNDS", "5")

    config = Settings()

    assert config.PROVIDER == "anthropic"
    assert config.FEEDBACK_ENABLED is False
    assert config.MAX_TOOL_ROUNDS == 5


def test_describe_error_per_kind() -> None:
    """Each error maps to a user-facing summary and details."""
    message, details = describe_error(RemoteModelError(ModelErrorKind.CONTENT_BLOCKED, "SAFETY"))
    assert message == "The prompt was blocked by the model's safety filters."
    assert details == "SAFETY"

    message, details = describe_error(ToolNotFoundError("nope"))
    assert message == "The model requested a tool that is not available."
    assert "nope" in details

    message, _ = describe_error(LoopLimitError("too many"))
    assert message == "The model kept calling tools without finishing."

    message, details = describe_error(OrchestrationError("boom"))
    assert message == "Error while processing the chat."
    assert details == "boom"


def test_only_rate_limits_are_retryable() -> None:
    """Only RATE_LIMITED is retryable."""
    assert RemoteModelError(ModelErrorKind.RATE_LIMITED).retryable
    for kind in ModelErrorKind:
        if kind is not ModelErrorKind.RATE_LIMITED:
            assert not RemoteModelError(kind).retryable
