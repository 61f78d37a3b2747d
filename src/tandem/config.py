"""Configuration settings for Tandem."""

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)

from tandem.core.errors import ConfigurationError

PLACEHOLDER_KEY_PREFIX = "YOUR_API_KEY"


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Server / process
    API_PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    FILES_DIR: str = "./tandem_files"
    MAX_SESSIONS: int = 100  # least recently used session is dropped beyond this

    # LLM Configuration
    PROVIDER: str = "gemini"  # Options: gemini, openai, anthropic
    PROGRAMMER_API_KEY: str | None = None
    CONTEXT_API_KEY: str | None = None
    PROGRAMMER_MODEL: str = "gemini-1.5-flash"
    CONTEXT_MODEL: str = "gemini-1.5-flash"
    MAX_OUTPUT_TOKENS: int = 2048

    # Function-call loop
    FEEDBACK_ENABLED: bool = True
    MAX_TOOL_ROUNDS: int = 10
    MAX_REPEATED_CALLS: int = 3
    MODEL_TIMEOUT: float = 120.0
    # A sync tool that times out keeps running in its worker thread and may still finish
    TOOL_TIMEOUT: float = 30.0
    MODEL_MAX_RETRIES: int = 3

    # Behavior bundle
    BEHAVIOR_FILE: str | None = None
    TOOLS_MODULE: str | None = None

    def validate_credentials(self) -> None:
        """
        Make sure both model roles have usable API keys.

        Raises
        ------
        ConfigurationError
            If a key is missing or still holds the placeholder value.
        """
        for field in ("PROGRAMMER_API_KEY", "CONTEXT_API_KEY"):
            value = getattr(self, field)
            if not value or value.startswith(PLACEHOLDER_KEY_PREFIX):
                raise ConfigurationError(f"{field} is not configured (set it in the env or .env)")
        if self.MAX_TOOL_ROUNDS < 1:
            raise ConfigurationError("MAX_TOOL_ROUNDS must be at least 1")
        if self.MAX_REPEATED_CALLS < 2:
            raise ConfigurationError("MAX_REPEATED_CALLS must be at least 2")
        if self.MAX_SESSIONS < 1:
            raise ConfigurationError("MAX_SESSIONS must be at least 1")


settings = Settings()
