"""
Error taxonomy for Tandem.

Every failure the orchestration core can surface derives from :class:`TandemError`.  Remote model
failures are classified once, where the provider SDK raises them, into a :class:`ModelErrorKind`
so callers never have to sniff error strings.
"""

from enum import Enum
from typing import (
    List,
    Optional,
)


class TandemError(RuntimeError):
    """Base class for all Tandem errors."""

    def __init__(self, message: str, *, messages: Optional[List[str]] = None) -> None:
        super().__init__(message)
        # Orchestrator log collected up to the failure (for the HTTP error body)
        self.messages: List[str] = list(messages or [])


class ConfigurationError(TandemError):
    """Raised when credentials or settings are missing or invalid."""


class RegistryLoadError(TandemError):
    """Raised when a tool implementation module cannot be resolved or imported."""


class ToolExecutionError(TandemError):
    """Raised when a requested tool cannot run."""


class ToolNotFoundError(ToolExecutionError):
    """Raised when the model requests a tool that has no implementation."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is not registered.")
        self.name = name


class LoopLimitError(TandemError):
    """Raised when the function-call loop hits its round bound or repeats itself."""


class ModelErrorKind(str, Enum):
    """Classified failure of a remote model call."""

    RATE_LIMITED = "rate_limited"
    CONTENT_BLOCKED = "content_blocked"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT_FAILURE = "transport_failure"
    TIMEOUT = "timeout"


_EXPLANATIONS = {
    ModelErrorKind.RATE_LIMITED: "API rate limit reached. Wait a moment before trying again.",
    ModelErrorKind.CONTENT_BLOCKED: "The prompt was blocked by the model's safety filters.",
    ModelErrorKind.MALFORMED_RESPONSE: "The model returned a response that could not be processed.",
    ModelErrorKind.TRANSPORT_FAILURE: "Could not communicate with the model API.",
    ModelErrorKind.TIMEOUT: "The model did not answer in time.",
}


def explain(kind: ModelErrorKind) -> str:
    """Return a human-readable explanation for *kind*."""
    return _EXPLANATIONS[kind]


class RemoteModelError(TandemError):
    """Raised by model clients; carries the classified :class:`ModelErrorKind`."""

    def __init__(self, kind: ModelErrorKind, details: str = "") -> None:
        super().__init__(f"{explain(kind)} {details}".strip())
        self.kind = kind
        self.details = details

    @property
    def retryable(self) -> bool:
        """Only rate limits are retried."""
        return self.kind is ModelErrorKind.RATE_LIMITED


class OrchestrationError(TandemError):
    """Raised when an orchestration cycle fails for a reason not covered above."""


def describe_error(exc: Exception) -> tuple[str, str]:
    """
    Return ``(message, details)`` suitable for showing *exc* to an end user.
    """
    if isinstance(exc, RemoteModelError):
        return explain(exc.kind), exc.details or str(exc)
    if isinstance(exc, ToolNotFoundError):
        return "The model requested a tool that is not available.", str(exc)
    if isinstance(exc, LoopLimitError):
        return "The model kept calling tools without finishing.", str(exc)
    if isinstance(exc, RegistryLoadError):
        return "The tool implementations could not be loaded.", str(exc)
    return "Error while processing the chat.", str(exc) or type(exc).__name__
