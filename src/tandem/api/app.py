"""
HTTP backend for Tandem.

It exposes the following endpoints:
- **GET /**       - plain-text status line.
- **GET /health** - liveness probe for health checks.
- **GET /chat**   - one orchestration cycle: ``/chat?message=...[&session_id=...]``

Each session id owns its own programmer conversation.  Requests for the same session are
serialized by that conversation's lock, so concurrent calls never interleave their turns.
At most ``MAX_SESSIONS`` sessions are kept in memory; the least recently used is dropped first.
"""

import logging
from collections import OrderedDict
from typing import (
    Callable,
    Optional,
)

from fastapi import (
    FastAPI,
    Query,
)
from fastapi.responses import (
    JSONResponse,
    PlainTextResponse,
)

from tandem.agent.behavior_loader import (
    LoadedBehavior,
    load_configured_behavior,
)
from tandem.agent.orchestrator import (
    Orchestrator,
    create_orchestrator,
)
from tandem.api.models import (
    ChatResponse,
    ErrorResponse,
)
from tandem.common import (
    AnsiColors,
    colored_print,
)
from tandem.config import settings
from tandem.core.errors import (
    TandemError,
    describe_error,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"

# Conversation per session (in-memory, lost on restart), least recently used first
sessions: "OrderedDict[str, Orchestrator]" = OrderedDict()

app = FastAPI(title="Tandem API", version="0.1.0", description="Two-model coding orchestrator API")


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_behavior() -> Optional[LoadedBehavior]:
    """Behavior set at startup, loaded from settings on first use otherwise."""
    if not hasattr(app.state, "behavior"):
        app.state.behavior = load_configured_behavior(settings)
    return app.state.behavior


def default_orchestrator_factory() -> Orchestrator:
    return create_orchestrator(settings, get_behavior())


orchestrator_factory: Callable[[], Orchestrator] = default_orchestrator_factory


def get_orchestrator(session_id: str) -> Orchestrator:
    """
    Get the session's orchestrator, creating it on first use.

    At most ``settings.MAX_SESSIONS`` sessions are kept; the least recently used one is dropped
    when a new session would exceed the cap.  A request already running on a dropped session
    finishes normally.
    """
    orchestrator = sessions.get(session_id)
    if orchestrator is not None:
        sessions.move_to_end(session_id)
        return orchestrator

    logger.info("Creating session '%s'", session_id)
    orchestrator = orchestrator_factory()
    sessions[session_id] = orchestrator
    while len(sessions) > settings.MAX_SESSIONS:
        evicted, _ = sessions.popitem(last=False)
        logger.info("Dropping least recently used session '%s'", evicted)
    return orchestrator


def _error(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True)
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/", summary="API root", response_class=PlainTextResponse)
async def root() -> str:
    """Return a simple status line."""
    return "Tandem chat server is running. Use GET /chat?message=YOUR_MESSAGE"


@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/chat", summary="Process a message", response_model=ChatResponse)
async def chat(
    message: Optional[str] = Query(None, description="User message for Tandem"),
    session_id: str = Query(DEFAULT_SESSION, description="Conversation to continue"),
) -> JSONResponse:
    """Run the context and programmer stages for *message*."""
    if not message or not message.strip():
        return _error(
            400, ErrorResponse(message="Parameter 'message' not found in the query string.")
        )

    logger.info("New request [session=%s]: %s", session_id, message)
    try:
        orchestrator = get_orchestrator(session_id)
        result = await orchestrator.orchestrate(message)
    except Exception as exc:  # pylint: disable=broad-except
        summary, details = describe_error(exc)
        logger.error("Chat request failed: %s (%s)", summary, details)
        messages = exc.messages if isinstance(exc, TandemError) else []
        return _error(
            500,
            ErrorResponse(message=summary, details=details, orchestrator_messages=messages),
        )

    response = ChatResponse(
        programmer_response=result.text,
        tool_results=[tool.message for tool in result.tool_results],
        orchestrator_messages=result.messages,
        session_id=session_id,
    )
    return JSONResponse(content=response.model_dump(by_alias=True))


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0",
    port: int = 3000,
    log_level: str | None = None,
    behavior: Optional[LoadedBehavior] = None,
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    log_level:
        Logging level to use (default from settings if not provided).
    behavior:
        Behavior loaded at startup; shared by every session.
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    app.state.behavior = behavior
    logger.info("Starting Tandem API at %s:%d (log_level=%s)", host, port, log_level)
    logger.info("Files directory: %s", settings.FILES_DIR)

    colored_print(f"Tandem API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(
        f"Try: http://localhost:{port}/chat?message=YOUR_MESSAGE_HERE",
        AnsiColors.BLUE,
    )
    uvicorn.run(app, host=host, port=port, log_level=log_level)
