"""Interactive terminal client for Tandem."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Optional,
    Tuple,
)

from tandem.agent.behavior_loader import (
    LoadedBehavior,
    load_configured_behavior,
)
from tandem.agent.orchestrator import (
    Orchestrator,
    create_orchestrator,
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
from tandem.core.schema import OrchestrationResult

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"sair", "exit", "quit"}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def render_result(result: OrchestrationResult) -> None:
    """Print tool outcomes, or the programmer's text."""
    for tool in result.tool_results:
        color = AnsiColors.GREEN if tool.ok else AnsiColors.RED
        colored_print(f"[{tool.name}] {tool.message}", color)
    if result.text:
        colored_print(f"\nProgrammer: {result.text}", AnsiColors.YELLOW)
    elif not result.tool_results:
        colored_print("The programmer returned neither text nor action.", AnsiColors.MAGENTA)


async def chat_loop(orchestrator: Orchestrator) -> None:
    """Read lines until ``sair`` (or EOF) and run one orchestration cycle per line."""
    colored_print("Chat started. Type 'sair' to quit.", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="", flush=True)
        user_msg, ok = await asyncio.to_thread(get_user_message)
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if not user_msg:
            continue
        if user_msg.lower() in EXIT_COMMANDS:
            break

        try:
            result = await orchestrator.orchestrate(user_msg)
        except TandemError as exc:
            summary, details = describe_error(exc)
            logger.debug("Orchestrator log before failure: %s", exc.messages)
            colored_print(f"Error: {summary}", AnsiColors.RED)
            if details:
                colored_print(f"Details: {details}", AnsiColors.RED)
            continue
        render_result(result)
    colored_print("Chat ended.", AnsiColors.GREEN)


def run_cli(
    behavior: Optional[LoadedBehavior] = None, feedback_enabled: Optional[bool] = None
) -> None:
    """Run the interactive shell against in-process models."""
    if behavior is None:
        behavior = load_configured_behavior(settings)
    orchestrator = create_orchestrator(settings, behavior, feedback_enabled=feedback_enabled)
    asyncio.run(chat_loop(orchestrator))


if __name__ == "__main__":
    run_cli()
