"""
Function-call execution loop.

Drives one programmer turn to completion: send the message, execute the function the model asks
for, feed the result back and repeat until the model answers with text.  With feedback disabled
the loop stops after the first tool runs and the outcome is reported to the user directly.
"""

import logging
from typing import (
    Optional,
    Sequence,
)

from tandem.agent.conversation import Conversation
from tandem.agent.tool_executor import execute_tool
from tandem.core.errors import LoopLimitError
from tandem.core.schema import (
    FunctionCall,
    FunctionResponse,
    LoopOutcome,
    Part,
    Turn,
)
from tandem.tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 10
DEFAULT_MAX_REPEATED_CALLS = 3


async def run_to_completion(
    conversation: Conversation,
    parts: Sequence[Part],
    registry: ToolRegistry,
    *,
    feedback_enabled: bool = True,
    max_rounds: int = DEFAULT_MAX_ROUNDS,
    max_repeated_calls: int = DEFAULT_MAX_REPEATED_CALLS,
    tool_timeout: Optional[float] = None,
) -> LoopOutcome:
    """
    Run *parts* through *conversation* until the model stops requesting functions.

    Parameters
    ----------
    conversation:
        The programmer conversation.  Callers sharing it must hold ``conversation.lock``.
    parts:
        The initial user message parts.
    registry:
        Implementations for the tools the conversation declares.
    feedback_enabled:
        Feed each tool result back to the model and continue (``True``), or stop after the first
        tool runs (``False``).
    max_rounds:
        Maximum model round trips for this call.
    max_repeated_calls:
        The same call (name and arguments) requested this many times in a row is a cycle.
    tool_timeout:
        Seconds each tool invocation may take.

    Returns
    -------
    LoopOutcome
        The final text (possibly empty) and every tool outcome, in execution order.

    Raises
    ------
    ToolNotFoundError
        The model requested a tool with no implementation.  Nothing is invoked for that call.
    LoopLimitError
        The round bound was reached or a repeated call was detected.
    RemoteModelError
        A model round trip failed.

    Whatever the exit, a model call recorded in the history is followed by its response.
    """
    outcome = LoopOutcome()
    message_parts = list(parts)
    last_signature: Optional[str] = None
    repeats = 0
    # Call recorded in the history that has no function response yet
    pending_call: Optional[FunctionCall] = None
    pending_response: Optional[Part] = None

    try:
        while True:
            if outcome.rounds >= max_rounds:
                raise LoopLimitError(
                    f"The model was still calling tools after {max_rounds} round trips."
                )
            reply = await conversation.send(message_parts)
            outcome.rounds += 1
            pending_call, pending_response = None, None

            if not reply.function_calls:
                outcome.text = reply.text
                logger.info("Loop finished after %d round trip(s)", outcome.rounds)
                return outcome

            call = reply.function_calls[0]
            pending_call = call
            signature = call.signature()
            repeats = repeats + 1 if signature == last_signature else 1
            last_signature = signature
            if repeats >= max_repeated_calls:
                raise LoopLimitError(
                    f"The model requested '{call.name}' with the same arguments {repeats} times "
                    "in a row."
                )

            logger.info("Model requested '%s' (round %d)", call.name, outcome.rounds)
            result = await execute_tool(registry, call, timeout=tool_timeout)
            outcome.tool_results.append(result)
            pending_response = Part(function_response=result.to_function_response())

            if not feedback_enabled:
                _record_response(conversation, pending_response)
                pending_call = None
                outcome.text = reply.text
                return outcome

            message_parts = [pending_response]
    except Exception as exc:
        if pending_call is not None:
            _close_pending_call(conversation, pending_call, pending_response, exc)
        raise


def _record_response(conversation: Conversation, response: Part) -> None:
    conversation.record(Turn(role="user", parts=[response]))


def _close_pending_call(
    conversation: Conversation,
    call: FunctionCall,
    response: Optional[Part],
    exc: Exception,
) -> None:
    """
    Answer *call* in the history before the loop gives up.

    The history is reused by the next request, and providers reject a model call that is not
    followed by its response.  The tool's result is recorded when it ran; otherwise the error
    that stopped the loop is.
    """
    if response is None:
        response = Part(
            function_response=FunctionResponse(
                name=call.name, response={"error": str(exc)}, id=call.id
            )
        )
    logger.debug("Closing unanswered call '%s' after %s", call.name, type(exc).__name__)
    _record_response(conversation, response)
