"""Dispatches tool calls through a :class:`~tandem.tools.ToolRegistry` and wraps errors."""

import asyncio
import inspect
import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
)

from tandem.common import truncate
from tandem.core.errors import ToolNotFoundError
from tandem.core.schema import (
    FunctionCall,
    Outcome,
    ToolCallResult,
    ToolStatus,
)
from tandem.tools import ToolRegistry

logger = logging.getLogger(__name__)


def _describe(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


def _is_error_result(result: Any) -> bool:
    if isinstance(result, ToolStatus):
        return not result.ok
    # Plain strings from user tools follow the "Error ..." convention
    if isinstance(result, str):
        return result.startswith("Error")
    return isinstance(result, dict) and "error" in result


async def _invoke(fn: Callable, args: Dict[str, Any], timeout: Optional[float]) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await asyncio.wait_for(fn(**args), timeout)
    result = await asyncio.wait_for(asyncio.to_thread(fn, **args), timeout)
    if inspect.isawaitable(result):
        result = await asyncio.wait_for(result, timeout)
    return result


async def execute_tool(
    registry: ToolRegistry, call: FunctionCall, timeout: Optional[float] = None
) -> ToolCallResult:
    """
    Look up ``call.name`` in *registry* and invoke it with ``call.args``.

    Parameters
    ----------
    registry:
        The capability table of the current role.
    call:
        The function call requested by the model.
    timeout:
        Seconds the tool may run before it is reported as failed.  ``None`` waits forever.
        A sync tool runs in a worker thread that cannot be interrupted: after a timeout it
        keeps running and its side effects (a file write, say) may still happen.

    Returns
    -------
    ToolCallResult
        Success with the tool's return value, or error with a readable message.  Faults raised by
        the tool never escape.

    Raises
    ------
    ToolNotFoundError
        If the tool has no implementation.  This is fatal to the whole orchestration call.
    """
    fn = registry.get(call.name)
    if fn is None:
        logger.error("Model requested unknown tool '%s'", call.name)
        raise ToolNotFoundError(call.name)

    args = dict(call.args)
    try:
        inspect.signature(fn).bind(**args)
    except TypeError as exc:
        logger.warning("Invalid arguments for tool '%s': %s", call.name, exc)
        return ToolCallResult(
            name=call.name,
            invoked_with=args,
            call_id=call.id,
            outcome=Outcome.ERROR,
            message=f"Invalid arguments for tool '{call.name}': {exc}",
        )
    except ValueError:
        pass  # no introspectable signature, let the call decide

    try:
        logger.debug("Executing tool '%s' with args=%s", call.name, args)
        result = await _invoke(fn, args, timeout)
    except asyncio.TimeoutError:
        logger.error("Tool '%s' timed out after %ss", call.name, timeout)
        return ToolCallResult(
            name=call.name,
            invoked_with=args,
            call_id=call.id,
            outcome=Outcome.ERROR,
            message=f"Tool '{call.name}' timed out after {timeout}s.",
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", call.name)
        return ToolCallResult(
            name=call.name,
            invoked_with=args,
            call_id=call.id,
            outcome=Outcome.ERROR,
            message=f"Internal error while running {call.name}: {exc}",
        )

    message = _describe(result)
    outcome = Outcome.ERROR if _is_error_result(result) else Outcome.SUCCESS
    logger.info("Tool '%s' returned: %s", call.name, truncate(message))
    return ToolCallResult(
        name=call.name,
        invoked_with=args,
        call_id=call.id,
        outcome=outcome,
        message=message,
        result=result,
    )
