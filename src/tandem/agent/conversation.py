"""Append-only conversation history bound to one remote model."""

import asyncio
import logging
from typing import (
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
)

from tandem.agent.model_interface import BaseModelClient
from tandem.core.schema import (
    ModelReply,
    Part,
    ToolDeclaration,
    Turn,
)

logger = logging.getLogger(__name__)


class Conversation:
    """
    A chat session with one model and one declared tool set.

    The history only grows.  A user turn and the model's reply are appended together once the
    round trip succeeds, so a failed call leaves the history untouched.  Callers that run a whole
    request against a shared conversation hold :attr:`lock` for its duration.
    """

    def __init__(
        self,
        client: BaseModelClient,
        tools: Sequence[ToolDeclaration] = (),
        history: Optional[Iterable[Turn]] = None,
    ) -> None:
        self.client = client
        self.tools: Tuple[ToolDeclaration, ...] = tuple(tools)
        self._history: List[Turn] = list(history or [])
        self.lock = asyncio.Lock()

    @property
    def history(self) -> Tuple[Turn, ...]:
        return tuple(self._history)

    async def send(self, parts: Sequence[Part]) -> ModelReply:
        """Send *parts* as a user turn and record the exchange."""
        reply = await self.client.generate(self._history, parts, self.tools)
        if len(reply.function_calls) > 1:
            logger.warning(
                "Model requested %d calls in one turn; only '%s' is acted on",
                len(reply.function_calls),
                reply.function_calls[0].name,
            )
        # Only the first call is acted on, so only the first is kept in the history
        recorded = reply.model_copy(update={"function_calls": reply.function_calls[:1]})
        self._history.append(Turn(role="user", parts=list(parts)))
        self._history.append(recorded.to_turn())
        return reply

    def record(self, turn: Turn) -> None:
        """Append *turn* without a model round trip."""
        self._history.append(turn)
