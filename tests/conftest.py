"""
Shared fixtures: a scripted model client and sandboxed files in a temp dir.
"""

from typing import (
    Any,
    List,
    Sequence,
    Union,
)

import pytest

from tandem.agent.model_interface import BaseModelClient
from tandem.core.schema import (
    FunctionCall,
    ModelReply,
    Part,
    ToolDeclaration,
    Turn,
)
from tandem.tools.file_ops import SandboxedFiles

Scripted = Union[ModelReply, Exception]


class FakeModelClient(BaseModelClient):
    """Returns scripted replies in order and records what it was sent."""

    RETRY_BASE_DELAY = 0.0

    def __init__(self, replies: Sequence[Scripted] = (), **kwargs: Any) -> None:
        kwargs.setdefault("model", "fake-model")
        kwargs.setdefault("max_retries", 0)
        super().__init__(**kwargs)
        self.replies: List[Scripted] = list(replies)
        self.sent: List[List[Part]] = []
        self.histories: List[List[Turn]] = []
        self.tools_seen: List[List[ToolDeclaration]] = []

    async def _generate(
        self, history: List[Turn], parts: List[Part], tools: List[ToolDeclaration]
    ) -> ModelReply:
        self.histories.append(list(history))
        self.sent.append(list(parts))
        self.tools_seen.append(list(tools))
        if not self.replies:
            raise RuntimeError("FakeModelClient ran out of scripted replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def text_reply(text: str) -> ModelReply:
    return ModelReply(text=text)


def call_reply(name: str, text: str = "", **args: Any) -> ModelReply:
    return ModelReply(text=text, function_calls=[FunctionCall(name=name, args=args)])


@pytest.fixture
def files(tmp_path) -> SandboxedFiles:
    return SandboxedFiles(tmp_path)
