"""
Schema definitions for model <-> orchestrator <-> tool messages.

These data models serve as the contract between the remote models, the orchestration loop, and
individual tools.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


# ---------------------------------------------------------------------------
# Tool declarations
# ---------------------------------------------------------------------------
class ToolDeclaration(BaseModel):
    """Name and argument shape of a capability the model may call."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Tool name the model uses in its function call")
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON-schema object describing the arguments",
    )
    required: List[str] = Field(default_factory=list)

    def json_schema(self) -> Dict[str, Any]:
        """Return the parameter schema with ``required`` folded in."""
        schema = dict(self.parameters)
        schema.setdefault("type", "object")
        if self.required:
            schema["required"] = list(self.required)
        return schema


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class FunctionCall(BaseModel):
    """A call that a model wants the orchestrator to execute."""

    name: str = Field(..., description="Declared tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the tool")
    id: Optional[str] = Field(None, description="Provider call id, when the provider assigns one")

    def signature(self) -> str:
        """Stable key used to detect the model repeating the same call."""
        return f"{self.name}:{sorted(self.args.items(), key=lambda kv: kv[0])!r}"


class FunctionResponse(BaseModel):
    """Result of a tool invocation, sent back to the model under the tool's name."""

    name: str
    response: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class Part(BaseModel):
    """One piece of a turn: free text, a function call or a function response."""

    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)


class Turn(BaseModel):
    """A single entry of a conversation history."""

    role: Literal["user", "model"]
    parts: List[Part] = Field(default_factory=list)


class ModelReply(BaseModel):
    """Provider-neutral answer of a remote model."""

    text: str = ""
    function_calls: List[FunctionCall] = Field(default_factory=list)
    blocked: bool = False
    block_reason: Optional[str] = None

    def to_turn(self) -> Turn:
        """Record this reply as a model turn."""
        parts: List[Part] = []
        if self.text:
            parts.append(Part(text=self.text))
        parts.extend(Part(function_call=call) for call in self.function_calls)
        return Turn(role="model", parts=parts)


# ---------------------------------------------------------------------------
# Behavior bundle
# ---------------------------------------------------------------------------
class Behavior(BaseModel):
    """Optional persona / configuration bundle applied to a session."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    instructions: Optional[str] = None
    response_tone: Optional[str] = Field(None, alias="responseTone")
    memories: List[str] = Field(default_factory=list)
    tools: List[ToolDeclaration] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
class Outcome(str, Enum):
    """Whether a tool invocation succeeded."""

    SUCCESS = "success"
    ERROR = "error"


class ToolStatus(str):
    """
    Status line returned by a tool, flagged as success or failure.

    Behaves as the plain message everywhere a string is expected; the executor reads
    :attr:`ok` to decide the outcome instead of inspecting the text.
    """

    ok: bool

    def __new__(cls, message: str, ok: bool = True) -> "ToolStatus":
        status = super().__new__(cls, message)
        status.ok = ok
        return status


class ToolCallResult(BaseModel):
    """What happened when a requested tool ran."""

    name: str
    invoked_with: Dict[str, Any] = Field(default_factory=dict)
    outcome: Outcome
    message: str
    result: Any = Field(None, exclude=True, description="Raw return value of the tool")
    call_id: Optional[str] = Field(None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_function_response(self) -> FunctionResponse:
        """Payload fed back to the model under the tool's name."""
        if self.ok:
            value = self.result if isinstance(self.result, dict) else {"result": self.result}
            return FunctionResponse(name=self.name, response=value, id=self.call_id)
        if isinstance(self.result, dict) and "error" in self.result:
            return FunctionResponse(name=self.name, response=self.result, id=self.call_id)
        return FunctionResponse(name=self.name, response={"error": self.message}, id=self.call_id)


class LoopOutcome(BaseModel):
    """Final state of one run of the function-call loop."""

    text: str = ""
    tool_results: List[ToolCallResult] = Field(default_factory=list)
    rounds: int = 0


class OrchestrationResult(BaseModel):
    """Returned to the CLI / HTTP layer after one user message."""

    text: str = ""
    tool_results: List[ToolCallResult] = Field(default_factory=list)
    messages: List[str] = Field(default_factory=list)
