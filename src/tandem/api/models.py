"""
Pydantic models for Tandem API responses.
This module defines the response schemas used by the ``/chat`` endpoint.  Field names follow the
JSON contract (camelCase) through aliases.
"""

from typing import (
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatResponse(_CamelModel):
    """Successful orchestration result returned to the caller."""

    status: Literal["success"] = "success"
    programmer_response: str = Field("", alias="programmerResponse")
    tool_results: List[str] = Field(default_factory=list, alias="toolResults")
    orchestrator_messages: List[str] = Field(default_factory=list, alias="orchestratorMessages")
    session_id: str = Field(..., alias="sessionId")


class ErrorResponse(_CamelModel):
    """Body of 400 / 500 responses."""

    status: Literal["error"] = "error"
    message: str
    details: Optional[str] = None
    orchestrator_messages: List[str] = Field(default_factory=list, alias="orchestratorMessages")
