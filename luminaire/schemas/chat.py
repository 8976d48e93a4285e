"""Chat / streaming schemas."""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    user = "user"
    assistant = "assistant"
    agent = "agent"
    tool = "tool"
    error = "error"


class ChatMessage(BaseModel):
    """One stored unit of conversation. Never mutated after creation."""

    id: str
    session_id: str
    user_id: Optional[str] = None
    role: MessageRole
    content: str = ""
    timestamp: str


# ── HTTP bodies ───────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1)
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    system_id: Optional[str] = Field(default=None, alias="systemId")


class ClearChatHistoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")


class ClearChatHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deleted: int
    session_id: str = Field(..., alias="sessionId")


class StreamMessage(BaseModel):
    """A single client-visible output unit on the chat stream."""

    model_config = ConfigDict(populate_by_name=True)

    role: str
    content: str = ""
    tool: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ── Reassembler output ────────────────────────────────────────────────────────

class Delta(BaseModel):
    kind: Literal["delta"] = "delta"
    role: str = ""
    content: str = ""
    tool_calls: Optional[list[dict]] = None


class ToolCall(BaseModel):
    kind: Literal["tool_call"] = "tool_call"
    name: str
    arguments_json: str = "{}"
    role: str = "assistant"


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    message: str


class DoneEvent(BaseModel):
    kind: Literal["done"] = "done"


class Skip(BaseModel):
    kind: Literal["skip"] = "skip"


NormalizedEvent = Annotated[
    Union[Delta, ToolCall, ErrorEvent, DoneEvent, Skip],
    Field(discriminator="kind"),
]
