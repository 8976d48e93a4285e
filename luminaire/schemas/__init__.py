"""Pydantic schemas."""
from luminaire.schemas.chat import (
    ChatMessage,
    ChatRequest,
    ClearChatHistoryRequest,
    ClearChatHistoryResponse,
    Delta,
    DoneEvent,
    ErrorEvent,
    MessageRole,
    NormalizedEvent,
    Skip,
    StreamMessage,
    ToolCall,
)
from luminaire.schemas.tool_settings import ToolSettings

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ClearChatHistoryRequest",
    "ClearChatHistoryResponse",
    "Delta",
    "DoneEvent",
    "ErrorEvent",
    "MessageRole",
    "NormalizedEvent",
    "Skip",
    "StreamMessage",
    "ToolCall",
    "ToolSettings",
]
