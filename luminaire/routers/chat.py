"""Chat router – streamed completions + session history."""
from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse

from luminaire.auth import current_user_id
from luminaire.config import Settings, get_settings
from luminaire.dependencies import get_chat_memory, get_inference_client, get_tool_settings
from luminaire.schemas.chat import (
    ChatMessage,
    ChatRequest,
    ClearChatHistoryRequest,
    ClearChatHistoryResponse,
)
from luminaire.schemas.tool_settings import ToolSettings
from luminaire.services.chat_memory import ChatMemory
from luminaire.services.chat_stream import render_chat_stream
from luminaire.services.formatters import negotiate_formatter
from luminaire.services.inference import InferenceClient

router = APIRouter(prefix="/api", tags=["chat"])
log = structlog.get_logger(__name__)


def _require_memory(memory: Optional[ChatMemory]) -> ChatMemory:
    if memory is None:
        raise HTTPException(status_code=500, detail={"error": "Chat memory is not enabled"})
    return memory


@router.post("/chat")
async def completion_chat(
    body: ChatRequest,
    accept: Optional[str] = Header(default=None),
    user_id: str = Depends(current_user_id),
    settings: Settings = Depends(get_settings),
    memory: Optional[ChatMemory] = Depends(get_chat_memory),
    client: InferenceClient = Depends(get_inference_client),
    tool_settings: ToolSettings = Depends(get_tool_settings),
) -> StreamingResponse:
    session_id = body.session_id or str(uuid.uuid4())
    is_new_conversation = body.session_id is None
    formatter = negotiate_formatter(accept, session_id)
    log.info(
        "chat_request",
        session_id=session_id,
        user_id=user_id,
        new=is_new_conversation,
        format=formatter.media_type,
    )

    chunks = client.stream_completion(
        body.question,
        session_id=session_id,
        user_id=user_id,
        system_id=body.system_id,
        tool_settings=tool_settings,
    )
    return StreamingResponse(
        render_chat_stream(
            chunks,
            session_id=session_id,
            formatter=formatter,
            memory=memory,
            is_new_conversation=is_new_conversation,
            agent_name=settings.agent_name,
        ),
        media_type=formatter.media_type,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@router.get(
    "/chat/history",
    response_model=list[ChatMessage],
    dependencies=[Depends(current_user_id)],
)
async def get_chat_history(
    session_id: str = Query(..., alias="sessionId"),
    limit: int = Query(default=10, ge=0),
    memory: Optional[ChatMemory] = Depends(get_chat_memory),
) -> Any:
    memory = _require_memory(memory)
    try:
        return await memory.get_session_messages(session_id, limit)
    except Exception as exc:
        log.error("chat_history_failed", session_id=session_id, error=str(exc))
        raise HTTPException(
            status_code=500,
            detail={"error": "Error retrieving chat history", "message": str(exc)},
        )


@router.delete(
    "/chat/history",
    response_model=ClearChatHistoryResponse,
    dependencies=[Depends(current_user_id)],
)
async def clear_chat_history(
    body: ClearChatHistoryRequest,
    memory: Optional[ChatMemory] = Depends(get_chat_memory),
) -> Any:
    memory = _require_memory(memory)
    try:
        deleted = await memory.delete_session_messages(body.session_id)
    except Exception as exc:
        log.error("chat_history_clear_failed", session_id=body.session_id, error=str(exc))
        raise HTTPException(
            status_code=500,
            detail={"error": "Error clearing chat history", "message": str(exc)},
        )
    return ClearChatHistoryResponse(deleted=deleted, session_id=body.session_id)
