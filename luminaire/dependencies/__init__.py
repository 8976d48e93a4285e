"""FastAPI dependency injection providers."""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from luminaire.config import Settings, get_settings
from luminaire.schemas.tool_settings import ToolSettings
from luminaire.services.chat_memory import ChatMemory
from luminaire.services.inference import InferenceClient


def get_chat_memory(
    request: Request, settings: Settings = Depends(get_settings)
) -> Optional[ChatMemory]:
    """Chat memory over the app's Redis client, or None when memory is off."""
    client = getattr(request.app.state, "redis", None)
    if not settings.enable_memory or client is None:
        return None
    return ChatMemory(client, ttl_seconds=settings.chat_history_ttl_seconds)


def get_inference_client(
    settings: Settings = Depends(get_settings),
    memory: Optional[ChatMemory] = Depends(get_chat_memory),
) -> InferenceClient:
    return InferenceClient(settings, memory=memory)


async def get_tool_settings() -> ToolSettings:
    # Per-user settings live in Postgres behind the tool-settings API; the chat
    # path runs with every tool enabled and no whitelist unless overridden.
    return ToolSettings()
