"""Inference proxy – sends the conversation to the agent endpoint and hands back
the raw completion stream for reassembly."""
from __future__ import annotations

from typing import AsyncGenerator, Optional

import httpx
import structlog

from luminaire.config import Settings
from luminaire.schemas.chat import MessageRole
from luminaire.schemas.tool_settings import ToolSettings
from luminaire.services.chat_memory import ChatMemory
from luminaire.services.prompt import build_system_prompt, build_tools

log = structlog.get_logger(__name__)

AGENT_PATH = "/v1/agents/heroku"


class InferenceError(Exception):
    """The inference service rejected the completion request."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__("Error executing the chat completion, please try again")


class InferenceClient:
    """HTTP client for the agent completion endpoint."""

    def __init__(
        self,
        settings: Settings,
        memory: Optional[ChatMemory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._memory = memory
        self._transport = transport
        self._url = settings.inference_url.rstrip("/") + AGENT_PATH

    async def build_messages(
        self,
        question: str,
        *,
        session_id: str,
        user_id: Optional[str] = None,
        system_id: Optional[str] = None,
        tool_settings: Optional[ToolSettings] = None,
    ) -> list[dict[str, str]]:
        previous: list[dict[str, str]] = []
        if self._memory is not None:
            try:
                await self._memory.store_message(
                    session_id=session_id,
                    user_id=user_id,
                    role=MessageRole.user,
                    content=question,
                )
                previous = await self._memory.get_formatted_messages(
                    session_id, self._settings.chat_history_window
                )
            except Exception as exc:
                # answer without history rather than fail the chat
                log.error("chat_memory_store_failed", session_id=session_id, error=str(exc))
                previous = []

        messages = [
            {
                "role": "system",
                "content": build_system_prompt(
                    self._settings.agent_name,
                    system_id=system_id,
                    tool_settings=tool_settings,
                ),
            },
            *previous,
        ]
        # history already ends with the stored question
        if not previous:
            messages.append({"role": MessageRole.user.value, "content": question})
        return messages

    async def stream_completion(
        self,
        question: str,
        *,
        session_id: str,
        user_id: Optional[str] = None,
        system_id: Optional[str] = None,
        tool_settings: Optional[ToolSettings] = None,
    ) -> AsyncGenerator[bytes, None]:
        """Yield raw completion chunks. Closing the generator drops the connection."""
        messages = await self.build_messages(
            question,
            session_id=session_id,
            user_id=user_id,
            system_id=system_id,
            tool_settings=tool_settings,
        )
        payload = {
            "model": self._settings.inference_model_id,
            "messages": messages,
            "tools": build_tools(self._settings, tool_settings),
            "stream": True,
        }
        log.info(
            "inference_request",
            session_id=session_id,
            history_len=len(messages) - 1,
            tools=len(payload["tools"]),
        )

        async with httpx.AsyncClient(
            timeout=self._settings.inference_timeout, transport=self._transport
        ) as client:
            async with client.stream(
                "POST",
                self._url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._settings.inference_key}",
                    "Accept": "text/event-stream",
                },
            ) as resp:
                if resp.is_error:
                    body = (await resp.aread()).decode(errors="replace")
                    log.error(
                        "inference_http_error",
                        session_id=session_id,
                        status=resp.status_code,
                        body=body[:500],
                    )
                    raise InferenceError(resp.status_code, body)
                async for chunk in resp.aiter_bytes():
                    yield chunk
