"""Chat response pipeline – raw inference chunks in, client stream out.

Drives the reassembler, decides what each event means to the client, persists
assistant text to chat memory and frames everything with the negotiated
formatter. Nothing in here may abort the HTTP response: per-chunk failures
become error messages and the stream carries on.
"""
from __future__ import annotations

import asyncio
from contextlib import aclosing
from datetime import datetime
from typing import AsyncGenerator, AsyncIterable, Optional

import structlog

from luminaire.schemas.chat import (
    Delta,
    DoneEvent,
    ErrorEvent,
    MessageRole,
    NormalizedEvent,
    StreamMessage,
    ToolCall,
)
from luminaire.services.chat_memory import ChatMemory
from luminaire.services.formatters import StreamFormatter
from luminaire.services.reassembler import RawChunk, StreamReassembler, transform_stream
from luminaire.services.tool_summary import summarize_tool_call

log = structlog.get_logger(__name__)


def welcome_message(agent_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now().astimezone()
    return f"{agent_name} session started at {now.strftime('%I:%M:%S %p %Z').strip()}"


class ChatStreamRenderer:
    """Renders one request's event stream. Single use.

    Assistant text is handed to a background writer so a slow memory backend
    never holds up the response. Writes keep their order; whatever is still
    queued when the stream ends gets ``flush_timeout`` seconds to land.
    """

    def __init__(
        self,
        session_id: str,
        formatter: StreamFormatter,
        memory: Optional[ChatMemory] = None,
        is_new_conversation: bool = False,
        agent_name: str = "Luminaire Agent",
        flush_timeout: float = 5.0,
    ) -> None:
        self.session_id = session_id
        self.formatter = formatter
        self.memory = memory
        self.agent_name = agent_name
        self.flush_timeout = flush_timeout
        self._pending_welcome = is_new_conversation
        self._writes: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None

    async def render(self, chunks: AsyncIterable[RawChunk]) -> AsyncGenerator[str, None]:
        reassembler = StreamReassembler()
        try:
            try:
                async with aclosing(transform_stream(chunks, reassembler)) as events:
                    async for event in events:
                        if self._pending_welcome:
                            self._pending_welcome = False
                            yield self.formatter.message(
                                StreamMessage(
                                    role=MessageRole.agent.value,
                                    content=welcome_message(self.agent_name),
                                )
                            )
                        try:
                            output = self._render_event(event)
                        except Exception as exc:
                            log.error(
                                "stream_event_failed",
                                session_id=self.session_id,
                                kind=event.kind,
                                error=str(exc),
                            )
                            output = self._error(f"Stream error: {exc}")
                        if output:
                            yield output
            except Exception as exc:
                log.error("upstream_stream_failed", session_id=self.session_id, error=str(exc))
                yield self._error(str(exc) or exc.__class__.__name__)
                return

            yield self.formatter.end()
        finally:
            await self._flush()

    def _render_event(self, event: NormalizedEvent) -> Optional[str]:
        if isinstance(event, DoneEvent):
            return None
        if isinstance(event, ErrorEvent):
            return self._error(event.message)
        if isinstance(event, ToolCall):
            return self.formatter.message(
                summarize_tool_call(event.name, event.arguments_json, self.session_id)
            )
        if isinstance(event, Delta):
            return self._render_delta(event)
        log.warning("unknown_event_dropped", kind=getattr(event, "kind", None))
        return None

    def _render_delta(self, delta: Delta) -> Optional[str]:
        role = delta.role
        if (role == "assistant" and not delta.tool_calls) or role == "":
            if not delta.content:
                return None
            self._persist(delta.content)
            return self.formatter.assistant_text(delta.content)

        if role == "tool":
            log.debug("tool_output_suppressed", session_id=self.session_id, size=len(delta.content))
            return None

        if role == "error":
            return self._error(f"Error: {delta.content or 'Unknown error'}")

        return self.formatter.message(StreamMessage(role=role, content=delta.content))

    # ── memory writes ─────────────────────────────────────────────────────────

    def _persist(self, content: str) -> None:
        if self.memory is None:
            return
        if self._writer is None:
            self._writes = asyncio.Queue()
            self._writer = asyncio.create_task(self._drain_writes())
        self._writes.put_nowait(content)

    async def _drain_writes(self) -> None:
        while True:
            content = await self._writes.get()
            if content is None:
                return
            try:
                await self.memory.store_message(
                    session_id=self.session_id,
                    role=MessageRole.assistant,
                    content=content,
                )
            except Exception as exc:
                log.error("chat_memory_store_failed", session_id=self.session_id, error=str(exc))

    async def _flush(self) -> None:
        if self._writer is None:
            return
        self._writes.put_nowait(None)
        try:
            await asyncio.wait_for(self._writer, timeout=self.flush_timeout)
        except asyncio.TimeoutError:
            log.warning(
                "chat_memory_flush_timeout",
                session_id=self.session_id,
                pending=self._writes.qsize(),
            )

    def _error(self, content: str) -> str:
        return self.formatter.message(StreamMessage(role=MessageRole.error.value, content=content))


def render_chat_stream(
    chunks: AsyncIterable[RawChunk],
    *,
    session_id: str,
    formatter: StreamFormatter,
    memory: Optional[ChatMemory] = None,
    is_new_conversation: bool = False,
    agent_name: str = "Luminaire Agent",
) -> AsyncGenerator[str, None]:
    renderer = ChatStreamRenderer(
        session_id,
        formatter,
        memory=memory,
        is_new_conversation=is_new_conversation,
        agent_name=agent_name,
    )
    return renderer.render(chunks)
