"""Reassembles a raw inference stream into normalized chat events.

The upstream agent endpoint delivers OpenAI-style completion objects either as
SSE frames (``event: message\\ndata: {...}``), as bare JSON per chunk, or as
JSON split arbitrarily across network chunks. ``StreamReassembler`` turns each
raw chunk into at most one ``NormalizedEvent`` and holds a partial payload
between chunks while it waits for the rest of it.

State machine::

    IDLE --(payload structurally incomplete)--> BUFFERING
    IDLE --(event header without data line)--> BUFFERING
    BUFFERING --(buffer parses)--> IDLE, emits the parsed event
    BUFFERING --(done / [DONE])--> IDLE, buffer dropped, emits DoneEvent
    BUFFERING --(buffer malformed)--> IDLE, chunk reprocessed from scratch
"""
from __future__ import annotations

import codecs
import json
import re
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Optional, Union

import structlog

from luminaire.schemas.chat import (
    Delta,
    DoneEvent,
    ErrorEvent,
    NormalizedEvent,
    Skip,
    ToolCall,
)

log = structlog.get_logger(__name__)

RawChunk = Union[bytes, bytearray, memoryview, str]

DONE_PAYLOAD = "[DONE]"
NON_CONTENT_EVENTS = frozenset({"heartbeat", "ping", "keep-alive"})

_EVENT_RE = re.compile(r"event:([^\n]*)")
_DATA_LINE_RE = re.compile(r"data:(.*)")
_BUFFERED_DATA_RE = re.compile(r"data:(.*?)(?=event:|$)", re.S)

_CLOSERS = {"}": "{", "]": "["}


class BufferState(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"


# ── Scanning helpers ──────────────────────────────────────────────────────────

def is_incomplete_json(text: str) -> bool:
    """True if ``text`` is a truncated prefix of a JSON object, array or string.

    Scans brackets and string state instead of inspecting parser error
    messages. A mismatched closer or content after a closed top-level value
    means the text is malformed, not incomplete.
    """
    text = text.strip()
    if not text or text[0] not in '{["':
        return False

    stack: list[str] = []
    in_string = False
    escaped = False
    for index, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
                if not stack and index < len(text) - 1:
                    return False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or stack.pop() != _CLOSERS[ch]:
                return False
            if not stack:
                return False
    return in_string or bool(stack)


def is_heartbeat(text: str) -> bool:
    stripped = text.strip()
    return (
        "event:heartbeat" in text
        or "data:heartbeat" in text
        or stripped == "event:ping"
        or stripped == ":heartbeat"
    )


def event_label(text: str) -> str:
    match = _EVENT_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return "message"


def data_payload(text: str) -> Optional[str]:
    """First ``data:`` line payload, or None when the chunk has no data marker."""
    match = _DATA_LINE_RE.search(text)
    if match is None:
        return None
    return match.group(1).strip()


def classify_message(message: dict[str, Any]) -> Union[Delta, ToolCall]:
    """Turn a ``choices[0].delta`` / ``.message`` object into an event."""
    role = message.get("role") or ""
    content = message.get("content") or ""
    if not isinstance(content, str):
        content = json.dumps(content)
    tool_calls = message.get("tool_calls") or None

    if tool_calls and role == "assistant":
        function = (tool_calls[0] or {}).get("function") or {}
        arguments = function.get("arguments") or "{}"
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return ToolCall(name=function.get("name") or "", arguments_json=arguments, role=role)

    return Delta(role=role, content=content, tool_calls=tool_calls)


# ── Reassembler ───────────────────────────────────────────────────────────────

class StreamReassembler:
    """Per-stream parser state. One instance per request, never shared."""

    def __init__(self) -> None:
        self.state = BufferState.IDLE
        self._buffer = ""
        self._framed = False
        # multi-byte characters may straddle network chunks
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def buffer(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self.state = BufferState.IDLE
        self._buffer = ""
        self._framed = False

    def decode(self, chunk: RawChunk) -> str:
        if isinstance(chunk, str):
            return chunk
        return self._decoder.decode(bytes(chunk))

    def feed(self, chunk: RawChunk) -> NormalizedEvent:
        text = self.decode(chunk)
        if not text.strip():
            if self.state is BufferState.BUFFERING:
                self._buffer += text
            return Skip()
        if is_heartbeat(text):
            log.debug("heartbeat_skipped")
            return Skip()

        label = event_label(text)

        if self.state is BufferState.BUFFERING:
            if label == "done" or data_payload(text) == DONE_PAYLOAD:
                return self._done()
            if label in NON_CONTENT_EVENTS:
                log.debug("non_message_event_skipped", label=label)
                return Skip()
            self._buffer += text
            log.debug("buffer_extended", label=label, size=len(self._buffer))
            event = self._try_buffer()
            if event is not None:
                return event
            # buffer was malformed and dropped; handle this chunk on its own

        return self._feed_idle(text, label)

    # ── internals ─────────────────────────────────────────────────────────────

    def _feed_idle(self, text: str, label: str) -> NormalizedEvent:
        if label in NON_CONTENT_EVENTS:
            log.debug("non_message_event_skipped", label=label)
            return Skip()
        if label == "done":
            return self._done()

        payload = data_payload(text)
        if payload is None and _EVENT_RE.search(text):
            # frame header arrived without its data line
            self._start_buffering(text, framed=True)
            return Skip()
        if label == "error":
            return self._error_event(text)
        if payload is None:
            return self._parse_bare(text)
        if payload == DONE_PAYLOAD:
            return self._done()
        if not payload:
            return Skip()
        return self._parse_framed(payload, text)

    def _done(self) -> DoneEvent:
        if self.state is BufferState.BUFFERING:
            log.info("buffer_dropped_on_done", size=len(self._buffer))
        self.reset()
        return DoneEvent()

    def _error_event(self, text: str) -> ErrorEvent:
        payload = data_payload(text) or ""
        try:
            data = json.loads(payload)
        except ValueError:
            log.error("error_event_unparseable", payload=payload[:200])
            return ErrorEvent(message="parse error")
        message = data.get("message") if isinstance(data, dict) else None
        return ErrorEvent(message=message or "An error occurred")

    def _parse_framed(self, payload: str, text: str) -> NormalizedEvent:
        try:
            parsed = json.loads(payload)
        except ValueError as exc:
            if not is_incomplete_json(payload):
                log.error("message_json_malformed", error=str(exc), payload=payload[:200])
                return ErrorEvent(message=f"Error parsing server response: {exc}")
            self._start_buffering(text, framed=True)
            # payload may continue on later lines of this same chunk
            return self._try_buffer() or ErrorEvent(message="Error parsing server response")
        self.reset()
        return self._extract(parsed)

    def _parse_bare(self, text: str) -> NormalizedEvent:
        try:
            parsed = json.loads(text)
        except ValueError:
            if is_incomplete_json(text):
                self._start_buffering(text, framed=False)
            return Skip()
        return self._extract(parsed)

    def _start_buffering(self, text: str, framed: bool) -> None:
        self.state = BufferState.BUFFERING
        self._buffer = text
        self._framed = framed
        log.info("buffering_started", preview=text[:100])

    def _try_buffer(self) -> Optional[NormalizedEvent]:
        """Attempt to parse the accumulated buffer.

        Returns the event on success, ``Skip`` while still incomplete and
        ``None`` when the buffer turned out malformed and was dropped.
        """
        label = "message"
        if self._framed:
            label = event_label(self._buffer)
            match = _BUFFERED_DATA_RE.search(self._buffer)
            candidate = match.group(1).strip() if match else ""
        else:
            candidate = self._buffer.strip()

        if candidate == DONE_PAYLOAD or label == "done":
            return self._done()
        if not candidate:
            return Skip()
        if label in NON_CONTENT_EVENTS:
            self.reset()
            return Skip()
        if label == "error":
            if is_incomplete_json(candidate):
                return Skip()
            buffered = self._buffer
            self.reset()
            return self._error_event(buffered)

        try:
            parsed = json.loads(candidate)
        except ValueError:
            if is_incomplete_json(candidate):
                return Skip()
            log.warning("buffer_discarded", size=len(self._buffer), preview=candidate[:100])
            self.reset()
            return None

        log.info("buffered_message_parsed", size=len(candidate))
        self.reset()
        return self._extract(parsed)

    def _extract(self, parsed: Any) -> NormalizedEvent:
        choices = parsed.get("choices") if isinstance(parsed, dict) else None
        if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
            log.debug("chunk_without_choices", type=type(parsed).__name__)
            return Skip()
        first = choices[0]
        message = first["delta"] if "delta" in first else first.get("message")
        if not isinstance(message, dict):
            return Skip()
        return classify_message(message)


async def transform_stream(
    chunks: AsyncIterable[RawChunk],
    reassembler: Optional[StreamReassembler] = None,
) -> AsyncIterator[NormalizedEvent]:
    """Lazily map raw upstream chunks to normalized events.

    Single pass: ``Skip`` is never yielded and the sequence ends after the
    first ``DoneEvent``. A chunk that blows up the parser becomes an
    ``ErrorEvent``; errors raised by ``chunks`` itself propagate. The source is
    closed and any partial buffer dropped when iteration ends for any reason.
    """
    reassembler = reassembler or StreamReassembler()
    try:
        async for chunk in chunks:
            try:
                event = reassembler.feed(chunk)
            except Exception as exc:
                log.error("stream_chunk_failed", error=str(exc))
                reassembler.reset()
                event = ErrorEvent(message=f"Stream error: {exc}")

            if isinstance(event, Skip):
                continue
            yield event
            if isinstance(event, DoneEvent):
                return
    finally:
        reassembler.reset()
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
