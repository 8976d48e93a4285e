"""Output encodings for the chat response stream."""
from __future__ import annotations

from luminaire.schemas.chat import StreamMessage

NDJSON_MEDIA_TYPE = "application/x-ndjson"
SSE_MEDIA_TYPE = "text/event-stream"


class StreamFormatter:
    """Serializes stream messages for one response. Subclasses pick the framing."""

    media_type: str = ""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id

    def _stamp(self, message: StreamMessage) -> StreamMessage:
        if message.session_id:
            return message
        return message.model_copy(update={"session_id": self.session_id})

    def message(self, message: StreamMessage) -> str:
        raise NotImplementedError

    def assistant_text(self, content: str) -> str:
        raise NotImplementedError

    def end(self) -> str:
        raise NotImplementedError


class NdjsonFormatter(StreamFormatter):
    """One JSON object per line; assistant text is written through untouched."""

    media_type = NDJSON_MEDIA_TYPE

    def message(self, message: StreamMessage) -> str:
        return self._stamp(message).to_json() + "\n"

    def assistant_text(self, content: str) -> str:
        return content

    def end(self) -> str:
        return "\n"


class SseFormatter(StreamFormatter):
    media_type = SSE_MEDIA_TYPE

    def message(self, message: StreamMessage) -> str:
        return f"event: message\ndata: {self._stamp(message).to_json()}\n\n"

    def assistant_text(self, content: str) -> str:
        return self.message(StreamMessage(role="assistant", content=content))

    def end(self) -> str:
        return "event: done\ndata: {}\n\n"


def negotiate_formatter(accept: str | None, session_id: str) -> StreamFormatter:
    if accept and NDJSON_MEDIA_TYPE in accept.lower():
        return NdjsonFormatter(session_id)
    return SseFormatter(session_id)
