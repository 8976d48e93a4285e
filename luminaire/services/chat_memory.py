"""Redis-backed chat memory – per-session append-only message logs.

Keys:
    chat:session:<session_id>  list of JSON-encoded ChatMessage, oldest first
    chat:user:<user_id>        set of session ids the user has spoken in

Both keys expire ``ttl_seconds`` after the last append (sliding window).
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, Union

import redis.asyncio as redis
import structlog

from luminaire.schemas.chat import ChatMessage, MessageRole

log = structlog.get_logger(__name__)

CHAT_SESSION_PREFIX = "chat:session:"
CHAT_USER_PREFIX = "chat:user:"
DEFAULT_TTL_SECONDS = 60 * 60 * 48


def session_key(session_id: str) -> str:
    return f"{CHAT_SESSION_PREFIX}{session_id}"


def user_key(user_id: str) -> str:
    return f"{CHAT_USER_PREFIX}{user_id}"


class ChatMemory:
    def __init__(self, client: redis.Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    async def store_message(
        self,
        *,
        session_id: str,
        role: Union[MessageRole, str],
        content: str,
        user_id: Optional[str] = None,
    ) -> ChatMessage:
        """Append one message to the session log and refresh expiry.

        All writes go out in a single MULTI/EXEC so concurrent appends to the
        same session never interleave.
        """
        message = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            user_id=user_id or None,
            role=MessageRole(role),
            content=content,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(session_key(session_id), message.model_dump_json())
            pipe.expire(session_key(session_id), self._ttl)
            if user_id:
                pipe.sadd(user_key(user_id), session_id)
                pipe.expire(user_key(user_id), self._ttl)
            await pipe.execute()

        log.debug("chat_message_stored", session_id=session_id, role=message.role.value)
        return message

    async def get_session_messages(self, session_id: str, limit: int = 10) -> list[ChatMessage]:
        """First ``limit`` messages of the session, oldest first."""
        if limit <= 0:
            return []
        raw = await self._redis.lrange(session_key(session_id), 0, limit - 1)
        return [ChatMessage.model_validate_json(item) for item in raw]

    async def get_formatted_messages(self, session_id: str, limit: int = 10) -> list[dict[str, str]]:
        """Last ``limit`` messages as ``{role, content}`` for the inference API.

        ``agent`` messages are sent as ``assistant``; the upstream role
        vocabulary has no agent role.
        """
        if limit <= 0:
            return []
        raw = await self._redis.lrange(session_key(session_id), -limit, -1)
        formatted = []
        for item in raw:
            message = ChatMessage.model_validate_json(item)
            role = MessageRole.assistant if message.role is MessageRole.agent else message.role
            formatted.append({"role": role.value, "content": message.content})
        return formatted

    async def get_user_messages(self, user_id: str, limit: int = 10) -> list[ChatMessage]:
        """Latest message of each of the user's sessions, newest first."""
        if limit <= 0:
            return []
        session_ids = await self._redis.smembers(user_key(user_id))
        latest: list[ChatMessage] = []
        for session_id in session_ids:
            raw = await self._redis.lrange(session_key(session_id), -1, -1)
            if raw:
                latest.append(ChatMessage.model_validate_json(raw[0]))
        latest.sort(key=lambda m: datetime.fromisoformat(m.timestamp), reverse=True)
        return latest[:limit]

    async def delete_session_messages(self, session_id: str) -> int:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.llen(session_key(session_id))
            pipe.delete(session_key(session_id))
            count, _ = await pipe.execute()
        log.info("chat_session_cleared", session_id=session_id, deleted=count)
        return int(count)
