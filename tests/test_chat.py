"""Chat API routes – streaming completions and history."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

from httpx import AsyncClient
from slowapi import Limiter
from slowapi.util import get_remote_address

from luminaire.dependencies import get_chat_memory, get_inference_client
from luminaire.main import app
from luminaire.services.chat_memory import ChatMemory
from luminaire.services.inference import InferenceClient
from tests.streams import make_token, text_frame, tool_frame


def _sse_messages(body: str) -> list[tuple[str, dict]]:
    frames = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        frames.append((lines["event"], json.loads(lines["data"])))
    return frames


async def test_health(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_chat_requires_token(client: AsyncClient):
    r = await client.post("/api/chat", json={"question": "hi"})
    assert r.status_code == 401


async def test_chat_rejects_bad_token(client: AsyncClient):
    r = await client.post(
        "/api/chat",
        json={"question": "hi"},
        headers={"Authorization": f"Bearer {make_token(secret='wrong-secret')}"},
    )
    assert r.status_code == 401
    assert r.json()["detail"]["error"] == "JWT verification failed"


async def test_chat_validates_body(auth_client: AsyncClient):
    r = await auth_client.post("/api/chat", json={"sessionId": "s1"})
    assert r.status_code == 422


async def test_chat_sse_new_conversation(auth_client: AsyncClient, upstream: dict, memory: ChatMemory):
    upstream["chunks"] = [
        ":heartbeat",
        tool_frame("postgres_run_query", {"query": "SELECT 1"}),
        text_frame("You produced **25.4** kWh."),
        "event: done\ndata: {}\n\n",
    ]

    r = await auth_client.post("/api/chat", json={"question": "How much today?"})

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"
    frames = _sse_messages(r.text)
    session_id = frames[0][1]["sessionId"]
    assert frames[0][1]["role"] == "agent"
    assert frames[1] == (
        "message",
        {"role": "tool", "content": "Querying the database...", "tool": "postgres_run_query", "sessionId": session_id},
    )
    assert frames[2] == (
        "message",
        {"role": "assistant", "content": "You produced **25.4** kWh.", "sessionId": session_id},
    )
    assert frames[3] == ("done", {})

    history = await memory.get_session_messages(session_id, 10)
    assert [(m.role.value, m.content, m.user_id) for m in history] == [
        ("user", "How much today?", "user-1"),
        ("assistant", "You produced **25.4** kWh.", None),
    ]


async def test_chat_ndjson_existing_session(auth_client: AsyncClient, upstream: dict):
    upstream["chunks"] = [text_frame("Hello"), text_frame(" again"), "data: [DONE]\n\n"]

    r = await auth_client.post(
        "/api/chat",
        json={"question": "hi", "sessionId": "s-existing"},
        headers={"Accept": "application/x-ndjson"},
    )

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/x-ndjson")
    assert r.text == "Hello again\n"


async def test_chat_upstream_failure_is_streamed(auth_client: AsyncClient, upstream: dict):
    upstream["status"] = 500

    r = await auth_client.post(
        "/api/chat",
        json={"question": "hi", "sessionId": "s1"},
        headers={"Accept": "application/x-ndjson"},
    )

    assert r.status_code == 200
    assert json.loads(r.text) == {
        "role": "error",
        "content": "Error executing the chat completion, please try again",
        "sessionId": "s1",
    }


async def test_history_returns_messages(auth_client: AsyncClient, memory: ChatMemory):
    await memory.store_message(session_id="s1", user_id="user-1", role="user", content="hi")
    await memory.store_message(session_id="s1", role="assistant", content="hello")

    r = await auth_client.get("/api/chat/history", params={"sessionId": "s1", "limit": 1})

    assert r.status_code == 200
    [message] = r.json()
    assert message["session_id"] == "s1"
    assert message["user_id"] == "user-1"
    assert message["role"] == "user"
    assert message["content"] == "hi"
    assert {"id", "timestamp"} <= message.keys()


async def test_history_requires_session_id(auth_client: AsyncClient):
    r = await auth_client.get("/api/chat/history")
    assert r.status_code == 422


async def test_clear_history(auth_client: AsyncClient, memory: ChatMemory):
    for i in range(3):
        await memory.store_message(session_id="s1", role="user", content=f"m{i}")

    r = await auth_client.request("DELETE", "/api/chat/history", json={"sessionId": "s1"})

    assert r.status_code == 200
    assert r.json() == {"deleted": 3, "sessionId": "s1"}
    assert await memory.get_session_messages("s1", 10) == []


async def test_history_without_memory(auth_client: AsyncClient):
    app.dependency_overrides[get_chat_memory] = lambda: None

    r = await auth_client.get("/api/chat/history", params={"sessionId": "s1"})
    assert r.status_code == 500
    assert r.json()["detail"]["error"] == "Chat memory is not enabled"

    r = await auth_client.request("DELETE", "/api/chat/history", json={"sessionId": "s1"})
    assert r.status_code == 500


async def test_history_backend_failure(auth_client: AsyncClient, memory: ChatMemory, monkeypatch):
    async def broken(*args, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(memory, "get_session_messages", broken)

    r = await auth_client.get("/api/chat/history", params={"sessionId": "s1"})
    assert r.status_code == 500
    assert r.json()["detail"] == {"error": "Error retrieving chat history", "message": "redis down"}


def test_user_id_from_claims():
    from luminaire.auth import user_id_from_claims

    assert user_id_from_claims({"user": {"id": 42}}) == "42"
    assert user_id_from_claims({"sub": "abc"}) == "abc"
    assert user_id_from_claims({"user": {}, "sub": "abc"}) == "abc"
    assert user_id_from_claims({}) is None


async def test_chat_survives_memory_outage(auth_client: AsyncClient, upstream: dict, settings, mock_transport):
    broken = MagicMock(spec=ChatMemory)
    broken.store_message = AsyncMock(side_effect=ConnectionError("redis down"))
    app.dependency_overrides[get_chat_memory] = lambda: broken
    app.dependency_overrides[get_inference_client] = lambda: InferenceClient(
        settings, memory=broken, transport=mock_transport
    )

    r = await auth_client.post(
        "/api/chat",
        json={"question": "hi", "sessionId": "s1"},
        headers={"Accept": "application/x-ndjson"},
    )

    assert r.status_code == 200
    assert r.text == "Hello!\n"
    assert len(upstream["requests"]) == 1


async def test_rate_limit_is_enforced(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(app.state, "limiter", Limiter(key_func=get_remote_address, default_limits=["2/minute"]))

    statuses = [(await client.get("/health")).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
