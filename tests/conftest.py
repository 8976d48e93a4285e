"""Shared pytest fixtures for all test modules."""
from __future__ import annotations

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("INFERENCE_URL", "http://inference.test")
os.environ.setdefault("INFERENCE_KEY", "inference-key")
os.environ.setdefault("INFERENCE_MODEL_ID", "test-model")

import json
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis
from httpx import ASGITransport, AsyncClient

from luminaire.config import Settings, get_settings
from luminaire.dependencies import get_chat_memory, get_inference_client
from luminaire.main import app
from luminaire.services.chat_memory import ChatMemory
from luminaire.services.inference import InferenceClient
from tests.streams import agen, make_token, text_frame


# ── Settings ──────────────────────────────────────────────────────────────────
@pytest.fixture
def settings() -> Settings:
    return get_settings()


# ── Fake Redis ────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[aioredis.FakeRedis, None]:
    client = aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def memory(redis_client) -> ChatMemory:
    return ChatMemory(redis_client)


# ── Upstream inference stub ───────────────────────────────────────────────────
@pytest.fixture
def upstream() -> dict:
    """Mutable description of what the fake inference service answers."""
    return {"status": 200, "chunks": [text_frame("Hello!"), "data: [DONE]\n\n"], "requests": []}


@pytest.fixture
def mock_transport(upstream: dict) -> httpx.MockTransport:
    async def handler(request: httpx.Request) -> httpx.Response:
        upstream["requests"].append(json.loads(request.content))
        if upstream["status"] >= 400:
            return httpx.Response(upstream["status"], json={"error": "upstream failure"})
        body = agen(chunk.encode() for chunk in upstream["chunks"])
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    return httpx.MockTransport(handler)


# ── HTTP clients ──────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def client(
    memory: ChatMemory, settings: Settings, mock_transport: httpx.MockTransport
) -> AsyncGenerator[AsyncClient, None]:
    """API test client backed by fake Redis and a stubbed inference service."""
    app.dependency_overrides[get_chat_memory] = lambda: memory
    app.dependency_overrides[get_inference_client] = lambda: InferenceClient(
        settings, memory=memory, transport=mock_transport
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_client(client: AsyncClient) -> AsyncClient:
    """Test client carrying a valid bearer token for ``user-1``."""
    client.headers.update({"Authorization": f"Bearer {make_token()}"})
    return client
