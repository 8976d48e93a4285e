"""Helpers for building fake upstream streams in tests."""
from __future__ import annotations

import json
from typing import Iterable

import jwt


def make_token(user_id: str = "user-1", secret: str = "test-secret") -> str:
    return jwt.encode({"user": {"id": user_id}}, secret, algorithm="HS256")


def sse_frame(delta: dict, event: str = "message") -> str:
    """One upstream SSE frame carrying ``choices[0].delta``."""
    return f"event: {event}\ndata: {json.dumps({'choices': [{'delta': delta}]})}\n\n"


def text_frame(content: str, role: str = "assistant") -> str:
    return sse_frame({"role": role, "content": content})


def tool_frame(name: str, arguments: dict | str) -> str:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return sse_frame(
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": name, "arguments": arguments}}
            ],
        }
    )


async def agen(items: Iterable):
    for item in items:
        yield item


async def collect(stream) -> list:
    return [item async for item in stream]
