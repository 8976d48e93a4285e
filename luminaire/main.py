"""Main FastAPI application."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from luminaire import __version__
from luminaire.config import get_settings
from luminaire.routers import chat

settings = get_settings()
log = structlog.get_logger(__name__)

# ── Rate limiter ──────────────────────────────────────────────────────────────
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", env=settings.app_env, memory=settings.enable_memory)
    app.state.redis = None
    if settings.enable_memory:
        client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
            log.info("redis_connected", url=settings.redis_url)
        except Exception as exc:
            # commands retry on use; chat keeps working if Redis comes up later
            log.error("redis_ping_failed", error=str(exc))
        app.state.redis = client

    yield

    if app.state.redis is not None:
        await app.state.redis.aclose()
    log.info("shutdown")


# ── App factory ───────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.app_title,
    version=__version__,
    docs_url="/api-docs" if settings.debug else None,
    redoc_url=None,
    lifespan=lifespan,
)

# ── Middleware ────────────────────────────────────────────────────────────────
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore
app.add_middleware(SlowAPIMiddleware)

# ── API routers ───────────────────────────────────────────────────────────────
app.include_router(chat.router)


# ── Health check ──────────────────────────────────────────────────────────────
@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok", "version": __version__}


# ── Logging config ────────────────────────────────────────────────────────────
structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
)
