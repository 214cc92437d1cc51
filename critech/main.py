"""
Critech — Main FastAPI Application

Video-first product reviews: uploads, provider callbacks, transcription,
review lifecycle and the public feed.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from critech.core.config import get_settings
from critech.core.database import init_db
from critech.core.errors import register_exception_handlers

settings = get_settings()

# ── Logging ──────────────────────────────────────────────────────────────

logging.basicConfig(level=logging.getLevelName(settings.log_level.upper()))

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
)

logger = structlog.get_logger()


# ── Lifespan ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    logger.info("Starting Critech", version=settings.app_version)
    await init_db()
    logger.info("Critech ready", api_prefix=settings.api_prefix)

    yield

    logger.info("Shutting down Critech")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Critech API",
    description="Video product reviews with transcription and market summaries",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ───────────────────────────────────────────────────────────────

from critech.api.routes import reviews, topics, videos  # noqa: E402

app.include_router(videos.router, prefix=settings.api_prefix)
app.include_router(reviews.router, prefix=settings.api_prefix)
app.include_router(topics.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": "Critech API",
        "version": settings.app_version,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}
