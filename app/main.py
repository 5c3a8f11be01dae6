"""FastAPI application entrypoint."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import v1_router
from app.core.config import get_settings
from app.core.database import Database
from app.seed import seed_default_bots
from app.services.completion_relay import CompletionRelay


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()

    # Startup: process-wide handles shared by every request
    database = Database(settings.database_url)
    await database.create_all()  # use migrations in production
    if settings.seed_default_bots:
        await seed_default_bots(database)
    relay = CompletionRelay.from_settings(settings)

    app.state.database = database
    app.state.completion_relay = relay
    try:
        yield
    finally:
        await relay.aclose()
        await database.dispose()


app = FastAPI(
    title="OpenChatHub",
    version="0.1.0",
    description="Multi-model chat with streaming bot personas",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-Id"],
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
