"""FastAPI application entrypoint."""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import api_router
from app.core.config import get_settings
from app.core.database import init_db
from app.core.errors import AppError, app_error_handler
from app.core.logging import setup_logging
from app.core.redis import close_redis
from app.core.tenancy import bind_request_id, unbind_request_id

_settings = get_settings()
setup_logging(_settings.log_level)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist
    await init_db()
    yield
    await close_redis()


app = FastAPI(
    title="Chat Core",
    version="0.1.0",
    description="Multi-tenant messaging core: tenants, SSO federation, sessions, unread counters",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request id ───────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    token = bind_request_id(request_id[:64])
    try:
        response = await call_next(request)
    finally:
        unbind_request_id(token)
    response.headers["X-Request-ID"] = request_id[:64]
    return response


# ── Errors + routes ──────────────────────────────────────────
app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
app.include_router(api_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
