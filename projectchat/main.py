"""FastAPI application entrypoint."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from projectchat.api.routes import api_router
from projectchat.core.config import get_settings
from projectchat.core.database import close_db, get_session, init_db, ping
from projectchat.core.errors import register_exception_handlers
from projectchat.core.logging import configure_logging
from projectchat.models.base import iso_now
from projectchat.realtime.gateway import router as realtime_router
from projectchat.services.rate_limiter import get_socket_limiter, run_sweeper

SERVICE_NAME = "chat-service"
VERSION = "1.0.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_logging(settings.log_level)
    # Startup: ensure tables exist (use Alembic in production)
    await init_db()
    sweeper = asyncio.create_task(
        run_sweeper(get_socket_limiter(), settings.rate_limit_sweep_seconds)
    )
    logger.info(
        "Chat service started (auth: %s, projects: %s)",
        settings.auth_service_url, settings.db_service_url,
    )
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await close_db()


app = FastAPI(
    title="Project Chat",
    version=VERSION,
    description="Realtime project chat with membership-gated rooms",
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
)

register_exception_handlers(app)

# ── Routes ───────────────────────────────────────────────────
app.include_router(api_router)
app.include_router(realtime_router)


@app.get("/health", tags=["system"])
async def health_check(session: AsyncSession = Depends(get_session)) -> dict:
    return {
        "status": "ok",
        "timestamp": iso_now(),
        "service": SERVICE_NAME,
        "version": VERSION,
        "database": "connected" if await ping(session) else "disconnected",
    }
