"""
Linkcast — monetized short links and scheduled Facebook stories.
Main application entry point.
"""

import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from linkcast.api.redirect import router as redirect_router
from linkcast.api.links import router as links_router
from linkcast.api.accounts import router as accounts_router
from linkcast.api.stories import router as stories_router
from linkcast.api.dispatch import router as dispatch_router
from linkcast.core.dispatcher import dispatch_forever
from linkcast.core.publisher import close_publisher, get_publisher
from linkcast.middleware.security import SecurityHeadersMiddleware
from linkcast.models.database import dispose_engine, get_session_maker
from linkcast.config import get_settings

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("linkcast_starting", base_url=settings.base_url)

    dispatch_task = None
    if settings.dispatch_interval_seconds > 0:
        dispatch_task = asyncio.create_task(
            dispatch_forever(get_session_maker(), get_publisher(), settings.dispatch_interval_seconds)
        )

    yield

    if dispatch_task is not None:
        dispatch_task.cancel()
        with suppress(asyncio.CancelledError):
            await dispatch_task
    await close_publisher()
    await dispose_engine()
    logger.info("linkcast_shutting_down")


app = FastAPI(
    title="Linkcast",
    description="Monetized short links and scheduled Facebook stories.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

ALLOWED_ORIGINS = ["*"] if get_settings().debug else [get_settings().base_url]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
)

# --- Routes ---
app.include_router(redirect_router)
app.include_router(links_router)
app.include_router(accounts_router)
app.include_router(stories_router)
app.include_router(dispatch_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "linkcast", "version": VERSION}
