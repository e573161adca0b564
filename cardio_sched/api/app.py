"""FastAPI application for the provider schedule."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardio_sched import __version__
from cardio_sched.api.middleware import APIKeyMiddleware, RequestLoggingMiddleware
from cardio_sched.api.routes import assignments, availability, calendar, health, history, rooms, templates
from cardio_sched.config import get_settings
from cardio_sched.core.database import close_db, init_db
from cardio_sched.scheduling.conflicts import OverrideRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting cardio-sched API")

    settings = get_settings()
    if settings.is_sqlite:
        await init_db()

    logger.info("cardio-sched API started")

    yield

    logger.info("Shutting down cardio-sched API")
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="cardio-sched API",
        description="Provider scheduling: availability, PTO, rooms, templates and undo",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.override_registry = OverrideRegistry(
        ttl=timedelta(minutes=settings.override_ttl_minutes)
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    if settings.api_key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.api_key)

    app.include_router(health.router, tags=["health"])
    app.include_router(availability.router, prefix="/api/v1", tags=["availability"])
    app.include_router(assignments.router, prefix="/api/v1", tags=["assignments"])
    app.include_router(templates.router, prefix="/api/v1", tags=["templates"])
    app.include_router(rooms.router, prefix="/api/v1", tags=["rooms"])
    app.include_router(history.router, prefix="/api/v1", tags=["history"])
    app.include_router(calendar.router, prefix="/api/v1", tags=["calendar"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app
