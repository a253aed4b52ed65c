"""
FastAPI application for Launcher Publisher.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from .config import get_settings
from .db.base import init_database
from .logging_config import configure_logging
from .routes import router

logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("app_starting", environment=settings.environment)

    try:
        init_database()
        logger.info("database_initialized")
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise

    yield

    logger.info("app_stopped")


app = FastAPI(
    title=settings.app_name,
    description="Builds launcher profiles and publishes them to object storage",
    version=importlib.metadata.version("launcher-publisher"),
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("launcher-publisher")}
