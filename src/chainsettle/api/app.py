"""FastAPI application configuration."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry, make_asgi_app, multiprocess

from ..env import get_settings
from ..infrastructure.database import get_database_client
from ..infrastructure.payment_repository_impl import register_ledger_scripts
from .dependencies import get_key_value_store, shutdown_components
from .routers import chains, payments, sweeps

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    db_client = get_database_client(settings)
    await register_ledger_scripts(get_key_value_store(db_client))
    logger.info("Ledger scripts registered on %s", settings.database_url)
    yield
    await shutdown_components()
    await db_client.close()


def _metrics_app():
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return make_asgi_app(registry=registry)
    return make_asgi_app()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="On-chain payment verification and settlement API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(sweeps.router, prefix="/api/v1")
    app.include_router(chains.router, prefix="/api/v1")
    app.mount("/metrics", _metrics_app())

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.app_name} API",
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    return app


app = create_app()
