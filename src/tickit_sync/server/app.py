"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from tickit_sync import __version__
from tickit_sync.config import ServerConfig
from tickit_sync.server import dependencies
from tickit_sync.server.models import HealthResponse
from tickit_sync.server.routes import sync_router
from tickit_sync.storage.base import SyncStorage
from tickit_sync.storage.sqlite_store import SQLiteStorage
from tickit_sync.sync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

SERVICE_NAME = "tickit-sync"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler: open storage on startup, close on shutdown."""
    storage: SyncStorage = app.state.storage
    await storage.initialize()
    config: ServerConfig = app.state.config
    if not config.tokens:
        logger.warning("No API tokens configured; every sync request will be rejected")
    yield
    await storage.close()


def create_app(
    config: ServerConfig | None = None,
    storage: SyncStorage | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Server configuration (default: loaded from the usual paths)
        storage: Storage backend (default: SQLite at the configured path)

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = ServerConfig.load()
    if storage is None:
        storage = SQLiteStorage(config.database_path)

    engine = SyncEngine(
        storage,
        redelivery_window_seconds=config.sync.redelivery_window_seconds,
    )

    app = FastAPI(
        title="tickit-sync",
        description="Self-hosted sync server for tickit",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.storage = storage
    app.state.engine = engine

    async def get_storage() -> SyncStorage:
        return storage

    async def get_server_config() -> ServerConfig:
        return config

    async def get_sync_engine() -> SyncEngine:
        return engine

    app.dependency_overrides[dependencies.get_storage] = get_storage
    app.dependency_overrides[dependencies.get_server_config] = get_server_config
    app.dependency_overrides[dependencies.get_sync_engine] = get_sync_engine

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(sync_router)
    app.include_router(api_v1)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint (no authentication)."""
        return HealthResponse(status="ok", service=SERVICE_NAME, version=__version__)

    return app
