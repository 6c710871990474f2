"""Shared dependencies for API routes."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from tickit_sync.config import ServerConfig, TokenConfig
from tickit_sync.storage.base import SyncStorage
from tickit_sync.sync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_storage() -> SyncStorage:
    """
    Dependency to get storage instance.

    This is overridden by the application at startup.
    """
    raise NotImplementedError("Storage not configured")


async def get_server_config() -> ServerConfig:
    """Dependency to get the server configuration (overridden by the app)."""
    raise NotImplementedError("Server config not configured")


async def get_sync_engine() -> SyncEngine:
    """Dependency to get the sync engine (overridden by the app)."""
    raise NotImplementedError("Sync engine not configured")


async def require_token(
    config: Annotated[ServerConfig, Depends(get_server_config)],
    authorization: Annotated[str | None, Header()] = None,
) -> TokenConfig:
    """Authenticate the request's bearer token against the configured tokens."""
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header",
            headers=_BEARER_CHALLENGE,
        )

    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header",
            headers=_BEARER_CHALLENGE,
        )

    entry = config.validate_token(token)
    if entry is None:
        logger.warning("Rejected request with invalid API token")
        raise HTTPException(status_code=401, detail="Invalid API token", headers=_BEARER_CHALLENGE)
    return entry
