"""Sync endpoints for tickit clients."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from tickit_sync import __version__
from tickit_sync.config import ServerConfig, TokenConfig
from tickit_sync.core.errors import InvariantViolation, StorageError
from tickit_sync.core.records import record_to_envelope
from tickit_sync.server.dependencies import (
    get_server_config,
    get_storage,
    get_sync_engine,
    require_token,
)
from tickit_sync.server.models import (
    DeviceResponse,
    StatusResponse,
    SyncRequest,
    SyncResponse,
)
from tickit_sync.storage.base import SyncStorage
from tickit_sync.sync.sync_engine import SyncEngine
from tickit_sync.utils.timeutils import ensure_utc, format_timestamp, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


@router.post("/sync", response_model=SyncResponse, summary="Push local changes, pull remote ones")
async def sync(
    body: SyncRequest,
    token: Annotated[TokenConfig, Depends(require_token)],
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    config: Annotated[ServerConfig, Depends(get_server_config)],
) -> dict[str, Any]:
    """Apply the device's changes and return everything it has not seen.

    Send the returned ``server_time`` as ``last_sync`` on the next call.
    Omitting ``last_sync`` requests a full sync.
    """
    limit = config.sync.max_changes_per_request
    if len(body.changes) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"Too many changes in one request (max {limit})",
        )

    last_sync = ensure_utc(body.last_sync) if body.last_sync is not None else None

    try:
        result = await engine.sync(
            body.device_id,
            last_sync,
            body.to_records(),
            device_name=body.device_name,
        )
    except InvariantViolation as e:
        logger.critical(
            "Invariant violated while syncing device %s (token %s)",
            body.device_id,
            token.name,
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Sync failed") from e
    except StorageError as e:
        logger.error("Sync failed for device %s", body.device_id, exc_info=True)
        raise HTTPException(status_code=500, detail="Sync failed") from e

    return {
        "server_time": format_timestamp(result.server_time),
        "changes": [record_to_envelope(change) for change in result.changes],
        "conflicts": result.conflicts,
        "rejected": [rejected.to_dict() for rejected in result.rejected],
    }


@router.get("/status", response_model=StatusResponse, summary="Record and device counts")
async def status(
    _token: Annotated[TokenConfig, Depends(require_token)],
    storage: Annotated[SyncStorage, Depends(get_storage)],
) -> dict[str, Any]:
    """Summary of the server's sync state."""
    return {
        "version": __version__,
        "server_time": format_timestamp(utcnow()),
        "stats": await storage.get_stats(),
    }


@router.get("/devices", response_model=list[DeviceResponse], summary="Device sync cursors")
async def devices(
    _token: Annotated[TokenConfig, Depends(require_token)],
    storage: Annotated[SyncStorage, Depends(get_storage)],
) -> list[dict[str, Any]]:
    return [
        {
            "device_id": device.device_id,
            "device_name": device.device_name,
            "last_sync": format_timestamp(device.last_sync),
            "registered_at": format_timestamp(device.registered_at),
        }
        for device in await storage.list_devices()
    ]
