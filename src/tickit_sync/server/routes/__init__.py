"""API routes for the tickit-sync server."""

from tickit_sync.server.routes.sync import router as sync_router

__all__ = ["sync_router"]
