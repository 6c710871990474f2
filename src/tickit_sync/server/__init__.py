"""HTTP API server for tickit-sync."""

from tickit_sync.server.app import create_app

__all__ = ["create_app"]
