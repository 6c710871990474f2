"""Command line interface for tickit-sync."""

from tickit_sync.cli.main import app

__all__ = ["app"]
