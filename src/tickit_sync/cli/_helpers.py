"""Shared CLI helpers for configuration, logging, and async commands."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import typer

from tickit_sync.config import ConfigError, ServerConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOG_LEVEL_ENV_VAR = "TICKIT_SYNC_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command.

    Yields once after the command so pending aiosqlite callbacks drain
    before ``asyncio.run()`` tears down the loop.
    """

    async def _with_drain() -> T:
        try:
            return await coro
        finally:
            await asyncio.sleep(0)

    return asyncio.run(_with_drain())


def load_config(config_path: Path | None) -> ServerConfig:
    """Load the server config for a command, exiting with a message on errors."""
    try:
        return ServerConfig.load(config_path)
    except ConfigError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e


def configure_logging(level: str) -> None:
    """Route log records to stderr at ``level`` (env override wins)."""
    effective = os.environ.get(LOG_LEVEL_ENV_VAR, level).upper()
    numeric = logging.getLevelName(effective)
    if not isinstance(numeric, int):
        logger.warning("Unknown log level %r, using INFO", effective)
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT, stream=sys.stderr, force=True)
