"""Pytest configuration and fixtures."""

from __future__ import annotations

import pathlib
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from argon2 import PasswordHasher

from tickit_sync.config import ServerConfig, TokenConfig
from tickit_sync.storage.memory_store import InMemoryStorage
from tickit_sync.storage.sqlite_store import SQLiteStorage
from tickit_sync.sync.sync_engine import SyncEngine
from tickit_sync.tokens import hash_token

# Minimal argon2 cost keeps hashing fast in tests
TEST_HASHER = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
TEST_TOKEN = "tks_" + "a" * 32


@pytest_asyncio.fixture
async def memory_storage() -> AsyncGenerator[InMemoryStorage, None]:
    """Create an in-memory storage instance."""
    store = InMemoryStorage()
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sqlite_storage(tmp_path: pathlib.Path) -> AsyncGenerator[SQLiteStorage, None]:
    """Create an initialized SQLite storage in a temp directory."""
    store = SQLiteStorage(tmp_path / "sync.sqlite")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def any_storage(
    request: pytest.FixtureRequest, tmp_path: pathlib.Path
) -> AsyncGenerator[InMemoryStorage | SQLiteStorage, None]:
    """Run a test against every storage backend."""
    store: InMemoryStorage | SQLiteStorage
    if request.param == "memory":
        store = InMemoryStorage()
    else:
        store = SQLiteStorage(tmp_path / "sync.sqlite")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def engine(any_storage: InMemoryStorage | SQLiteStorage) -> SyncEngine:
    """Sync engine without a redelivery window, so deltas are exact."""
    return SyncEngine(any_storage, redelivery_window_seconds=0)


@pytest.fixture
def api_token() -> str:
    """Plain bearer token accepted by ``server_config``."""
    return TEST_TOKEN


@pytest.fixture
def server_config(tmp_path: pathlib.Path, api_token: str) -> ServerConfig:
    """Server config with one known token and a temp database path."""
    config = ServerConfig(path=tmp_path / "config.toml")
    config.database.path = "sync.sqlite"
    config.tokens.append(
        TokenConfig(name="test-device", token_hash=hash_token(api_token, TEST_HASHER))
    )
    return config
