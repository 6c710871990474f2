"""Server configuration stored as TOML.

Lookup order for the config file:
1. TICKIT_SYNC_CONFIG environment variable
2. ./config.toml
3. /data/config.toml (container volume)
4. ~/.config/tickit-sync/config.toml

A missing file yields the defaults.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tickit_sync.tokens import generate_token, hash_token, verify_token

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TICKIT_SYNC_CONFIG"
CONTAINER_CONFIG_PATH = Path("/data/config.toml")

# Token names end up in the TOML file and in logs
_TOKEN_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\.@ ]+$")
_TOKEN_NAME_MAX_LEN = 64

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """The config file is unreadable or holds invalid values."""


def get_config_path() -> Path:
    """Resolve the config file path (the file need not exist)."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    local = Path("config.toml")
    if local.exists():
        return local

    if CONTAINER_CONFIG_PATH.exists():
        return CONTAINER_CONFIG_PATH

    return Path.home() / ".config" / "tickit-sync" / "config.toml"


def validate_token_name(name: str) -> str:
    """Return the stripped name, or raise ValueError if it is not allowed."""
    cleaned = name.strip()
    if not cleaned or len(cleaned) > _TOKEN_NAME_MAX_LEN:
        raise ValueError(f"Token name must be 1-{_TOKEN_NAME_MAX_LEN} characters")
    if not _TOKEN_NAME_PATTERN.match(cleaned):
        raise ValueError(
            "Token name may only contain letters, digits, spaces and _ - . @"
        )
    return cleaned


def _toml_str(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes.
    return json.dumps(value, ensure_ascii=False)


@dataclass
class ListenConfig:
    """HTTP listener settings ([server])."""

    bind: str = "0.0.0.0"
    port: int = 3030

    def to_dict(self) -> dict[str, Any]:
        return {"bind": self.bind, "port": self.port}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ListenConfig:
        port = int(data.get("port", 3030))
        if not 0 < port < 65536:
            raise ConfigError(f"Invalid port: {port}")
        return cls(bind=str(data.get("bind", "0.0.0.0")), port=port)


@dataclass
class DatabaseConfig:
    """SQLite database settings ([database])."""

    path: str = "tickit-sync.sqlite"

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseConfig:
        return cls(path=str(data.get("path", "tickit-sync.sqlite")))


@dataclass
class SyncSettings:
    """Sync engine settings ([sync])."""

    # Deltas start this many seconds before the device's cursor so that
    # writes racing the previous sync are delivered again, not lost.
    redelivery_window_seconds: float = 5.0
    max_changes_per_request: int = 5000

    def to_dict(self) -> dict[str, Any]:
        return {
            "redelivery_window_seconds": self.redelivery_window_seconds,
            "max_changes_per_request": self.max_changes_per_request,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        window = float(data.get("redelivery_window_seconds", 5.0))
        max_changes = int(data.get("max_changes_per_request", 5000))
        if window < 0:
            raise ConfigError("redelivery_window_seconds must be >= 0")
        if max_changes < 1:
            raise ConfigError("max_changes_per_request must be >= 1")
        return cls(redelivery_window_seconds=window, max_changes_per_request=max_changes)


@dataclass
class LoggingConfig:
    """Logging settings ([logging])."""

    level: str = "INFO"

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        level = str(data.get("level", "INFO")).upper()
        if level not in _LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {level}")
        return cls(level=level)


@dataclass(frozen=True)
class TokenConfig:
    """One accepted API token ([[tokens]])."""

    name: str
    # argon2 PHC hash, or the plain token for entries from older servers
    token_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "token_hash": self.token_hash}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenConfig:
        try:
            return cls(name=str(data["name"]), token_hash=str(data["token_hash"]))
        except KeyError as e:
            raise ConfigError(f"Token entry missing field: {e.args[0]}") from e


@dataclass
class ServerConfig:
    """Complete server configuration.

    ``path`` is where the config was loaded from (and where ``save()``
    writes); relative database paths are resolved against its directory.
    """

    server: ListenConfig = field(default_factory=ListenConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tokens: list[TokenConfig] = field(default_factory=list)
    path: Path | None = None

    @classmethod
    def load(cls, config_path: Path | None = None) -> ServerConfig:
        """Load configuration from file, or defaults if it does not exist.

        Raises:
            ConfigError: If the file is not valid TOML or holds invalid values
        """
        path = config_path if config_path is not None else get_config_path()
        if not path.exists():
            logger.debug("No config file at %s, using defaults", path)
            return cls(path=path)

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e

        try:
            return cls.from_dict(data, path=path)
        except ConfigError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config in {path}: {e}") from e

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> ServerConfig:
        return cls(
            server=ListenConfig.from_dict(data.get("server", {})),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            sync=SyncSettings.from_dict(data.get("sync", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
            tokens=[TokenConfig.from_dict(t) for t in data.get("tokens", [])],
            path=path,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "server": self.server.to_dict(),
            "database": self.database.to_dict(),
            "sync": self.sync.to_dict(),
            "logging": self.logging.to_dict(),
            "tokens": [t.to_dict() for t in self.tokens],
        }

    @property
    def database_path(self) -> Path:
        db_path = Path(self.database.path).expanduser()
        if db_path.is_absolute() or self.path is None:
            return db_path
        return self.path.parent / db_path

    # ========== Tokens ==========

    def validate_token(self, token: str) -> TokenConfig | None:
        """Return the entry matching a presented bearer token, if any."""
        for entry in self.tokens:
            if verify_token(token, entry.token_hash):
                return entry
        return None

    def add_token(self, name: str) -> str:
        """Create a token named ``name``; returns the plain token (shown once).

        Raises:
            ValueError: If the name is invalid or already used
        """
        cleaned = validate_token_name(name)
        if any(t.name == cleaned for t in self.tokens):
            raise ValueError(f"A token named {cleaned!r} already exists")
        token = generate_token()
        self.tokens.append(TokenConfig(name=cleaned, token_hash=hash_token(token)))
        return token

    def revoke_token(self, name: str) -> bool:
        """Remove the token named ``name``. Returns True if one was removed."""
        remaining = [t for t in self.tokens if t.name != name]
        removed = len(remaining) != len(self.tokens)
        self.tokens = remaining
        return removed

    # ========== Persistence ==========

    def to_toml(self) -> str:
        """Render the configuration as commented TOML."""
        lines = [
            "# tickit-sync configuration",
            "",
            "[server]",
            f"bind = {_toml_str(self.server.bind)}",
            f"port = {self.server.port}",
            "",
            "[database]",
            f"path = {_toml_str(self.database.path)}",
            "",
            "[sync]",
            f"redelivery_window_seconds = {float(self.sync.redelivery_window_seconds)}",
            f"max_changes_per_request = {self.sync.max_changes_per_request}",
            "",
            "[logging]",
            f"level = {_toml_str(self.logging.level)}",
        ]

        for entry in self.tokens:
            validate_token_name(entry.name)
            lines += [
                "",
                "[[tokens]]",
                f"name = {_toml_str(entry.name)}",
                f"token_hash = {_toml_str(entry.token_hash)}",
            ]

        lines += ["", "# Add tokens with: tickit-sync token --name <device-name>"]
        return "\n".join(lines) + "\n"

    def save(self, config_path: Path | None = None) -> Path:
        """Save configuration to TOML file (atomic write via temp+rename)."""
        path = config_path or self.path or get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        content = self.to_toml()
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".toml.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        self.path = path
        return path
