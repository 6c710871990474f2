"""Tests for the TOML server configuration."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from tickit_sync.config import (
    CONFIG_ENV_VAR,
    ConfigError,
    ServerConfig,
    TokenConfig,
    get_config_path,
    validate_token_name,
)


class TestLoad:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "absent.toml"
        config = ServerConfig.load(path)

        assert config.path == path
        assert config.server.port == 3030
        assert config.server.bind == "0.0.0.0"
        assert config.sync.redelivery_window_seconds == 5.0
        assert config.sync.max_changes_per_request == 5000
        assert config.tokens == []

    def test_reads_all_sections(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text(
            """
[server]
bind = "127.0.0.1"
port = 8080

[database]
path = "/var/lib/tickit/sync.db"

[sync]
redelivery_window_seconds = 2.5
max_changes_per_request = 100

[logging]
level = "debug"

[[tokens]]
name = "laptop"
token_hash = "tks_plainlegacytoken"
""",
            encoding="utf-8",
        )

        config = ServerConfig.load(path)

        assert config.server.bind == "127.0.0.1"
        assert config.server.port == 8080
        assert config.database_path == Path("/var/lib/tickit/sync.db")
        assert config.sync.redelivery_window_seconds == 2.5
        assert config.sync.max_changes_per_request == 100
        assert config.logging.level == "DEBUG"
        assert config.tokens == [TokenConfig(name="laptop", token_hash="tks_plainlegacytoken")]

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("[server\nport = ", encoding="utf-8")
        with pytest.raises(ConfigError):
            ServerConfig.load(path)

    @pytest.mark.parametrize(
        "content",
        [
            "[server]\nport = 70000\n",
            '[server]\nport = "abc"\n',
            "[sync]\nredelivery_window_seconds = -1\n",
            "[sync]\nmax_changes_per_request = 0\n",
            '[logging]\nlevel = "LOUD"\n',
            '[[tokens]]\nname = "no-hash"\n',
        ],
    )
    def test_invalid_values(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "config.toml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            ServerConfig.load(path)

    def test_relative_database_path_follows_config(self, tmp_path: Path) -> None:
        config = ServerConfig(path=tmp_path / "conf" / "config.toml")
        config.database.path = "data/sync.sqlite"
        assert config.database_path == tmp_path / "conf" / "data" / "sync.sqlite"


class TestConfigPath:
    def test_env_var_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        target = tmp_path / "elsewhere.toml"
        monkeypatch.setenv(CONFIG_ENV_VAR, str(target))
        assert get_config_path() == target

    def test_local_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.toml").write_text("", encoding="utf-8")
        assert get_config_path() == Path("config.toml")


class TestTokens:
    def test_add_validate_revoke(self, tmp_path: Path) -> None:
        config = ServerConfig(path=tmp_path / "config.toml")

        token = config.add_token("laptop")

        entry = config.validate_token(token)
        assert entry is not None
        assert entry.name == "laptop"
        assert token not in entry.token_hash
        assert config.validate_token("tks_" + "z" * 32) is None

        assert config.revoke_token("laptop") is True
        assert config.revoke_token("laptop") is False
        assert config.validate_token(token) is None

    def test_duplicate_name(self, tmp_path: Path) -> None:
        config = ServerConfig(path=tmp_path / "config.toml")
        config.add_token("phone")
        with pytest.raises(ValueError, match="already exists"):
            config.add_token("phone")

    @pytest.mark.parametrize("name", ["", "   ", "bad\nname", 'quote"name', "x" * 65])
    def test_invalid_names(self, name: str) -> None:
        with pytest.raises(ValueError):
            validate_token_name(name)

    def test_name_is_stripped(self) -> None:
        assert validate_token_name("  work laptop ") == "work laptop"


class TestSave:
    def test_round_trip(self, tmp_path: Path) -> None:
        config = ServerConfig(path=tmp_path / "config.toml")
        config.server.port = 4000
        config.sync.redelivery_window_seconds = 1
        token = config.add_token("desktop")

        written = config.save()
        reloaded = ServerConfig.load(written)

        assert written == tmp_path / "config.toml"
        assert reloaded.to_dict() == config.to_dict()
        assert reloaded.validate_token(token) is not None

    def test_output_is_valid_toml(self, tmp_path: Path) -> None:
        config = ServerConfig()
        config.database.path = 'C:\\data\\"sync".db'
        path = config.save(tmp_path / "nested" / "config.toml")

        data = tomllib.loads(path.read_text(encoding="utf-8"))
        assert data["database"]["path"] == 'C:\\data\\"sync".db'
        assert config.path == path
        assert not list(path.parent.glob("*.tmp"))
