"""Tests for configuration: defaults, env, TOML file and override precedence."""

from __future__ import annotations

import importlib
from pathlib import Path

import pytest
from pydantic import ValidationError

import larder.config
from larder.config import LarderConfig, load_config


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep the developer's LARDER_* variables and .env out of these tests."""
    for key in ("LARDER_DB_PATH", "LARDER_LOG_LEVEL", "LARDER_ENFORCE_FREEZE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


class TestLarderConfig:
    def test_defaults(self):
        config = LarderConfig()
        assert config.log_level == "INFO"
        assert config.db_path == Path(".larder/larder.db")
        assert config.enforce_freeze is False
        assert config.log_file is None

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LARDER_DB_PATH", "/srv/larder.db")
        monkeypatch.setenv("LARDER_ENFORCE_FREEZE", "true")
        config = LarderConfig()
        assert config.db_path == Path("/srv/larder.db")
        assert config.enforce_freeze is True

    def test_log_level_normalized(self):
        assert LarderConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            LarderConfig(log_level="chatty")

    def test_bad_environment_does_not_break_import(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LARDER_LOG_LEVEL", "chatty")
        module = importlib.reload(larder.config)
        assert not hasattr(module, "config")
        with pytest.raises(ValidationError):
            module.load_config()


class TestLoadConfig:
    def test_toml_file(self, tmp_path: Path):
        toml = tmp_path / "larder.toml"
        toml.write_text('db_path = "/from/toml.db"\nenforce_freeze = true\n')
        config = load_config(toml)
        assert config.db_path == Path("/from/toml.db")
        assert config.enforce_freeze is True
        assert isinstance(config, LarderConfig)

    def test_env_beats_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        toml = tmp_path / "larder.toml"
        toml.write_text('db_path = "/from/toml.db"\n')
        monkeypatch.setenv("LARDER_DB_PATH", "/from/env.db")
        assert load_config(toml).db_path == Path("/from/env.db")

    def test_overrides_beat_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LARDER_DB_PATH", "/from/env.db")
        config = load_config(None, db_path=Path("/from/cli.db"))
        assert config.db_path == Path("/from/cli.db")

    def test_none_overrides_ignored(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LARDER_LOG_LEVEL", "WARNING")
        assert load_config(None, log_level=None).log_level == "WARNING"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")
