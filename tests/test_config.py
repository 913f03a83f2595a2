"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from notekeeper.backup.backup_config import RETENTION_LIMIT
from notekeeper.config import AppConfig, load_config


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.json"))
        assert config.layout == "global"
        assert config.retention_limit == RETENTION_LIMIT == 50
        assert config.archive_format == "tar.gz"
        assert config.archive_extension == ".tar.gz"
        assert config.data_root == Path.home() / ".notekeeper" / "data"
        assert config.port == 8080
        assert config.watcher_enabled is False

    def test_values_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "storage": {
                "data_root": str(tmp_path / "d"),
                "backup_root": str(tmp_path / "b"),
                "layout": "scoped",
            },
            "backup": {"retention_limit": 5},
            "server": {"port": 9000, "open_browser": False},
            "watcher": {"enabled": True, "debounce_seconds": 0.5},
            "logging": {"level": "debug"},
        }))
        config = load_config(str(path))
        assert config.data_root == tmp_path / "d"
        assert config.scoped is True
        assert config.archive_format == "zip"
        assert config.retention_limit == 5
        assert config.port == 9000
        assert config.open_browser is False
        assert config.watcher_enabled is True
        assert config.watcher_debounce == 0.5
        assert config.log_level == "DEBUG"

    def test_format_override(self, tmp_path):
        config = AppConfig.from_dict({
            "storage": {"data_root": str(tmp_path), "backup_root": str(tmp_path),
                        "layout": "scoped"},
            "backup": {"archive_format": "tar.gz"},
        })
        assert config.archive_extension == ".tar.gz"

    def test_env_and_home_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NOTES_HOME", str(tmp_path))
        config = AppConfig(data_root="$NOTES_HOME/data", backup_root="~/b")
        assert config.data_root == tmp_path / "data"
        assert config.backup_root == Path.home() / "b"

    def test_round_trip_dict(self, tmp_path):
        config = AppConfig(data_root=tmp_path / "d", backup_root=tmp_path / "b",
                           layout="scoped")
        again = AppConfig.from_dict(config.to_dict())
        assert again == config


class TestValidation:
    def test_bad_layout(self, tmp_path):
        with pytest.raises(ValueError, match="layout"):
            AppConfig(data_root=tmp_path, backup_root=tmp_path, layout="flat")

    def test_bad_format(self, tmp_path):
        with pytest.raises(ValueError, match="archive format"):
            AppConfig(data_root=tmp_path, backup_root=tmp_path, archive_format="rar")

    def test_bad_limit(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(data_root=tmp_path, backup_root=tmp_path, retention_limit=0)

    def test_bad_log_level(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig(data_root=tmp_path, backup_root=tmp_path, log_level="LOUD")
