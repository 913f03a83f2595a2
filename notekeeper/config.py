"""Application configuration.

Built once at startup from ``config/config.json`` and handed to every
component that needs paths or limits:

    {
        "storage": {"data_root": "...", "backup_root": "...", "layout": "global"},
        "backup": {"retention_limit": 50, "archive_format": null},
        "server": {"host": "127.0.0.1", "port": 8080, "open_browser": true},
        "watcher": {"enabled": false, "debounce_seconds": 2.0},
        "logging": {"level": "INFO"}
    }

Every key is optional; a missing file yields the defaults.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from notekeeper.backup.backup_config import (
    ARCHIVE_EXTENSIONS,
    DEFAULT_BACKUP_ROOT,
    DEFAULT_DATA_ROOT,
    LAYOUT_FORMATS,
    RETENTION_LIMIT,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = str(PROJECT_ROOT / "config" / "config.json")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _expand(path_str: str) -> Path:
    return Path(os.path.abspath(os.path.expanduser(os.path.expandvars(str(path_str)))))


@dataclass
class AppConfig:
    data_root: Path
    backup_root: Path
    layout: str = "global"
    retention_limit: int = RETENTION_LIMIT
    archive_format: str | None = None
    host: str = "127.0.0.1"
    port: int = 8080
    open_browser: bool = True
    watcher_enabled: bool = False
    watcher_debounce: float = 2.0
    log_level: str = "INFO"

    def __post_init__(self):
        self.data_root = _expand(self.data_root)
        self.backup_root = _expand(self.backup_root)
        if self.layout not in LAYOUT_FORMATS:
            raise ValueError(
                f"Unknown storage layout {self.layout!r} "
                f"(expected one of {sorted(LAYOUT_FORMATS)})"
            )
        if self.archive_format is None:
            self.archive_format = LAYOUT_FORMATS[self.layout]
        if self.archive_format not in ARCHIVE_EXTENSIONS:
            raise ValueError(f"Unsupported archive format {self.archive_format!r}")
        if int(self.retention_limit) < 1:
            raise ValueError("retention_limit must be at least 1")
        self.retention_limit = int(self.retention_limit)
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level {self.log_level!r}")
        self.log_level = self.log_level.upper()

    @property
    def scoped(self) -> bool:
        return self.layout == "scoped"

    @property
    def archive_extension(self) -> str:
        return ARCHIVE_EXTENSIONS[self.archive_format]

    def to_dict(self) -> dict:
        """JSON-shaped view, same nesting as the config file."""
        return {
            "storage": {
                "data_root": str(self.data_root),
                "backup_root": str(self.backup_root),
                "layout": self.layout,
            },
            "backup": {
                "retention_limit": self.retention_limit,
                "archive_format": self.archive_format,
            },
            "server": {
                "host": self.host,
                "port": self.port,
                "open_browser": self.open_browser,
            },
            "watcher": {
                "enabled": self.watcher_enabled,
                "debounce_seconds": self.watcher_debounce,
            },
            "logging": {"level": self.log_level},
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "AppConfig":
        storage = raw.get("storage", {})
        backup = raw.get("backup", {})
        server = raw.get("server", {})
        watcher = raw.get("watcher", {})
        return cls(
            data_root=storage.get("data_root", DEFAULT_DATA_ROOT),
            backup_root=storage.get("backup_root", DEFAULT_BACKUP_ROOT),
            layout=storage.get("layout", "global"),
            retention_limit=backup.get("retention_limit", RETENTION_LIMIT),
            archive_format=backup.get("archive_format"),
            host=server.get("host", "127.0.0.1"),
            port=int(server.get("port", 8080)),
            open_browser=bool(server.get("open_browser", True)),
            watcher_enabled=bool(watcher.get("enabled", False)),
            watcher_debounce=float(watcher.get("debounce_seconds", 2.0)),
            log_level=raw.get("logging", {}).get("level", "INFO"),
        )


def load_config(config_path: str = None) -> AppConfig:
    """Read the JSON config file, falling back to defaults if it is absent."""
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    raw = {}
    if path.is_file():
        with open(path) as f:
            raw = json.load(f)
        logger.debug("Loaded configuration from %s", path)
    else:
        logger.info("No config file at %s, using defaults", path)
    return AppConfig.from_dict(raw)
