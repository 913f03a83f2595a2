"""Backup orchestration.

Snapshots the live note store into timestamped archives and enforces the
retention bound on each archive collection. Intended to be notified by the
note store after every successful mutation.

Backup layout:
    global:  backup/20250201_143000.tar.gz        (whole data/ tree)
    scoped:  backup/<scope>/20250201_143000.zip   (data/<scope>/ only)
             backup/20250201_143000.zip           (unscoped: whole data/ tree)

There is no locking around a backup. Two mutations racing on the same scope
may produce near-identical archives and interleaved retention passes; with a
single local user this is accepted, and a lost race only shows up as a
logged "not found" deletion failure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from notekeeper.backup.archive_writer import write_archive
from notekeeper.backup.backup_config import TIMESTAMP_FORMAT
from notekeeper.backup.retention_manager import enforce_retention, list_archives
from notekeeper.config import AppConfig

logger = logging.getLogger(__name__)

# Archives sharing a timestamp get _01, _02, ... which sort after the bare name
MAX_NAME_ATTEMPTS = 100

_RESERVED_SCOPE_NAMES = ("", ".", "..")


@dataclass
class BackupResult:
    scope: str | None
    success: bool
    stage: str
    archive_path: str | None = None
    pruned: list[str] = field(default_factory=list)
    prune_failures: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "success": self.success,
            "stage": self.stage,
            "archive": Path(self.archive_path).name if self.archive_path else None,
            "pruned": self.pruned,
            "prune_failures": self.prune_failures,
            "error": self.error,
        }


def _check_scope(scope: str | None):
    if scope is None:
        return
    if scope in _RESERVED_SCOPE_NAMES or "/" in scope or "\\" in scope:
        raise ValueError(f"Invalid scope name: {scope!r}")


class BackupManager:
    """High-level backup orchestrator.

    Usage::

        mgr = BackupManager(config)
        mgr.on_note_mutated("work")      # never raises
        result = mgr.backup("work")      # BackupResult, for callers that care
        mgr.get_archive_count("work")
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self._listeners = []

    def add_listener(self, callback):
        """Register ``callback(result)`` to run after every backup attempt."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def source_dir(self, scope: str | None = None) -> Path:
        """Live directory a backup of ``scope`` covers."""
        _check_scope(scope)
        if self.config.scoped and scope is not None:
            return self.config.data_root / scope
        return self.config.data_root

    def backup_dir(self, scope: str | None = None) -> Path:
        """Directory holding the archive collection of ``scope``."""
        _check_scope(scope)
        if self.config.scoped and scope is not None:
            return self.config.backup_root / scope
        return self.config.backup_root

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup(self, scope: str | None = None, timestamp: datetime | None = None) -> BackupResult:
        """Archive the current state of ``scope`` then enforce retention.

        Failures are reported in the returned result rather than raised.
        """
        try:
            source = self.source_dir(scope)
            backup_dir = self.backup_dir(scope)
            backup_dir.mkdir(parents=True, exist_ok=True)
        except (OSError, ValueError) as exc:
            logger.error("Error preparing backup directory for scope %r: %s", scope, exc)
            return self._finish(BackupResult(
                scope=scope, success=False, stage="prepare", error=str(exc),
            ))

        stamp = (timestamp or datetime.now()).strftime(TIMESTAMP_FORMAT)
        ext = self.config.archive_extension
        target = None
        try:
            for attempt in range(MAX_NAME_ATTEMPTS):
                name = stamp if attempt == 0 else f"{stamp}_{attempt:02d}"
                target = backup_dir / f"{name}{ext}"
                try:
                    write_archive(source, target, self.config.archive_format)
                    break
                except FileExistsError:
                    continue
            else:
                raise FileExistsError(f"No free archive name for {stamp} in {backup_dir}")
        except OSError as exc:
            logger.error("Error archiving %s to %s: %s", source, target, exc)
            if target is not None and target.exists():
                logger.warning("Partial archive left on disk: %s", target)
            return self._finish(BackupResult(
                scope=scope, success=False, stage="archive",
                archive_path=str(target) if target else None, error=str(exc),
            ))

        result = BackupResult(
            scope=scope, success=True, stage="retention", archive_path=str(target),
        )
        try:
            retention = enforce_retention(backup_dir, self.config.retention_limit, ext)
        except OSError as exc:
            logger.error("Error enforcing retention in %s: %s", backup_dir, exc)
            result.success = False
            result.error = str(exc)
            return self._finish(result)

        result.pruned = retention.pruned
        result.prune_failures = retention.failed
        logger.info("Backup of %s written to %s (pruned %d)",
                    source, target, retention.pruned_count)
        return self._finish(result)

    def _finish(self, result: BackupResult) -> BackupResult:
        for callback in self._listeners:
            try:
                callback(result)
            except Exception:
                logger.exception("Backup listener failed")
        return result

    def on_note_mutated(self, scope: str | None = None):
        """Back up ``scope`` after a note mutation; never raises."""
        try:
            result = self.backup(scope)
        except Exception:
            logger.exception("Unexpected error backing up scope %r", scope)
            return
        if not result.success:
            logger.warning("Backup of scope %r failed at %s: %s",
                           scope, result.stage, result.error)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_archives(self, scope: str | None = None) -> list[Path]:
        """Archives of ``scope``, oldest first."""
        return list_archives(self.backup_dir(scope), self.config.archive_extension)

    def get_archive_count(self, scope: str | None = None) -> int:
        return len(self.list_archives(scope))
