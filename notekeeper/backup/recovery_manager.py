"""Restoration from note archives.

Supports:
- Integrity verification (every member must decompress)
- Restoring a scope's live directory from one of its archives
"""

import logging
import os
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from notekeeper.backup.archive_writer import archive_format_for
from notekeeper.backup.backup_manager import BackupManager

logger = logging.getLogger(__name__)

_CHUNK = 65536


@dataclass
class RestoreResult:
    archive: str
    target_dir: str
    success: bool
    integrity_ok: bool | None  # None if the archive was never read
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "archive": self.archive,
            "target_dir": self.target_dir,
            "success": self.success,
            "integrity_ok": self.integrity_ok,
            "error": self.error,
        }


def verify_archive(path) -> bool:
    """Return True if every member of the archive can be read back."""
    fmt = archive_format_for(path)
    try:
        if fmt == "tar.gz":
            with tarfile.open(path, "r:gz") as tar:
                for member in tar:
                    if member.isfile():
                        f = tar.extractfile(member)
                        while f.read(_CHUNK):
                            pass
            return True
        if fmt == "zip":
            with zipfile.ZipFile(path) as zf:
                return zf.testzip() is None
    except (OSError, EOFError, zlib.error, tarfile.TarError, zipfile.BadZipFile) as exc:
        logger.warning("Archive %s failed verification: %s", path, exc)
        return False
    return False


def _member_roots(names) -> set[str]:
    roots = set()
    for name in names:
        parts = PurePosixPath(name).parts
        if not parts or parts[0] in ("/", "..") or ".." in parts:
            raise ValueError(f"Unsafe archive member: {name}")
        roots.add(parts[0])
    return roots


def _extract(path: Path, dest: Path) -> set[str]:
    """Extract into dest and return the set of top-level entry names."""
    if archive_format_for(path) == "zip":
        with zipfile.ZipFile(path) as zf:
            roots = _member_roots(zf.namelist())
            zf.extractall(dest)
        return roots
    with tarfile.open(path, "r:gz") as tar:
        roots = _member_roots(tar.getnames())
        tar.extractall(dest, filter="data")
    return roots


class RecoveryManager:
    """Restores scope directories from the archive collections."""

    def __init__(self, backup_manager: BackupManager):
        self.backups = backup_manager

    def find_archive(self, name: str, scope: str | None = None) -> Path | None:
        for path in self.backups.list_archives(scope):
            if path.name == name:
                return path
        return None

    def restore_archive(self, name: str, scope: str | None = None) -> RestoreResult:
        """Replace the live directory of ``scope`` with the archive's tree.

        The archive is verified and staged first; the live directory is only
        touched once the staged tree is known to be complete.
        """
        target_dir = self.backups.source_dir(scope)
        path = self.find_archive(name, scope)
        if path is None:
            return RestoreResult(
                archive=name, target_dir=str(target_dir),
                success=False, integrity_ok=None,
                error=f"Archive {name} not found",
            )

        if not verify_archive(path):
            return RestoreResult(
                archive=name, target_dir=str(target_dir),
                success=False, integrity_ok=False,
                error="Integrity check failed: archive unreadable",
            )

        target_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".restore-", dir=target_dir.parent))
        try:
            roots = _extract(path, staging)
            if roots != {target_dir.name}:
                return RestoreResult(
                    archive=name, target_dir=str(target_dir),
                    success=False, integrity_ok=True,
                    error=f"Archive root {sorted(roots)} does not match {target_dir.name}",
                )
            self._swap_in(staging / target_dir.name, target_dir)
        except (OSError, EOFError, ValueError, zlib.error,
                tarfile.TarError, zipfile.BadZipFile) as exc:
            logger.error("Error restoring %s into %s: %s", path, target_dir, exc)
            return RestoreResult(
                archive=name, target_dir=str(target_dir),
                success=False, integrity_ok=True, error=str(exc),
            )
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info("Restored %s from %s", target_dir, path)
        self.backups.on_note_mutated(scope)
        return RestoreResult(
            archive=name, target_dir=str(target_dir),
            success=True, integrity_ok=True,
        )

    @staticmethod
    def _swap_in(restored: Path, target_dir: Path):
        aside = None
        if target_dir.exists():
            aside = target_dir.with_name(f".{target_dir.name}.replaced")
            if aside.exists():
                shutil.rmtree(aside)
            os.rename(target_dir, aside)
        try:
            os.rename(restored, target_dir)
        except OSError:
            if aside is not None:
                os.rename(aside, target_dir)
            raise
        if aside is not None:
            shutil.rmtree(aside, ignore_errors=True)
