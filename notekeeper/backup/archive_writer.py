"""Directory tree serialization into a single compressed archive.

Entry names are relative to the *parent* of the source directory, so the
archive root is the source directory's own name:

    data/                     data.tar.gz
    +-- todo.txt        ->    data/
    +-- work/                 data/todo.txt
        +-- plan.txt          data/work/
                              data/work/plan.txt

Restoring an archive into the parent of the live directory reproduces the
exact tree.
"""

import logging
import os
import tarfile
import zipfile
from pathlib import Path

from notekeeper.backup.backup_config import ARCHIVE_EXTENSIONS

logger = logging.getLogger(__name__)


def iter_tree(source_dir: Path):
    """Yield ``(path, arcname, is_dir)`` for every entry under source_dir.

    The root directory comes first; siblings are visited in name order so
    two archives of the same tree list their members identically.
    """
    source_dir = Path(source_dir)
    base = source_dir.parent

    def walk_error(exc):
        raise exc

    for current, dirs, files in os.walk(source_dir, onerror=walk_error):
        dirs.sort()
        current = Path(current)
        yield current, current.relative_to(base).as_posix(), True
        for name in sorted(files):
            path = current / name
            yield path, path.relative_to(base).as_posix(), False


def _discard(fp):
    """Empty a half-written archive so it can never pass verification."""
    fp.seek(0)
    fp.truncate()


def _write_tar(source_dir: Path, target: Path) -> int:
    count = 0
    with open(target, "xb") as fp:
        try:
            with tarfile.open(fileobj=fp, mode="w:gz", dereference=True) as tar:
                for path, arcname, _ in iter_tree(source_dir):
                    tar.add(str(path), arcname=arcname, recursive=False)
                    count += 1
        except BaseException:
            _discard(fp)
            raise
    return count


def _write_zip(source_dir: Path, target: Path) -> int:
    count = 0
    with open(target, "xb") as fp:
        try:
            # ZipFile.close writes a valid central directory even after an error
            with zipfile.ZipFile(fp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                # ZipInfo.from_file marks directories with a trailing slash
                for path, arcname, _ in iter_tree(source_dir):
                    zf.write(str(path), arcname)
                    count += 1
        except BaseException:
            _discard(fp)
            raise
    return count


_WRITERS = {
    "tar.gz": _write_tar,
    "zip": _write_zip,
}


def archive_format_for(path) -> str | None:
    """Return the archive format matching a file name, or None."""
    name = os.path.basename(str(path))
    for fmt, ext in ARCHIVE_EXTENSIONS.items():
        if name.endswith(ext):
            return fmt
    return None


def write_archive(source_dir, target_archive, archive_format: str = "tar.gz") -> Path:
    """Write source_dir into a new archive at target_archive.

    Raises FileExistsError if the target already exists, NotADirectoryError
    or FileNotFoundError if the source is not a directory, and any other
    OSError raised while reading or writing. On failure the target is left
    behind empty, so it fails verification.
    """
    if archive_format not in _WRITERS:
        raise ValueError(f"Unsupported archive format: {archive_format}")

    source_dir = Path(source_dir).absolute()
    target = Path(target_archive)

    if not source_dir.exists():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")
    if not source_dir.is_dir():
        raise NotADirectoryError(f"Source is not a directory: {source_dir}")

    target.parent.mkdir(parents=True, exist_ok=True)

    entries = _WRITERS[archive_format](source_dir, target)
    logger.debug("Wrote %d entries from %s to %s", entries, source_dir, target)
    return target
