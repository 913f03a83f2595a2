"""Count-based retention for archive collections.

Archive names begin with a fixed-width ``YYYYMMDD_HHMMSS`` timestamp, so
lexicographic order is chronological order and the oldest archives are
simply the first names after sorting.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class RetentionResult:
    archive_dir: str
    kept: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def pruned_count(self) -> int:
        return len(self.pruned)


def list_archives(archive_dir, extension: str) -> list[Path]:
    """Return archive files directly inside archive_dir, oldest first.

    A missing directory has no archives.
    """
    archive_dir = Path(archive_dir)
    try:
        names = os.listdir(archive_dir)
    except FileNotFoundError:
        return []
    return [
        archive_dir / name
        for name in sorted(names)
        if name.endswith(extension) and (archive_dir / name).is_file()
    ]


def count_archives(archive_dir, extension: str) -> int:
    return len(list_archives(archive_dir, extension))


def enforce_retention(archive_dir, limit: int, extension: str) -> RetentionResult:
    """Delete the oldest archives so that at most ``limit`` remain.

    Individual deletion failures are logged and skipped; the collection is
    then left over the limit until the next pass. Listing errors other than
    a missing directory propagate.
    """
    if limit < 0:
        raise ValueError("limit must be non-negative")

    archives = list_archives(archive_dir, extension)
    result = RetentionResult(archive_dir=str(archive_dir))

    excess = len(archives) - limit
    if excess <= 0:
        result.kept = [p.name for p in archives]
        return result

    result.kept = [p.name for p in archives[excess:]]
    for path in archives[:excess]:
        try:
            os.remove(path)
        except OSError as exc:
            logger.error("Error removing old archive %s: %s", path, exc)
            result.failed.append(path.name)
        else:
            logger.info("Removed old archive %s", path)
            result.pruned.append(path.name)

    return result
