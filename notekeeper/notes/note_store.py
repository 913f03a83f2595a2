"""Plain-text note storage.

Each note is ``<data_root>/[<scope>/]<title>.txt``. Every successful
mutation notifies the listener (normally the BackupManager) with the
affected scope; the listener's outcome never changes the mutation's.
"""

import logging
import os
from pathlib import Path

from notekeeper.backup.backup_config import NOTE_EXTENSION
from notekeeper.config import AppConfig

logger = logging.getLogger(__name__)

INVALID_NAME_CHARS = set('/\\:*?"<>|')


class NoteError(Exception):
    """Base class for note store errors."""


class InvalidTitleError(NoteError):
    pass


class NoteExistsError(NoteError):
    pass


class NoteNotFoundError(NoteError):
    pass


def check_name(name: str, kind: str = "title") -> str:
    """Return the trimmed name, or raise InvalidTitleError."""
    name = (name or "").strip()
    if not name or name in (".", "..") or INVALID_NAME_CHARS & set(name):
        raise InvalidTitleError(f"Invalid note {kind}: {name!r}")
    return name


def _read_body(path: Path) -> str:
    # Bodies are stored and returned byte for byte, line endings included
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


class NoteStore:
    """CRUD over the note files of one data root."""

    def __init__(self, config: AppConfig, listener=None):
        self.config = config
        self.listener = listener

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def scope_dir(self, scope: str | None = None) -> Path:
        if scope is None:
            return self.config.data_root
        return self.config.data_root / check_name(scope, "scope")

    def note_path(self, title: str, scope: str | None = None) -> Path:
        return self.scope_dir(scope) / f"{check_name(title)}{NOTE_EXTENSION}"

    def _notify(self, scope: str | None):
        if self.listener is None:
            return
        try:
            self.listener.on_note_mutated(scope)
        except Exception:
            logger.exception("Mutation listener failed for scope %r", scope)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_scopes(self) -> list[str]:
        root = self.config.data_root
        if not root.is_dir():
            return []
        return sorted(
            p.name for p in root.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )

    def _note_files(self, scope: str | None) -> list[Path]:
        directory = self.scope_dir(scope)
        if not directory.is_dir():
            return []
        return sorted(directory.glob(f"*{NOTE_EXTENSION}"))

    def list_notes(self, scope: str | None = None) -> list[str]:
        notes = [p.name[: -len(NOTE_EXTENSION)] for p in self._note_files(scope)]
        logger.debug("Found notes in scope %r: %s", scope, notes)
        return notes

    def read_note(self, title: str, scope: str | None = None) -> str:
        path = self.note_path(title, scope)
        try:
            return _read_body(path)
        except FileNotFoundError:
            raise NoteNotFoundError(f"Note {title!r} not found") from None

    def search(self, query: str, scope: str | None = None) -> list[str]:
        """Titles of notes whose body contains ``query``."""
        results = []
        for path in self._note_files(scope):
            try:
                content = _read_body(path)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Error reading %s during search: %s", path, exc)
                continue
            if query in content:
                results.append(path.name[: -len(NOTE_EXTENSION)])
        logger.debug("Search %r in scope %r: %s", query, scope, results)
        return results

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_note(self, title: str, body: str, scope: str | None = None) -> Path:
        path = self.note_path(title, scope)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "x", encoding="utf-8", newline="") as f:
                f.write(body)
        except FileExistsError:
            raise NoteExistsError(f"Note {path.stem!r} already exists") from None
        logger.info("Created note %s", path)
        self._notify(scope)
        return path

    def edit_note(self, old_title: str, new_title: str, body: str,
                  scope: str | None = None) -> Path:
        """Update a note's body, renaming it when the title changes."""
        old_path = self.note_path(old_title, scope)
        new_path = self.note_path(new_title, scope)

        if old_path == new_path:
            if not old_path.is_file():
                raise NoteNotFoundError(f"Note {old_path.stem!r} not found")
            old_path.write_text(body, encoding="utf-8", newline="")
            logger.info("Edited note %s", old_path)
            self._notify(scope)
            return old_path

        if not old_path.is_file():
            raise NoteNotFoundError(f"Note {old_path.stem!r} not found")
        try:
            with open(new_path, "x", encoding="utf-8", newline="") as f:
                f.write(body)
        except FileExistsError:
            raise NoteExistsError(f"Note {new_path.stem!r} already exists") from None

        try:
            os.remove(old_path)
        except OSError as exc:
            logger.error("Error deleting old note file %s: %s", old_path, exc)

        logger.info("Renamed note %s -> %s", old_path, new_path)
        self._notify(scope)
        return new_path

    def delete_note(self, title: str, scope: str | None = None):
        path = self.note_path(title, scope)
        try:
            os.remove(path)
        except FileNotFoundError:
            raise NoteNotFoundError(f"Note {title!r} not found") from None
        logger.info("Deleted note %s", path)
        self._notify(scope)

    def delete_all(self, scope: str | None = None) -> int:
        """Delete every note of ``scope``; stops at the first failure."""
        files = self._note_files(scope)
        for path in files:
            os.remove(path)
        logger.info("Deleted all %d notes in scope %r", len(files), scope)
        self._notify(scope)
        return len(files)
