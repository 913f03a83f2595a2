"""Backs up notes edited outside the web interface, using watchdog.

Note files changed by another editor never pass through the NoteStore, so
nothing would archive them. The watcher maps each ``.txt`` event under the
data root to its scope and, once a scope has been quiet for the debounce
window, notifies the mutation listener once for the whole burst.

Edits made through the web interface are seen here too; the debounce keeps
that to at most one extra archive per burst.
"""

import logging
import os
import threading
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from notekeeper.backup.backup_config import NOTE_EXTENSION
from notekeeper.config import AppConfig

logger = logging.getLogger(__name__)


class NoteChangeHandler(FileSystemEventHandler):
    """Watchdog handler that coalesces note file events per scope."""

    def __init__(self, data_root, listener, debounce_seconds: float = 2.0):
        super().__init__()
        self.data_root = Path(os.path.abspath(data_root))
        self.listener = listener
        self.debounce_seconds = debounce_seconds
        self._timers: dict[str | None, threading.Timer] = {}
        self._lock = threading.Lock()

    def scope_for(self, path: str):
        """Return ``(matched, scope)`` for a file path under the data root."""
        try:
            rel = Path(os.path.abspath(path)).relative_to(self.data_root)
        except ValueError:
            return False, None
        parts = rel.parts
        if not parts or not parts[-1].endswith(NOTE_EXTENSION):
            return False, None
        if any(p.startswith(".") for p in parts):
            return False, None
        if len(parts) == 1:
            return True, None
        if len(parts) == 2:
            return True, parts[0]
        return False, None

    def _schedule(self, scope: str | None):
        with self._lock:
            pending = self._timers.pop(scope, None)
            if pending is not None:
                pending.cancel()
            timer = threading.Timer(self.debounce_seconds, self._fire, args=(scope,))
            timer.daemon = True
            self._timers[scope] = timer
            timer.start()

    def _fire(self, scope: str | None):
        with self._lock:
            self._timers.pop(scope, None)
        logger.info("External change detected in scope %r, backing up", scope)
        try:
            self.listener.on_note_mutated(scope)
        except Exception:
            logger.exception("Mutation listener failed for scope %r", scope)

    def _handle(self, *paths):
        for path in paths:
            matched, scope = self.scope_for(path)
            if matched:
                self._schedule(scope)

    def on_created(self, event):
        if not event.is_directory:
            self._handle(event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._handle(event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._handle(event.src_path, event.dest_path)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def flush(self):
        """Fire every pending notification now."""
        with self._lock:
            timers = list(self._timers.items())
            self._timers.clear()
        for scope, timer in timers:
            timer.cancel()
            self._fire(scope)

    def cancel(self):
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()


class ExternalEditWatcher:
    """Runs a watchdog observer over the data root."""

    def __init__(self, config: AppConfig, listener):
        self.config = config
        self.handler = NoteChangeHandler(
            data_root=config.data_root,
            listener=listener,
            debounce_seconds=config.watcher_debounce,
        )
        self.observer = Observer()
        self._running = False

    def start(self):
        data_root = self.config.data_root
        data_root.mkdir(parents=True, exist_ok=True)
        self.observer.schedule(self.handler, str(data_root), recursive=True)
        self.observer.start()
        self._running = True
        logger.info("Watching %s for external edits", data_root)

    def stop(self):
        """Stop observing; pending notifications are delivered first."""
        if self._running:
            self.observer.stop()
            self.observer.join()
            self.handler.flush()
            self._running = False
            logger.info("External edit watcher stopped.")
