"""Flask application for the note-taking web interface.

Serves the note pages, the backup API and the live update socket:

    GET  /            GET  /view/<title>   POST /create   POST /edit
    GET  /delete/<t>  POST /delete-all     GET  /search   GET  /backup-count
    GET  /api/status  GET  /api/backups    POST /api/restore
    GET  /api/config
    WS   /ws/live
"""

import logging
from pathlib import Path

from flask import Flask
from flask_sock import Sock

from notekeeper.backup.backup_manager import BackupManager
from notekeeper.backup.recovery_manager import RecoveryManager
from notekeeper.config import AppConfig, load_config
from notekeeper.notes.note_store import NoteStore
from notekeeper.web.api.routes import api, init_routes, pages
from notekeeper.web.websocket_handler import LiveFeed

logger = logging.getLogger(__name__)


def create_app(
    config: AppConfig = None,
    note_store: NoteStore = None,
    backup_manager: BackupManager = None,
) -> Flask:
    """Application factory.

    Accepts pre-built service instances (for testing) or constructs
    defaults from the config file.
    """
    if config is None:
        config = load_config()

    if backup_manager is None:
        backup_manager = BackupManager(config)

    if note_store is None:
        note_store = NoteStore(config, listener=backup_manager)

    recovery = RecoveryManager(backup_manager)
    live_feed = LiveFeed()
    backup_manager.add_listener(
        live_feed.backup_listener(backup_manager.get_archive_count)
    )

    web_dir = Path(__file__).resolve().parent
    app = Flask(__name__, template_folder=str(web_dir / "templates"))
    sock = Sock(app)

    init_routes(
        config=config,
        note_store=note_store,
        backup_manager=backup_manager,
        recovery=recovery,
        live_feed=live_feed,
    )
    app.register_blueprint(pages)
    app.register_blueprint(api)

    @sock.route("/ws/live")
    def ws_live(ws):
        live_feed.register(ws)
        try:
            while True:
                # Clients only listen; receive() detects disconnects
                if ws.receive(timeout=60) is None and not ws.connected:
                    break
        except Exception as exc:
            logger.debug("Live socket closed: %s", exc)
        finally:
            live_feed.unregister(ws)

    # Store references for test access
    app.notekeeper_config = config
    app.note_store = note_store
    app.backup_manager = backup_manager
    app.recovery = recovery
    app.live_feed = live_feed

    return app
