"""Route handlers for the note pages and the JSON API.

Pages:

    GET       /                 - Note list (optionally ?scope=)
    GET       /view/<title>     - Note page, or raw body for Accept: text/plain
    POST      /create           - Create a note
    POST      /edit             - Update and/or rename a note
    GET|POST  /delete/<title>   - Delete a note, redirect to /
    POST      /delete-all       - Delete every note of a scope
    GET|POST  /search           - Notes whose body contains ?query=
    GET       /backup-count     - {"count": n} archives for a scope

API:

    GET  /api/status            - Archive count, disk usage, live clients
    GET  /api/backups           - Archives of a scope, newest first
    POST /api/restore           - Restore a scope from an archive
    GET  /api/config            - Effective configuration

Backups run inside the NoteStore mutation call, before the response is
built; their outcome never changes the status code.
"""

import logging
from datetime import datetime
from pathlib import Path

import psutil
from flask import Blueprint, jsonify, redirect, render_template, request, url_for

from notekeeper.backup.backup_config import TIMESTAMP_FORMAT
from notekeeper.notes.note_store import (
    InvalidTitleError,
    NoteExistsError,
    NoteNotFoundError,
    check_name,
)

logger = logging.getLogger(__name__)

pages = Blueprint("pages", __name__)
api = Blueprint("api", __name__, url_prefix="/api")

# These are set by app.py at init time via init_routes()
_config = None
_note_store = None
_backup_manager = None
_recovery = None
_live_feed = None


def init_routes(config, note_store, backup_manager, recovery, live_feed):
    """Wire up shared application state into the route handlers."""
    global _config, _note_store, _backup_manager, _recovery, _live_feed
    _config = config
    _note_store = note_store
    _backup_manager = backup_manager
    _recovery = recovery
    _live_feed = live_feed


def _scope_arg() -> str | None:
    """Scope from the query string or form; blank means unscoped."""
    scope = (request.values.get("scope") or "").strip()
    if not scope:
        return None
    return check_name(scope, "scope")


def _render_index(notes, scope, query=None):
    return render_template(
        "index.html",
        notes=notes,
        scope=scope,
        scopes=_note_store.list_scopes(),
        query=query,
    )


# ------------------------------------------------------------------
# Pages
# ------------------------------------------------------------------

@pages.route("/")
def index():
    try:
        scope = _scope_arg()
        notes = _note_store.list_notes(scope)
    except InvalidTitleError as exc:
        return str(exc), 400
    except OSError:
        logger.exception("Error listing notes")
        return "Error reading notes", 500
    return _render_index(notes, scope)


@pages.route("/view/<title>")
def view_note(title):
    try:
        scope = _scope_arg()
        body = _note_store.read_note(title, scope)
    except InvalidTitleError as exc:
        return str(exc), 400
    except (NoteNotFoundError, OSError) as exc:
        logger.info("Cannot view note %r: %s", title, exc)
        return "Note not found", 404

    if request.headers.get("Accept") == "text/plain":
        return body, 200, {"Content-Type": "text/plain; charset=utf-8"}
    return render_template("view.html", title=title, body=body, scope=scope)


@pages.route("/create", methods=["POST"])
def create_note():
    title = request.form.get("title", "")
    body = request.form.get("body", "")
    try:
        _note_store.create_note(title, body, _scope_arg())
    except InvalidTitleError as exc:
        logger.info("Rejected note title: %s", exc)
        return "Invalid note title", 400
    except NoteExistsError:
        return "A note with this title already exists", 409
    except OSError:
        logger.exception("Error creating note %r", title)
        return "Could not save note", 500
    return "", 200


@pages.route("/edit", methods=["POST"])
def edit_note():
    old_title = request.form.get("oldTitle", "")
    new_title = request.form.get("title", "")
    body = request.form.get("body", "")
    try:
        _note_store.edit_note(old_title, new_title, body, _scope_arg())
    except InvalidTitleError as exc:
        logger.info("Rejected note title: %s", exc)
        return "Invalid note title", 400
    except NoteNotFoundError:
        return "Note not found", 404
    except NoteExistsError:
        return "A note with the new title already exists", 409
    except OSError:
        logger.exception("Error editing note %r", old_title)
        return "Could not save note", 500
    return "", 200


@pages.route("/delete/<title>", methods=["GET", "POST"])
def delete_note(title):
    scope = None
    try:
        scope = _scope_arg()
        _note_store.delete_note(title, scope)
    except (NoteNotFoundError, InvalidTitleError, OSError) as exc:
        logger.error("Error deleting note %r: %s", title, exc)
    if scope:
        return redirect(url_for("pages.index", scope=scope))
    return redirect(url_for("pages.index"))


@pages.route("/delete-all", methods=["POST"])
def delete_all():
    try:
        _note_store.delete_all(_scope_arg())
    except InvalidTitleError as exc:
        return str(exc), 400
    except OSError:
        logger.exception("Error deleting all notes")
        return "Could not delete notes", 500
    return "", 200


@pages.route("/search", methods=["GET", "POST"])
def search():
    query = request.values.get("query", "")
    try:
        scope = _scope_arg()
        results = _note_store.search(query, scope)
    except InvalidTitleError as exc:
        return str(exc), 400
    except OSError:
        logger.exception("Error searching notes")
        return "Error searching notes", 500
    return _render_index(results, scope, query=query)


@pages.route("/backup-count")
def backup_count():
    try:
        count = _backup_manager.get_archive_count(_scope_arg())
    except InvalidTitleError as exc:
        return jsonify({"error": str(exc)}), 400
    except OSError as exc:
        logger.error("Error counting archives: %s", exc)
        return jsonify({"error": "Could not count backups"}), 500
    return jsonify({"count": count})


# ------------------------------------------------------------------
# API
# ------------------------------------------------------------------

def _disk_usage(path: Path) -> dict | None:
    # The backup root may not exist before the first backup
    for candidate in (path, *path.parents):
        if candidate.exists():
            usage = psutil.disk_usage(str(candidate))
            return {
                "total": usage.total,
                "used": usage.used,
                "free": usage.free,
                "percent": usage.percent,
            }
    return None


def _archive_timestamp(name: str) -> str | None:
    try:
        return datetime.strptime(name[:15], TIMESTAMP_FORMAT).isoformat()
    except ValueError:
        return None


@api.route("/status", methods=["GET"])
def get_status():
    try:
        scope = _scope_arg()
        count = _backup_manager.get_archive_count(scope)
        disk = _disk_usage(_config.backup_root)
    except InvalidTitleError as exc:
        return jsonify({"error": str(exc)}), 400
    except OSError as exc:
        logger.exception("Error reading backup status")
        return jsonify({"error": f"Status unavailable: {exc}"}), 500

    return jsonify({
        "status": "running",
        "timestamp": datetime.now().isoformat(),
        "scope": scope,
        "layout": _config.layout,
        "archive_count": count,
        "retention_limit": _config.retention_limit,
        "disk": disk,
        "live_clients": _live_feed.client_count if _live_feed else 0,
    })


@api.route("/backups", methods=["GET"])
def get_backups():
    """Archives of one scope, newest first."""
    try:
        scope = _scope_arg()
        archives = _backup_manager.list_archives(scope)
        entries = [
            {
                "name": p.name,
                "size": p.stat().st_size,
                "timestamp": _archive_timestamp(p.name),
            }
            for p in reversed(archives)
        ]
    except InvalidTitleError as exc:
        return jsonify({"error": str(exc)}), 400
    except OSError as exc:
        logger.exception("Error listing archives")
        return jsonify({"error": f"Could not list backups: {exc}"}), 500

    return jsonify({"scope": scope, "backups": entries, "total": len(entries)})


@api.route("/restore", methods=["POST"])
def restore_backup():
    """Restore a scope from one archive: {"archive": name, "scope": optional}."""
    data = request.get_json(silent=True) or {}
    name = data.get("archive")
    if not name or not isinstance(name, str):
        return jsonify({"error": "archive is required"}), 400

    scope = data.get("scope") or None
    if scope is not None and not isinstance(scope, str):
        return jsonify({"error": "scope must be a string"}), 400

    try:
        if scope is not None:
            scope = check_name(scope, "scope")
        if _recovery.find_archive(name, scope) is None:
            return jsonify({"error": f"Archive {name} not found"}), 404
        result = _recovery.restore_archive(name, scope)
    except InvalidTitleError as exc:
        return jsonify({"error": str(exc)}), 400
    except OSError as exc:
        logger.exception("Error during restore")
        return jsonify({"error": f"Restore failed: {exc}"}), 500

    if _live_feed:
        _live_feed.publish("restore", result.to_dict())

    return jsonify(result.to_dict()), 200 if result.success else 500


@api.route("/config", methods=["GET"])
def get_config():
    return jsonify(_config.to_dict() if _config else {})
