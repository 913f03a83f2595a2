"""Launcher for the notekeeper web interface.

Starts the Flask app, optionally the external edit watcher in the
background, and opens the interface in the default browser.

Usage:
    python run.py
    python run.py --config config/config.json --port 8080
    python run.py --no-browser
"""

import argparse
import logging
import os
import signal
import threading
import webbrowser

from notekeeper.config import DEFAULT_CONFIG_PATH, LOG_LEVELS, load_config

logger = logging.getLogger("notekeeper")


def open_browser(url: str):
    """Open url in the default browser; failure is only logged."""
    try:
        if not webbrowser.open(url):
            logger.warning("No browser available, open %s manually", url)
    except webbrowser.Error as exc:
        logger.warning("Failed to open browser: %s", exc)


def main():
    parser = argparse.ArgumentParser(
        description="notekeeper - local notes with automatic backups",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to config.json (default: config/config.json)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: from config, 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        default=None,
        type=int,
        help="Port to listen on (default: from config, 8080)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL"),
        choices=LOG_LEVELS,
        help="Logging level (default: from config)",
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Do not open the interface in a browser",
    )
    args = parser.parse_args()

    config = load_config(args.config)
    logging.basicConfig(
        level=getattr(logging, args.log_level or config.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    host = args.host or config.host
    port = args.port or config.port

    from notekeeper.backup.backup_manager import BackupManager
    from notekeeper.notes.external_watcher import ExternalEditWatcher
    from notekeeper.web.app import create_app

    backup_manager = BackupManager(config)
    app = create_app(config=config, backup_manager=backup_manager)

    watcher = None
    if config.watcher_enabled:
        watcher = ExternalEditWatcher(config, listener=backup_manager)
        watcher.start()

    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        if watcher:
            watcher.stop()
        raise SystemExit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    url = f"http://{host}:{port}"
    logger.info("Notes: %s", config.data_root)
    logger.info("Backups: %s (%s layout, keep %d)",
                config.backup_root, config.layout, config.retention_limit)
    logger.info("Serving on %s", url)

    if config.open_browser and not args.no_browser:
        threading.Timer(1.0, open_browser, args=(url,)).start()

    try:
        app.run(host=host, port=port, debug=False)
    finally:
        if watcher:
            watcher.stop()
        logger.info("Stopped.")


if __name__ == "__main__":
    main()
