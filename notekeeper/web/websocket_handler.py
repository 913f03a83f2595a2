"""Live updates for open note pages over /ws/live.

Every backup attempt and restore is pushed to connected browsers so the
archive counter on the page stays current without polling.
"""

import json
import logging
import threading

logger = logging.getLogger(__name__)


class LiveFeed:
    """Thread-safe set of WebSocket clients with fan-out publishing."""

    def __init__(self):
        self._clients: set = set()
        self._lock = threading.Lock()

    def register(self, ws):
        with self._lock:
            self._clients.add(ws)
            total = len(self._clients)
        logger.debug("Live client connected (%d total)", total)

    def unregister(self, ws):
        with self._lock:
            self._clients.discard(ws)
            total = len(self._clients)
        logger.debug("Live client disconnected (%d remaining)", total)

    def publish(self, event_type: str, data: dict) -> int:
        """Send one JSON message to every client; return how many got it.

        Clients whose send fails are dropped.
        """
        message = json.dumps({"type": event_type, "data": data})
        with self._lock:
            clients = list(self._clients)

        delivered = 0
        for ws in clients:
            try:
                ws.send(message)
            except Exception as exc:
                logger.debug("Dropping live client after send error: %s", exc)
                self.unregister(ws)
            else:
                delivered += 1
        return delivered

    def backup_listener(self, count_for):
        """Build a BackupManager listener publishing ``backup`` events.

        ``count_for(scope)`` supplies the archive count sent with each event.
        """
        def on_backup(result):
            data = result.to_dict()
            data["count"] = count_for(result.scope)
            self.publish("backup", data)
        return on_backup

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)
