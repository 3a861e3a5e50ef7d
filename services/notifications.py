"""
services/notifications.py

Per-user notification feed plus the Socket.IO listener that feeds it.

The REST list endpoint fills the feed; the socket only ever prepends new
items as the server announces them on ``notification:new``.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from config import LMS_SOCKET_URL

logger = logging.getLogger(__name__)

NEW_NOTIFICATION_EVENT = "notification:new"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self.items: list[dict] = []
        self.unread_count = 0
        self.next_cursor: str | None = None

    def set_list(self, items: Iterable[dict], unread_count: int | None = None, next_cursor: str | None = None) -> None:
        with self._lock:
            self.items = list(items or [])
            if unread_count is not None:
                self.unread_count = max(0, int(unread_count))
            self.next_cursor = next_cursor or None

    def append_list(self, items: Iterable[dict], next_cursor: str | None = None) -> None:
        with self._lock:
            self.items.extend(items or [])
            self.next_cursor = next_cursor or None

    def mark_read(self, ids: Iterable[str]) -> None:
        wanted = [str(i) for i in ids]
        stamp = _now_iso()
        with self._lock:
            self.items = [
                {**n, "readAt": stamp} if str(n.get("_id")) in wanted else n
                for n in self.items
            ]
            self.unread_count = max(0, self.unread_count - len(wanted))

    def push(self, payload: dict) -> None:
        if not isinstance(payload, dict):
            return
        with self._lock:
            self.items.insert(0, payload)
            self.unread_count += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "items": list(self.items),
                "unreadCount": self.unread_count,
                "nextCursor": self.next_cursor,
            }


class NotificationHub:
    """One feed per user id and at most one live socket per token."""

    def __init__(
        self,
        socket_url: str = LMS_SOCKET_URL,
        client_factory: Callable[[], Any] | None = None,
    ):
        self.socket_url = socket_url
        self._client_factory = client_factory or (lambda: socketio.Client(reconnection=True))
        self._lock = threading.Lock()
        self._feeds: dict[str, NotificationFeed] = {}
        self._sockets: dict[str, Any] = {}

    def feed(self, user_id: str) -> NotificationFeed:
        with self._lock:
            feed = self._feeds.get(user_id)
            if feed is None:
                feed = self._feeds[user_id] = NotificationFeed()
            return feed

    def is_connected(self, token: str | None) -> bool:
        with self._lock:
            return bool(token) and token in self._sockets

    def connect(self, user_id: str, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            if token in self._sockets:
                return True

        feed = self.feed(user_id)
        client = self._client_factory()
        client.on(NEW_NOTIFICATION_EVENT, feed.push)
        try:
            client.connect(self.socket_url, auth={"token": token}, wait_timeout=5)
        except SocketConnectionError as exc:
            logger.warning("Live notifications unavailable for %s: %s", user_id, exc)
            return False

        with self._lock:
            self._sockets[token] = client
        logger.info("Live notifications connected for %s", user_id)
        return True

    def disconnect(self, token: str | None, user_id: str | None = None) -> None:
        """Close the live socket for ``token``; with ``user_id``, also drop that feed."""
        with self._lock:
            if user_id is not None:
                self._feeds.pop(user_id, None)
            client = self._sockets.pop(token, None) if token else None
        if client is not None:
            client.disconnect()

    def disconnect_all(self) -> None:
        with self._lock:
            clients = list(self._sockets.values())
            self._sockets.clear()
        for client in clients:
            client.disconnect()
