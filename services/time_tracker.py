"""
services/time_tracker.py

"Time spent" pings while a learner has a module open in the player.

One daemon thread per viewer: it pings once straight away, then every
TRACK_INTERVAL_SEC until stopped, replaced by a different module, or left
idle past TRACK_IDLE_TIMEOUT_SEC without a heartbeat. Pings are
fire-and-forget; a failed one is logged and the loop carries on.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from config import TRACK_IDLE_TIMEOUT_SEC, TRACK_INTERVAL_SEC, TRACK_SECONDS
from lms_api import LMSAPIError, LMSClient

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    client: LMSClient
    course_id: str
    module_id: str
    stop_event: threading.Event = field(default_factory=threading.Event)
    last_seen: float = field(default_factory=time.monotonic)
    pings_sent: int = 0
    thread: threading.Thread | None = None


class TimeTracker:
    def __init__(
        self,
        interval: float = TRACK_INTERVAL_SEC,
        seconds: int = TRACK_SECONDS,
        idle_timeout: float = TRACK_IDLE_TIMEOUT_SEC,
    ):
        self.interval = interval
        self.seconds = seconds
        self.idle_timeout = idle_timeout
        self._lock = threading.Lock()
        self._sessions: dict[str, _Session] = {}

    def start(self, key: str, client: LMSClient, course_id: str, module_id: str) -> bool:
        """Begin pinging for ``key``. The tracker owns ``client`` from here on.

        Returns False when the same module is already being tracked; the
        call then only counts as a heartbeat and ``client`` is closed.
        """
        with self._lock:
            current = self._sessions.get(key)
            if current and current.course_id == course_id and current.module_id == module_id:
                current.last_seen = time.monotonic()
                client.close()
                return False
            if current:
                current.stop_event.set()

            session = _Session(client=client, course_id=course_id, module_id=module_id)
            session.thread = threading.Thread(
                target=self._loop,
                args=(key, session),
                name=f"time-tracker-{module_id}",
                daemon=True,
            )
            self._sessions[key] = session
            session.thread.start()

        logger.info("Time tracking started: course=%s module=%s", course_id, module_id)
        return True

    def touch(self, key: str) -> bool:
        with self._lock:
            session = self._sessions.get(key)
            if not session:
                return False
            session.last_seen = time.monotonic()
            return True

    def stop(self, key: str) -> bool:
        with self._lock:
            session = self._sessions.pop(key, None)
        if not session:
            return False
        session.stop_event.set()
        return True

    def stop_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._sessions if k.startswith(prefix)]
            sessions = [self._sessions.pop(k) for k in keys]
        for session in sessions:
            session.stop_event.set()
        return len(sessions)

    def stop_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.stop_event.set()

    def active(self, key: str) -> dict | None:
        with self._lock:
            session = self._sessions.get(key)
            if not session:
                return None
            return {
                "courseId": session.course_id,
                "moduleId": session.module_id,
                "pingsSent": session.pings_sent,
            }

    def _ping(self, session: _Session) -> None:
        try:
            session.client.track_time(session.course_id, session.module_id, self.seconds)
            with self._lock:
                session.pings_sent += 1
        except LMSAPIError as exc:
            logger.debug("Time ping ignored (%s): %s", session.module_id, exc.message)

    def _loop(self, key: str, session: _Session) -> None:
        try:
            self._ping(session)
            while not session.stop_event.wait(self.interval):
                if time.monotonic() - session.last_seen > self.idle_timeout:
                    logger.info("Time tracking idle, stopping: module=%s", session.module_id)
                    break
                self._ping(session)
        finally:
            with self._lock:
                if self._sessions.get(key) is session:
                    del self._sessions[key]
            session.client.close()
