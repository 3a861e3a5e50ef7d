"""
Unit tests for the background time-spent tracker.

A fake client records pings; long intervals keep each test to the single
immediate ping unless the test shortens them on purpose.
"""

from __future__ import annotations

import threading
import time

import pytest

from lms_api import LMSAPIError
from services.time_tracker import TimeTracker

WAIT = 2.0


class FakeClient:
    def __init__(self, fail: bool = False) -> None:
        self.pings: list[tuple[str, str, int]] = []
        self.pinged = threading.Event()
        self.closed = threading.Event()
        self.fail = fail

    def track_time(self, course_id: str, module_id: str, seconds: int) -> None:
        self.pings.append((course_id, module_id, seconds))
        self.pinged.set()
        if self.fail:
            raise LMSAPIError("Failed to track time", 500)

    def close(self) -> None:
        self.closed.set()


@pytest.fixture
def tracker():
    t = TimeTracker(interval=3600, seconds=30, idle_timeout=3600)
    yield t
    t.stop_all()


def _thread(tracker: TimeTracker, key: str) -> threading.Thread:
    return tracker._sessions[key].thread


class TestTimeTracker:
    def test_pings_immediately(self, tracker) -> None:
        client = FakeClient()

        assert tracker.start("u1:c1", client, "c1", "m1") is True
        assert client.pinged.wait(WAIT)

        assert client.pings == [("c1", "m1", 30)]
        assert tracker.active("u1:c1")["moduleId"] == "m1"

    def test_stop_ends_thread_and_closes_client(self, tracker) -> None:
        client = FakeClient()
        tracker.start("u1:c1", client, "c1", "m1")
        thread = _thread(tracker, "u1:c1")

        assert tracker.stop("u1:c1") is True
        thread.join(WAIT)

        assert not thread.is_alive()
        assert client.closed.is_set()
        assert tracker.active("u1:c1") is None
        assert tracker.stop("u1:c1") is False

    def test_same_module_counts_as_heartbeat(self, tracker) -> None:
        first = FakeClient()
        again = FakeClient()
        tracker.start("u1:c1", first, "c1", "m1")

        assert tracker.start("u1:c1", again, "c1", "m1") is False
        assert again.closed.is_set()
        assert not again.pings

    def test_new_module_replaces_tracker(self, tracker) -> None:
        first = FakeClient()
        second = FakeClient()
        tracker.start("u1:c1", first, "c1", "m1")
        old_thread = _thread(tracker, "u1:c1")

        assert tracker.start("u1:c1", second, "c1", "m2") is True
        old_thread.join(WAIT)

        assert first.closed.is_set()
        assert second.pinged.wait(WAIT)
        assert tracker.active("u1:c1")["moduleId"] == "m2"

    def test_failed_ping_is_ignored(self, tracker) -> None:
        client = FakeClient(fail=True)
        tracker.start("u1:c1", client, "c1", "m1")

        assert client.pinged.wait(WAIT)
        assert tracker.active("u1:c1")["pingsSent"] == 0

    def test_idle_session_stops_itself(self) -> None:
        tracker = TimeTracker(interval=0.01, seconds=30, idle_timeout=0)
        client = FakeClient()
        tracker.start("u1:c1", client, "c1", "m1")

        # The registry entry is dropped before the client is closed.
        assert client.closed.wait(WAIT)
        assert tracker.active("u1:c1") is None
        assert tracker.touch("u1:c1") is False

    def test_stop_prefix_only_hits_matching_keys(self, tracker) -> None:
        tracker.start("u1:c1", FakeClient(), "c1", "m1")
        tracker.start("u1:c2", FakeClient(), "c2", "m1")
        tracker.start("u2:c1", FakeClient(), "c1", "m1")

        assert tracker.stop_prefix("u1:") == 2
        assert tracker.active("u2:c1") is not None

    def test_successful_pings_are_counted(self, tracker) -> None:
        client = FakeClient()
        tracker.start("u1:c1", client, "c1", "m1")
        assert client.pinged.wait(WAIT)

        deadline = time.monotonic() + WAIT
        while tracker.active("u1:c1")["pingsSent"] < 1 and time.monotonic() < deadline:
            time.sleep(0.01)

        assert tracker.active("u1:c1")["pingsSent"] == 1
