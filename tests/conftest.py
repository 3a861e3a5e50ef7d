"""Shared pytest fixtures for the test suite.

Fixture overview
----------------
fake_lms        : in-process stand-in for the remote LMS REST API, served to
                  httpx through ``httpx.MockTransport``
lms_client      : ``LMSClient`` wired to ``fake_lms`` with a bearer token
portal_app      : the Flask app with the fake API, a recording time tracker
                  and a notification hub whose sockets never touch a network
anon_client     : Flask test client with no session
student_client  : Flask test client logged in as a student
tutor_client    : Flask test client logged in as a tutor
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from lms_api import LMSClient
from services.notifications import NotificationHub

API_BASE = "http://lms.test/api"

STUDENT = {"_id": "stu1", "name": "Sam Student", "email": "sam@example.com", "role": "student"}
TUTOR = {"_id": "tut1", "name": "Tia Tutor", "email": "tia@example.com", "role": "tutor"}

# ── Remote API double ────────────────────────────────────────────────────────


class FakeLMS:
    """Route table keyed by (method, path) with ``/api`` stripped."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], tuple[int, Any, bytes | None]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        body: Any = None,
        status: int = 200,
        content: bytes | None = None,
    ) -> None:
        self.routes[(method.upper(), path)] = (status, body, content)

    def ok(self, method: str, path: str, data: Any = None, status: int = 200) -> None:
        self.add(method, path, {"success": True, "data": data if data is not None else {}}, status)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"success": False, "message": f"No route {request.method} {path}"})

        status, body, content = route
        if isinstance(body, Exception):
            raise body
        if callable(body):
            body = body(request)
        if content is not None:
            return httpx.Response(status, content=content)
        return httpx.Response(status, json=body if body is not None else {"success": True})

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        wanted = "/api" + path
        return [r for r in self.requests if r.method == method.upper() and r.url.path == wanted]

    @staticmethod
    def json_of(request: httpx.Request) -> Any:
        return json.loads(request.content or b"null")


@pytest.fixture
def fake_lms() -> FakeLMS:
    return FakeLMS()


@pytest.fixture
def lms_client(fake_lms: FakeLMS):
    client = LMSClient(API_BASE, token="tok", transport=httpx.MockTransport(fake_lms))
    yield client
    client.close()

# ── Background worker doubles ────────────────────────────────────────────────


class RecordingTracker:
    """Same surface as TimeTracker; records calls instead of starting threads."""

    def __init__(self) -> None:
        self.started: list[tuple[str, str, str]] = []
        self.stopped: list[str] = []
        self.touched: list[str] = []

    def start(self, key: str, client: LMSClient, course_id: str, module_id: str) -> bool:
        client.close()
        self.started.append((key, course_id, module_id))
        return True

    def touch(self, key: str) -> bool:
        self.touched.append(key)
        return any(k == key for k, _, _ in self.started)

    def stop(self, key: str) -> bool:
        self.stopped.append(key)
        return True

    def stop_prefix(self, prefix: str) -> int:
        self.stopped.append(prefix)
        return 0

    def stop_all(self) -> None:
        self.stopped.append("*")


class FakeSocket:
    """Records handlers and connect arguments like socketio.Client would receive them."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.handlers: dict[str, Callable] = {}
        self.connected_to: tuple[str, dict] | None = None
        self.disconnected = False
        self._fail_with = fail_with

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event] = handler

    def connect(self, url: str, auth: dict | None = None, wait_timeout: int = 1) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.connected_to = (url, auth or {})

    def disconnect(self) -> None:
        self.disconnected = True

    def emit_local(self, event: str, payload: Any) -> None:
        self.handlers[event](payload)


class FakeSocketFactory:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.sockets: list[FakeSocket] = []
        self.fail_with = fail_with

    def __call__(self) -> FakeSocket:
        sock = FakeSocket(self.fail_with)
        self.sockets.append(sock)
        return sock


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()

# ── Portal ───────────────────────────────────────────────────────────────────


@pytest.fixture
def portal_app(fake_lms: FakeLMS, socket_factory: FakeSocketFactory, monkeypatch: pytest.MonkeyPatch):
    import portal.app as portal

    monkeypatch.setitem(portal.app.config, "LMS_TRANSPORT", httpx.MockTransport(fake_lms))
    monkeypatch.setitem(portal.app.config, "TESTING", True)
    monkeypatch.setattr(portal, "LMS_API_URL", API_BASE)
    monkeypatch.setattr(portal, "LIVE_NOTIFICATIONS", True)
    monkeypatch.setattr(portal, "time_tracker", RecordingTracker())
    monkeypatch.setattr(
        portal,
        "notification_hub",
        NotificationHub("http://lms.test", client_factory=socket_factory),
    )
    portal._grading_in_flight.clear()
    yield portal
    portal._grading_in_flight.clear()


def _login(client, user: dict) -> None:
    with client.session_transaction() as sess:
        sess["token"] = f"token-{user['_id']}"
        sess["user"] = dict(user)


@pytest.fixture
def anon_client(portal_app):
    return portal_app.app.test_client()


@pytest.fixture
def student_client(portal_app):
    client = portal_app.app.test_client()
    _login(client, STUDENT)
    return client


@pytest.fixture
def tutor_client(portal_app):
    client = portal_app.app.test_client()
    _login(client, TUTOR)
    return client
