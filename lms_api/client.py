"""
lms_api/client.py

One method per remote endpoint. Every call goes through ``_request`` so error
handling is the same everywhere: a non-2xx reply becomes ``LMSAPIError`` with
the server's ``message`` when it sent one, otherwise the caller's fallback
text. No retries.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable

import httpx

from config import LMS_API_URL, LMS_HTTP_TIMEOUT_SEC
from lms_api.errors import LMSAPIError

logger = logging.getLogger(__name__)

DEFAULT_PAGINATION: dict[str, Any] = {
    "currentPage": 1,
    "totalPages": 1,
    "totalCourses": 0,
    "hasNext": False,
    "hasPrev": False,
}

# (filename, content, content_type) - the shape httpx accepts for multipart parts
UploadFile = tuple[str, Any, str]


def certificate_filename(course_title: str) -> str:
    safe = re.sub(r"[^a-zA-Z0-9]", "-", course_title or "course")
    return f"certificate-{safe}.pdf"


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(response: httpx.Response, fallback: str) -> str:
    body = _safe_json(response)
    for key in ("message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return fallback


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    return {k: v for k, v in params.items() if v is not None and v != ""}


class LMSClient:
    def __init__(
        self,
        base_url: str = LMS_API_URL,
        token: str | None = None,
        timeout: float = LMS_HTTP_TIMEOUT_SEC,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )
        self._token: str | None = None
        self.token = token

    # ── Session ───────────────────────────────────────────

    @property
    def token(self) -> str | None:
        return self._token

    @token.setter
    def token(self, value: str | None) -> None:
        self._token = value or None
        if self._token:
            self._http.headers["Authorization"] = f"Bearer {self._token}"
        else:
            self._http.headers.pop("Authorization", None)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "LMSClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        fallback: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        files: list[tuple[str, UploadFile]] | None = None,
    ) -> httpx.Response:
        try:
            response = self._http.request(
                method,
                path,
                params=_clean_params(params),
                json=json,
                data=data,
                files=files,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise LMSAPIError(fallback) from exc

        if response.is_error:
            message = _error_message(response, fallback)
            logger.info("%s %s -> %s: %s", method, path, response.status_code, message)
            raise LMSAPIError(message, response.status_code, _safe_json(response))
        return response

    def _data(self, method: str, path: str, fallback: str, **kwargs) -> dict[str, Any]:
        body = _safe_json(self._request(method, path, fallback, **kwargs))
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    # ── Auth ──────────────────────────────────────────────

    def login(self, email: str, password: str) -> dict[str, Any]:
        data = self._data(
            "POST", "/auth/login", "Login failed",
            json={"email": email, "password": password},
        )
        self.token = data.get("token")
        return {"user": data.get("user"), "token": data.get("token")}

    def register(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._data("POST", "/auth/register", "Registration failed", json=payload)
        self.token = data.get("token")
        return {"user": data.get("user"), "token": data.get("token")}

    def me(self) -> dict[str, Any]:
        return self._data("GET", "/auth/me", "Failed to load user").get("user") or {}

    def logout(self) -> None:
        # The session ends locally whatever the server says.
        try:
            self._request("POST", "/auth/logout", "Logout failed")
        except LMSAPIError as exc:
            logger.info("Logout error: %s", exc.message)
        finally:
            self.token = None

    def update_profile(self, profile: dict[str, Any]) -> dict[str, Any]:
        data = self._data("PUT", "/auth/profile", "Profile update failed", json=profile)
        return data.get("user") or {}

    def upload_avatar(self, upload: UploadFile) -> str | None:
        data = self._data(
            "POST", "/auth/avatar", "Avatar upload failed",
            files=[("avatar", upload)],
        )
        return data.get("avatar")

    def change_password(self, current_password: str, new_password: str) -> None:
        self._request(
            "PUT", "/auth/change-password", "Password change failed",
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    # ── Courses ───────────────────────────────────────────

    def list_courses(
        self,
        page: int = 1,
        limit: int = 12,
        **filters: Any,
    ) -> tuple[list[dict], dict[str, Any]]:
        params = {"page": str(page), "limit": str(limit)}
        params.update({k: v for k, v in filters.items() if v})
        data = self._data("GET", "/courses", "Failed to fetch courses", params=params)
        return data.get("courses") or [], data.get("pagination") or dict(DEFAULT_PAGINATION)

    def get_course(self, course_id: str) -> dict[str, Any]:
        return self._data("GET", f"/courses/{course_id}", "Failed to fetch course").get("course") or {}

    def create_course(self, course: dict[str, Any]) -> dict[str, Any]:
        return self._data("POST", "/courses", "Failed to create course", json=course).get("course") or {}

    def update_course(self, course_id: str, course: dict[str, Any]) -> dict[str, Any]:
        data = self._data("PUT", f"/courses/{course_id}", "Failed to update course", json=course)
        return data.get("course") or {}

    def delete_course(self, course_id: str) -> None:
        self._request("DELETE", f"/courses/{course_id}", "Failed to delete course")

    def enroll(self, course_id: str) -> None:
        self._request("POST", f"/courses/{course_id}/enroll", "Failed to enroll in course")

    def unenroll(self, course_id: str) -> None:
        self._request("DELETE", f"/courses/{course_id}/enroll", "Failed to unenroll from course")

    def upload_thumbnail(self, course_id: str, upload: UploadFile) -> str | None:
        data = self._data(
            "POST", f"/courses/{course_id}/thumbnail", "Failed to upload thumbnail",
            files=[("thumbnail", upload)],
        )
        return data.get("thumbnail")

    def upload_banner(self, course_id: str, upload: UploadFile) -> str | None:
        data = self._data(
            "POST", f"/courses/{course_id}/banner", "Failed to upload banner",
            files=[("banner", upload)],
        )
        return data.get("banner")

    def course_students(self, course_id: str) -> list[dict]:
        data = self._data("GET", f"/courses/{course_id}/students", "Failed to fetch students")
        return data.get("students") or []

    def track_time(self, course_id: str, module_id: str, seconds: int) -> None:
        self._request(
            "POST", f"/courses/{course_id}/track", "Failed to track time",
            json={"moduleId": module_id, "seconds": seconds},
        )

    # ── Modules & assignments ─────────────────────────────

    def list_modules(self, course_id: str) -> list[dict]:
        data = self._data("GET", f"/modules/course/{course_id}", "Failed to fetch modules")
        return data.get("modules") or []

    def list_assignments(self, module_id: str) -> list[dict]:
        data = self._data("GET", f"/assignments/module/{module_id}", "Failed to fetch assignments")
        return data.get("assignments") or []

    def create_assignment(self, assignment: dict[str, Any]) -> dict[str, Any]:
        data = self._data("POST", "/assignments", "Failed to create assignment", json=assignment)
        return data.get("assignment") or {}

    def update_assignment(self, assignment_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        data = self._data(
            "PUT", f"/assignments/{assignment_id}", "Failed to update assignment",
            json=changes,
        )
        return data.get("assignment") or {}

    def delete_assignment(self, assignment_id: str) -> None:
        self._request("DELETE", f"/assignments/{assignment_id}", "Failed to delete assignment")

    def publish_assignment(self, assignment_id: str) -> dict[str, Any]:
        data = self._data(
            "PATCH", f"/assignments/{assignment_id}/publish", "Failed to publish assignment",
            json={},
        )
        return data.get("assignment") or {}

    # ── Submissions ───────────────────────────────────────

    def submit_assignment(
        self,
        assignment_id: str,
        text: str | None = None,
        files: Iterable[UploadFile] = (),
    ) -> dict[str, Any]:
        form = {"assignmentId": assignment_id}
        if text:
            form["textSubmission"] = text
        parts = [("files", upload) for upload in files]
        data = self._data(
            "POST", "/submissions", "Failed to submit assignment",
            data=form, files=parts or None,
        )
        return data.get("submission") or data

    def get_submission(self, submission_id: str) -> dict[str, Any]:
        data = self._data("GET", f"/submissions/{submission_id}", "Failed to load submission")
        return data.get("submission") or {}

    def assignment_submissions(self, assignment_id: str) -> list[dict]:
        data = self._data(
            "GET", f"/submissions/assignment/{assignment_id}", "Failed to load submissions",
        )
        return data.get("submissions") or []

    def student_submissions(self, student_id: str, course_id: str | None = None) -> list[dict]:
        data = self._data(
            "GET", f"/submissions/student/{student_id}", "Failed to load submissions",
            params={"courseId": course_id},
        )
        return data.get("submissions") or []

    def grade_submission(self, submission_id: str, grade: float, feedback: dict[str, Any]) -> dict[str, Any]:
        data = self._data(
            "PUT", f"/submissions/{submission_id}/grade", "Failed to grade submission",
            json={"grade": grade, "feedback": feedback},
        )
        return data.get("submission") or {}

    # ── Quizzes ───────────────────────────────────────────

    def module_quizzes(self, module_id: str) -> list[dict]:
        data = self._data("GET", f"/quizzes/module/{module_id}", "Failed to load quiz")
        return data.get("quizzes") or []

    def attempt_quiz(self, quiz_id: str, answers: list[Any]) -> dict[str, Any]:
        data = self._data(
            "POST", f"/quizzes/{quiz_id}/attempt", "Failed to submit quiz",
            json={"answers": answers},
        )
        return data.get("result") or {}

    # ── Reviews ───────────────────────────────────────────

    def course_reviews(self, course_id: str) -> list[dict]:
        data = self._data("GET", f"/reviews/course/{course_id}", "Failed to load reviews")
        return data.get("reviews") or []

    def post_review(self, course_id: str, rating: int, comment: str = "") -> None:
        self._request(
            "POST", "/reviews", "Failed to submit review",
            json={"courseId": course_id, "rating": rating, "comment": comment},
        )

    # ── Forums ────────────────────────────────────────────

    def course_threads(self, course_id: str) -> list[dict]:
        data = self._data("GET", f"/forums/course/{course_id}", "Failed to load forum")
        return data.get("threads") or []

    def create_thread(self, course_id: str, title: str) -> dict[str, Any]:
        data = self._data(
            "POST", "/forums", "Failed to create thread",
            json={"courseId": course_id, "title": title},
        )
        return data.get("thread") or {}

    def get_thread(self, thread_id: str) -> dict[str, Any]:
        return self._data("GET", f"/forums/{thread_id}", "Failed to load thread").get("thread") or {}

    def reply_thread(self, thread_id: str, content: str) -> None:
        self._request(
            "POST", f"/forums/{thread_id}/reply", "Failed to post reply",
            json={"content": content},
        )

    # ── Messages ──────────────────────────────────────────

    def conversations(self) -> list[dict]:
        data = self._data("GET", "/messages/conversations", "Failed to load conversations")
        return data.get("conversations") or []

    def messages_with(self, user_id: str) -> list[dict]:
        data = self._data("GET", f"/messages/with/{user_id}", "Failed to load messages")
        return data.get("messages") or []

    def send_message(self, to: str, content: str) -> None:
        self._request(
            "POST", "/messages", "Failed to send message",
            json={"to": to, "content": content},
        )

    # ── Notifications ─────────────────────────────────────

    def list_notifications(
        self,
        unread: bool = False,
        cursor: str | None = None,
        limit: int = 20,
    ) -> dict[str, Any]:
        data = self._data(
            "GET", "/notifications", "Failed to load notifications",
            params={"unread": "true" if unread else None, "cursor": cursor, "limit": limit},
        )
        return {
            "items": data.get("notifications") or data.get("items") or [],
            "unreadCount": int(data.get("unreadCount") or 0),
            "nextCursor": data.get("nextCursor") or None,
        }

    def mark_seen(self) -> None:
        self._request("POST", "/notifications/mark-seen", "Failed to mark notifications seen")

    def mark_read(self, ids: list[str]) -> None:
        self._request(
            "POST", "/notifications/mark-read", "Failed to mark notifications read",
            json={"ids": list(ids)},
        )

    # ── Progress ──────────────────────────────────────────

    def course_progress(self, course_id: str) -> dict[str, Any]:
        data = self._data("GET", f"/progress/course/{course_id}", "Failed to load progress")
        return data.get("progress") or data

    def complete_module(self, course_id: str, module_id: str) -> dict[str, Any]:
        data = self._data(
            "POST", f"/progress/module/{module_id}/complete", "Failed to complete module",
            json={"courseId": course_id},
        )
        return data.get("progress") or data

    # ── Certificates ──────────────────────────────────────

    def download_certificate(self, course_id: str) -> bytes:
        response = self._request(
            "GET", f"/certificates/{course_id}", "Error generating certificate",
        )
        return response.content

    def certificate_requests(self) -> list[dict]:
        body = _safe_json(
            self._request("GET", "/certificates/requests", "Failed to load certificate requests")
        )
        data = body.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return data.get("requests") or []
        return []

    def approve_certificate(self, request_id: str) -> None:
        self._request(
            "POST", f"/certificates/{request_id}/approve", "Failed to approve certificate",
            json={},
        )

    def reject_certificate(self, request_id: str) -> None:
        self._request(
            "POST", f"/certificates/{request_id}/reject", "Failed to reject certificate",
            json={},
        )

    # ── Analytics ─────────────────────────────────────────

    def tutor_analytics(self, tutor_id: str, section: str = "overview") -> dict[str, Any]:
        return self._data(
            "GET", f"/analytics/tutor/{tutor_id}/{section}", "Failed to load analytics",
        )
