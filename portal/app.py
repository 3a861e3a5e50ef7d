from __future__ import annotations

import io
import logging
import threading
from contextlib import contextmanager
from functools import wraps
from typing import Any

from flask import Flask, jsonify, render_template, request, send_file, session

from config import (
    COURSES_PAGE_SIZE,
    LIVE_NOTIFICATIONS,
    LMS_API_URL,
    LMS_HTTP_TIMEOUT_SEC,
    NOTIFICATIONS_PAGE_SIZE,
    PORTAL_HOST,
    PORTAL_PORT,
    PORTAL_SECRET_KEY,
    TRACK_INTERVAL_SEC,
)
from lms_api import (
    AuthenticationRequired,
    LMSAPIError,
    LMSClient,
    PermissionDenied,
    certificate_filename,
)
from services.notifications import NotificationHub
from services.player import PlayerState
from services.progress import (
    completed_certificates,
    enrollment_stats,
    find_student_submission,
    grade_summary,
    module_completion,
    pair_assignments,
    percentage_to_points,
    points_to_percentage,
    student_assignment_stats,
    submission_status,
)
from services.time_tracker import TimeTracker

logger = logging.getLogger(__name__)

DASHBOARDS: dict[str, str] = {
    "student": "/student/dashboard",
    "tutor": "/tutor/dashboard",
}
COURSE_FILTERS = ("category", "difficulty", "search", "sort", "enrolled", "instructor")
ASSIGNMENT_TYPES = {"file_upload", "text", "code", "quiz"}
SESSION_USER_KEYS = ("_id", "name", "firstName", "lastName", "email", "role", "avatar")

app = Flask(__name__, template_folder="templates", static_folder="static")
app.config["SECRET_KEY"] = PORTAL_SECRET_KEY
# Tests swap in an httpx.MockTransport here.
app.config.setdefault("LMS_TRANSPORT", None)

notification_hub = NotificationHub()
time_tracker = TimeTracker()

_grading_lock = threading.Lock()
_grading_in_flight: set[str] = set()


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)


def _json_ok(data: Any = None, message: str | None = None):
    payload = {"ok": True}
    if data is not None:
        payload["data"] = data
    if message:
        payload["message"] = message
    return jsonify(payload)


def _json_error(message: str, status_code: int = 400, **extra: Any):
    payload = {"ok": False, "error": message}
    payload.update(extra)
    return jsonify(payload), status_code


def _body() -> dict[str, Any]:
    return request.get_json(silent=True) or {}


def _new_client(token: str | None = None) -> LMSClient:
    return LMSClient(
        LMS_API_URL,
        token=token,
        timeout=LMS_HTTP_TIMEOUT_SEC,
        transport=app.config.get("LMS_TRANSPORT"),
    )


@contextmanager
def lms_conn():
    client = _new_client(session.get("token"))
    try:
        yield client
    finally:
        client.close()


def dashboard_path(role: str | None) -> str:
    return DASHBOARDS.get(role or "", "/dashboard")


def _current_user() -> dict[str, Any]:
    return session.get("user") or {}


def _user_id(user: dict[str, Any] | None = None) -> str:
    user = user if user is not None else _current_user()
    return str(user.get("_id") or user.get("id") or "")


def _tracker_key(course_id: str) -> str:
    return f"{_user_id()}:{course_id}"


def _session_user(user: dict[str, Any] | None) -> dict[str, Any]:
    user = user or {}
    slim = {k: user.get(k) for k in SESSION_USER_KEYS if user.get(k) is not None}
    if "_id" not in slim and user.get("id") is not None:
        slim["_id"] = user["id"]
    return slim


def _upload_from(field: str) -> tuple[str, Any, str] | None:
    storage = request.files.get(field)
    if not storage or not storage.filename:
        return None
    return (storage.filename, storage.read(), storage.mimetype or "application/octet-stream")


def role_required(*roles: str):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = _current_user()
            if not session.get("token") or not user:
                raise AuthenticationRequired()
            if roles and user.get("role") not in roles:
                raise PermissionDenied(redirect=dashboard_path(user.get("role")))
            return view(*args, **kwargs)
        return wrapper
    return decorator


login_required = role_required()
student_required = role_required("student")
tutor_required = role_required("tutor")


@app.errorhandler(LMSAPIError)
def _handle_lms_error(exc: LMSAPIError):
    extra = {}
    if isinstance(exc, PermissionDenied) and exc.redirect:
        extra["redirect"] = exc.redirect
    return _json_error(exc.message, exc.http_status, **extra)


def _start_session(result: dict[str, Any]) -> dict[str, Any]:
    user = _session_user(result.get("user"))
    session.clear()
    session["token"] = result.get("token")
    session["user"] = user
    live = False
    if LIVE_NOTIFICATIONS:
        live = notification_hub.connect(_user_id(user), result.get("token"))
    return {
        "user": user,
        "redirect": dashboard_path(user.get("role")),
        "liveNotifications": live,
    }

# ── Pages ─────────────────────────────────────────────────

@app.route("/")
def index():
    user = _current_user()
    return render_template(
        "index.html",
        user=user,
        dashboard=dashboard_path(user.get("role")) if user else "/login",
        track_interval=TRACK_INTERVAL_SEC,
    )


@app.route("/<path:path>")
def page(path: str):
    if path.startswith("api/"):
        return _json_error("Not found", 404)
    return index()


@app.route("/api/dashboard")
@login_required
def api_dashboard():
    role = _current_user().get("role")
    return _json_ok({"role": role, "redirect": dashboard_path(role)})

# ── Auth ──────────────────────────────────────────────────

@app.route("/api/auth/login", methods=["POST"])
def api_login():
    body = _body()
    email = str(body.get("email") or "").strip()
    password = str(body.get("password") or "")
    if not email or not password:
        return _json_error("Email and password are required", 400)

    with lms_conn() as client:
        result = client.login(email, password)
        data = _start_session(result)
    return _json_ok(data, "Logged in")


@app.route("/api/auth/register", methods=["POST"])
def api_register():
    body = _body()
    if not body.get("email") or not body.get("password"):
        return _json_error("Email and password are required", 400)

    with lms_conn() as client:
        result = client.register(body)
        data = _start_session(result)
    return _json_ok(data, "Account created")


@app.route("/api/auth/logout", methods=["POST"])
def api_logout():
    token = session.get("token")
    if token:
        with lms_conn() as client:
            client.logout()
        time_tracker.stop_prefix(f"{_user_id()}:")
        notification_hub.disconnect(token, _user_id())
    session.clear()
    return _json_ok(message="Logged out")


@app.route("/api/auth/me")
@login_required
def api_me():
    with lms_conn() as client:
        user = client.me()
    session["user"] = _session_user(user) or _current_user()
    return _json_ok({"user": user})


@app.route("/api/auth/profile", methods=["PUT"])
@login_required
def api_update_profile():
    with lms_conn() as client:
        user = client.update_profile(_body())
    session["user"] = {**_current_user(), **_session_user(user)}
    return _json_ok({"user": user}, "Profile updated")


@app.route("/api/auth/avatar", methods=["POST"])
@login_required
def api_upload_avatar():
    upload = _upload_from("avatar")
    if not upload:
        return _json_error("Choose an image to upload", 400)
    with lms_conn() as client:
        avatar = client.upload_avatar(upload)
    session["user"] = {**_current_user(), "avatar": avatar}
    return _json_ok({"avatar": avatar}, "Avatar updated")


@app.route("/api/auth/password", methods=["PUT"])
@login_required
def api_change_password():
    body = _body()
    current = str(body.get("currentPassword") or "")
    new = str(body.get("newPassword") or "")
    if not current or not new:
        return _json_error("Current and new password are required", 400)
    with lms_conn() as client:
        client.change_password(current, new)
    return _json_ok(message="Password changed")

# ── Courses ───────────────────────────────────────────────

@app.route("/api/courses")
def api_courses():
    page = max(1, _safe_int(request.args.get("page"), 1))
    filters = {key: request.args.get(key, "") for key in COURSE_FILTERS}
    with lms_conn() as client:
        courses, pagination = client.list_courses(page, COURSES_PAGE_SIZE, **filters)
    return _json_ok({
        "courses": courses,
        "pagination": pagination,
        "filters": {k: v for k, v in filters.items() if v},
    })


def _course_stats(course: dict[str, Any]) -> dict[str, Any]:
    rating = course.get("rating")
    if not isinstance(rating, dict):
        rating = {}
    average = rating.get("average")
    return {
        "duration": course.get("duration") or 0,
        "students": len(course.get("enrolledStudents") or []),
        "rating": f"{average:.1f}" if isinstance(average, (int, float)) else "0.0",
        "ratingCount": rating.get("count") or 0,
    }


@app.route("/api/courses/<course_id>")
def api_course_detail(course_id: str):
    with lms_conn() as client:
        course = client.get_course(course_id)
        modules = client.list_modules(course_id)
        reviews = client.course_reviews(course_id)
    return _json_ok({
        "course": course,
        "modules": modules,
        "reviews": reviews,
        "stats": _course_stats(course),
        "isEnrolled": bool(course.get("isEnrolled")),
        "forumUrl": f"/forums/course/{course_id}",
    })


@app.route("/api/courses/<course_id>/start", methods=["POST"])
@student_required
def api_course_start(course_id: str):
    player_url = f"/courses/{course_id}/learn"
    error = None
    with lms_conn() as client:
        course = client.get_course(course_id)
        if not course.get("isEnrolled"):
            try:
                client.enroll(course_id)
            except LMSAPIError as exc:
                # Still hand the learner to the player, as the detail page does.
                error = exc.message
    return _json_ok({"redirect": player_url, "enrolled": error is None}, error)


@app.route("/api/courses/<course_id>/enroll", methods=["DELETE"])
@student_required
def api_course_unenroll(course_id: str):
    with lms_conn() as client:
        client.unenroll(course_id)
    return _json_ok({"course_id": course_id}, "Unenrolled")


@app.route("/api/courses/<course_id>/reviews")
def api_course_reviews(course_id: str):
    with lms_conn() as client:
        reviews = client.course_reviews(course_id)
    return _json_ok(reviews)


@app.route("/api/courses/<course_id>/reviews", methods=["POST"])
@login_required
def api_course_review_create(course_id: str):
    body = _body()
    rating = _safe_int(body.get("rating"), 0)
    if rating < 1 or rating > 5:
        return _json_error("Rating must be between 1 and 5", 400)
    comment = str(body.get("comment") or "").strip()

    with lms_conn() as client:
        client.post_review(course_id, rating, comment)
        reviews = client.course_reviews(course_id)
    return _json_ok(reviews, "Review submitted")

# ── Course player ─────────────────────────────────────────

def _module_completion_for(client: LMSClient, course_id: str, assignments: list[dict]) -> dict[str, Any]:
    submissions = client.student_submissions(_user_id(), course_id)
    pairs = pair_assignments(assignments, submissions)
    return module_completion(pairs).as_dict()


@app.route("/api/player/<course_id>")
@login_required
def api_player(course_id: str):
    with lms_conn() as client:
        course = client.get_course(course_id)
        modules = client.list_modules(course_id)

        state = PlayerState(modules)
        state.select_module(state.module_index_for(request.args.get("module")))
        state.select_content(max(0, _safe_int(request.args.get("content"), 0)))
        state.seek(request.args.get("start"))

        module = state.active_module
        assignments: list[dict] = []
        completion = None
        if module and module.get("_id"):
            assignments = client.list_assignments(module["_id"])
            if _current_user().get("role") == "student":
                completion = _module_completion_for(client, course_id, assignments)

    tracking = False
    if module and module.get("_id") and _as_bool(request.args.get("track", "1")):
        tracking = True
        time_tracker.start(
            _tracker_key(course_id),
            _new_client(session.get("token")),
            course_id,
            str(module["_id"]),
        )

    data = state.render()
    data.update({
        "course": {"_id": course.get("_id") or course_id, "title": course.get("title") or "Course Player"},
        "assignments": [
            {
                "_id": a.get("_id"),
                "title": a.get("title"),
                "dueDate": a.get("dueDate"),
                "submitUrl": f"/assignments/{a.get('_id')}/submit",
            }
            for a in assignments
        ],
        "completion": completion,
        "tracking": tracking,
    })
    return _json_ok(data)


@app.route("/api/player/<course_id>/heartbeat", methods=["POST"])
@login_required
def api_player_heartbeat(course_id: str):
    alive = time_tracker.touch(_tracker_key(course_id))
    return _json_ok({"tracking": alive})


@app.route("/api/player/<course_id>/stop", methods=["POST"])
@login_required
def api_player_stop(course_id: str):
    stopped = time_tracker.stop(_tracker_key(course_id))
    return _json_ok({"stopped": stopped})


@app.route("/api/player/<course_id>/modules/<module_id>/complete", methods=["POST"])
@student_required
def api_module_complete(course_id: str, module_id: str):
    with lms_conn() as client:
        assignments = client.list_assignments(module_id)
        completion = _module_completion_for(client, course_id, assignments)
        if not completion["eligible"]:
            return _json_error(
                "Submit every assignment and wait for grading before completing this module",
                409,
                data=completion,
            )
        progress = client.complete_module(course_id, module_id)
    return _json_ok({"completion": completion, "progress": progress}, "Module completed")

# ── Student ───────────────────────────────────────────────

@app.route("/api/student/dashboard")
@student_required
def api_student_dashboard():
    with lms_conn() as client:
        me = client.me()
        submissions = client.student_submissions(_user_id())
    enrolled = me.get("enrolledCourses") or []
    return _json_ok({
        "enrolledCourses": enrolled,
        "stats": enrollment_stats(enrolled),
        "grades": grade_summary(submissions),
    })


@app.route("/api/student/grades")
@student_required
def api_student_grades():
    course_id = request.args.get("course_id") or None
    with lms_conn() as client:
        submissions = client.student_submissions(_user_id(), course_id)
    return _json_ok({"submissions": submissions, "summary": grade_summary(submissions)})


@app.route("/api/student/progress/<course_id>")
@student_required
def api_student_progress(course_id: str):
    with lms_conn() as client:
        progress = client.course_progress(course_id)
    return _json_ok(progress)


@app.route("/api/student/certificates")
@student_required
def api_student_certificates():
    with lms_conn() as client:
        me = client.me()
    return _json_ok(completed_certificates(me.get("enrolledCourses") or []))


@app.route("/api/student/certificates/<course_id>/download")
@student_required
def api_certificate_download(course_id: str):
    title = request.args.get("title") or course_id
    with lms_conn() as client:
        content = client.download_certificate(course_id)
    return send_file(
        io.BytesIO(content),
        mimetype="application/pdf",
        download_name=certificate_filename(title),
        as_attachment=True,
    )


@app.route("/api/assignments/<assignment_id>/submit", methods=["POST"])
@student_required
def api_assignment_submit(assignment_id: str):
    text = (request.form.get("textSubmission") or "").strip()
    uploads = [
        (f.filename, f.read(), f.mimetype or "application/octet-stream")
        for f in request.files.getlist("files")
        if f and f.filename
    ]
    if not text and not uploads:
        return _json_error("Add a text answer or at least one file", 400)

    with lms_conn() as client:
        submission = client.submit_assignment(assignment_id, text or None, uploads)
    return _json_ok(submission, "Assignment submitted")


@app.route("/api/modules/<module_id>/quiz")
@student_required
def api_module_quiz(module_id: str):
    with lms_conn() as client:
        quizzes = client.module_quizzes(module_id)
    if not quizzes:
        return _json_error("No quiz for this module", 404)
    quiz = quizzes[0]
    return _json_ok({"quiz": quiz, "answers": [None] * len(quiz.get("questions") or [])})


@app.route("/api/quizzes/<quiz_id>/attempt", methods=["POST"])
@student_required
def api_quiz_attempt(quiz_id: str):
    answers = _body().get("answers")
    if not isinstance(answers, list):
        return _json_error("answers must be a list", 400)
    with lms_conn() as client:
        result = client.attempt_quiz(quiz_id, answers)
    return _json_ok(result)

# ── Tutor ─────────────────────────────────────────────────

@app.route("/api/tutor/dashboard")
@tutor_required
def api_tutor_dashboard():
    with lms_conn() as client:
        courses, pagination = client.list_courses(1, COURSES_PAGE_SIZE, instructor=_user_id())
        analytics = client.tutor_analytics(_user_id(), "overview")
    return _json_ok({"courses": courses, "pagination": pagination, "analytics": analytics})


@app.route("/api/tutor/analytics/<section>")
@tutor_required
def api_tutor_analytics(section: str):
    with lms_conn() as client:
        data = client.tutor_analytics(_user_id(), section)
    return _json_ok(data)


@app.route("/api/tutor/courses", methods=["POST"])
@tutor_required
def api_course_create():
    body = _body()
    if not str(body.get("title") or "").strip():
        return _json_error("Course title is required", 400)
    with lms_conn() as client:
        course = client.create_course(body)
    return _json_ok(course, "Course created")


@app.route("/api/tutor/courses/<course_id>", methods=["PUT"])
@tutor_required
def api_course_update(course_id: str):
    with lms_conn() as client:
        course = client.update_course(course_id, _body())
    return _json_ok(course, "Course updated")


@app.route("/api/tutor/courses/<course_id>", methods=["DELETE"])
@tutor_required
def api_course_delete(course_id: str):
    with lms_conn() as client:
        client.delete_course(course_id)
    return _json_ok({"course_id": course_id}, "Course deleted")


@app.route("/api/tutor/courses/<course_id>/<image>", methods=["POST"])
@tutor_required
def api_course_image(course_id: str, image: str):
    if image not in {"thumbnail", "banner"}:
        return _json_error("Unknown image type", 404)
    upload = _upload_from(image)
    if not upload:
        return _json_error("Choose an image to upload", 400)
    with lms_conn() as client:
        if image == "thumbnail":
            url = client.upload_thumbnail(course_id, upload)
        else:
            url = client.upload_banner(course_id, upload)
    return _json_ok({image: url}, f"{image.capitalize()} uploaded")


@app.route("/api/tutor/courses/<course_id>/assignments")
@tutor_required
def api_tutor_assignments(course_id: str):
    module_id = request.args.get("module") or ""
    with lms_conn() as client:
        modules = client.list_modules(course_id)
        assignments = client.list_assignments(module_id) if module_id else []
    return _json_ok({"modules": modules, "assignments": assignments, "moduleId": module_id or None})


@app.route("/api/tutor/courses/<course_id>/assignments", methods=["POST"])
@tutor_required
def api_tutor_assignment_create(course_id: str):
    body = _body()
    module_id = str(body.get("moduleId") or "").strip()
    title = str(body.get("title") or "").strip()
    if not module_id or not title:
        return _json_error("moduleId and title are required", 400)

    atype = str(body.get("type") or "file_upload").strip()
    if atype not in ASSIGNMENT_TYPES:
        return _json_error("Invalid assignment type", 400)

    payload = {
        "courseId": course_id,
        "moduleId": module_id,
        "title": title,
        "description": body.get("description") or "",
        "instructions": body.get("instructions") or "",
        "type": atype,
        "dueDate": body.get("dueDate") or None,
        "maxPoints": max(1, _safe_int(body.get("maxPoints"), 100)),
    }
    with lms_conn() as client:
        created = client.create_assignment(payload)
        assignments = client.list_assignments(module_id)
    return _json_ok({"assignment": created, "assignments": assignments}, "Assignment created")


@app.route("/api/tutor/assignments/<assignment_id>", methods=["PUT"])
@tutor_required
def api_tutor_assignment_update(assignment_id: str):
    body = _body()
    changes = {k: body[k] for k in ("title", "description", "dueDate", "instructions", "maxPoints") if k in body}
    if not changes:
        return _json_error("Nothing to update", 400)
    with lms_conn() as client:
        assignment = client.update_assignment(assignment_id, changes)
    return _json_ok(assignment, "Updated")


@app.route("/api/tutor/assignments/<assignment_id>", methods=["DELETE"])
@tutor_required
def api_tutor_assignment_delete(assignment_id: str):
    with lms_conn() as client:
        client.delete_assignment(assignment_id)
    return _json_ok({"assignment_id": assignment_id}, "Assignment deleted")


@app.route("/api/tutor/assignments/<assignment_id>/publish", methods=["POST"])
@tutor_required
def api_tutor_assignment_publish(assignment_id: str):
    with lms_conn() as client:
        assignment = client.publish_assignment(assignment_id)
    return _json_ok(assignment, "Assignment published")


@app.route("/api/tutor/assignments/<assignment_id>/submissions")
@tutor_required
def api_tutor_assignment_submissions(assignment_id: str):
    with lms_conn() as client:
        submissions = client.assignment_submissions(assignment_id)
    return _json_ok([
        {**sub, "gradingStatus": submission_status(sub)} for sub in submissions
    ])


def _max_points(submission: dict[str, Any]) -> float:
    assignment = submission.get("assignmentId")
    if isinstance(assignment, dict) and assignment.get("maxPoints"):
        return assignment["maxPoints"]
    return 100


def _grading_view(submission: dict[str, Any]) -> dict[str, Any]:
    feedback = submission.get("feedback")
    return {
        "submission": submission,
        "maxPoints": _max_points(submission),
        "points": percentage_to_points(submission.get("gradePercentage"), _max_points(submission)),
        "feedback": feedback.get("general", "") if isinstance(feedback, dict) else (feedback or ""),
        "gradingStatus": submission_status(submission),
    }


@app.route("/api/tutor/submissions/<submission_id>")
@tutor_required
def api_tutor_submission(submission_id: str):
    with lms_conn() as client:
        submission = client.get_submission(submission_id)
    if not submission:
        return _json_error("Submission not found", 404)
    return _json_ok(_grading_view(submission))


@app.route("/api/tutor/submissions/<submission_id>/grade", methods=["POST"])
@tutor_required
def api_tutor_submission_grade(submission_id: str):
    body = _body()
    with _grading_lock:
        if submission_id in _grading_in_flight:
            return _json_error("This submission is already being graded", 409)
        _grading_in_flight.add(submission_id)

    try:
        with lms_conn() as client:
            submission = client.get_submission(submission_id)
            if not submission:
                return _json_error("Submission not found", 404)
            try:
                percentage = points_to_percentage(body.get("points"), _max_points(submission))
            except ValueError as exc:
                return _json_error(str(exc), 400)

            client.grade_submission(
                submission_id,
                percentage,
                {"general": str(body.get("feedback") or "")},
            )
            updated = client.get_submission(submission_id)
    finally:
        with _grading_lock:
            _grading_in_flight.discard(submission_id)

    return _json_ok(_grading_view(updated or submission), "Submission graded successfully!")


def _student_ref(enrollment: dict[str, Any]) -> Any:
    student = enrollment.get("student")
    if isinstance(student, dict):
        return student.get("_id")
    return student


@app.route("/api/tutor/courses/<course_id>/progress")
@tutor_required
def api_tutor_student_progress(course_id: str):
    with lms_conn() as client:
        enrollments = client.course_students(course_id)
        course = client.get_course(course_id)
        modules = course.get("modules") or []

        # One submissions call per assignment, shared by every learner.
        structure = []
        for module in modules:
            assignments = client.list_assignments(module["_id"]) if module.get("_id") else []
            rows = []
            for assignment in assignments:
                try:
                    subs = client.assignment_submissions(assignment["_id"])
                except LMSAPIError as exc:
                    logger.info("Submissions unavailable for %s: %s", assignment.get("_id"), exc.message)
                    subs = []
                rows.append((assignment, subs))
            structure.append((module, rows))

    students = []
    for enrollment in enrollments:
        student_id = _student_ref(enrollment)
        per_module: dict[str, dict[str, Any]] = {}
        for module, rows in structure:
            entries = []
            pairs = []
            for assignment, subs in rows:
                sub = find_student_submission(subs, student_id)
                pairs.append((assignment, sub))
                entries.append({
                    **assignment,
                    "submitted": sub is not None,
                    "submission": sub,
                    "status": submission_status(sub),
                })
            per_module[str(module.get("_id"))] = {
                "module": module,
                "assignments": entries,
                "completion": module_completion(pairs).as_dict(),
            }
        students.append({
            **enrollment,
            "submissions": per_module,
            "stats": student_assignment_stats(per_module),
        })

    return _json_ok({"modules": modules, "students": students})


@app.route("/api/tutor/certificates")
@tutor_required
def api_tutor_certificates():
    with lms_conn() as client:
        requests_ = client.certificate_requests()
    return _json_ok(requests_)


@app.route("/api/tutor/certificates/<request_id>/<decision>", methods=["POST"])
@tutor_required
def api_tutor_certificate_decision(request_id: str, decision: str):
    if decision not in {"approve", "reject"}:
        return _json_error("Unknown decision", 404)
    with lms_conn() as client:
        if decision == "approve":
            client.approve_certificate(request_id)
        else:
            client.reject_certificate(request_id)
    status = "approved" if decision == "approve" else "rejected"
    return _json_ok({"request_id": request_id, "status": status}, f"Certificate {status}")

# ── Forums ────────────────────────────────────────────────

@app.route("/api/forums/course/<course_id>")
@login_required
def api_forum_threads(course_id: str):
    with lms_conn() as client:
        threads = client.course_threads(course_id)
    return _json_ok(threads)


@app.route("/api/forums/course/<course_id>", methods=["POST"])
@login_required
def api_forum_thread_create(course_id: str):
    title = str(_body().get("title") or "").strip()
    if not title:
        return _json_error("Thread title is required", 400)
    with lms_conn() as client:
        client.create_thread(course_id, title)
        threads = client.course_threads(course_id)
    return _json_ok(threads, "Thread created")


@app.route("/api/forums/<thread_id>")
@login_required
def api_forum_thread(thread_id: str):
    with lms_conn() as client:
        thread = client.get_thread(thread_id)
    if not thread:
        return _json_error("Thread not found", 404)
    return _json_ok(thread)


@app.route("/api/forums/<thread_id>/reply", methods=["POST"])
@login_required
def api_forum_reply(thread_id: str):
    content = str(_body().get("content") or "").strip()
    if not content:
        return _json_error("Reply cannot be empty", 400)
    with lms_conn() as client:
        client.reply_thread(thread_id, content)
        thread = client.get_thread(thread_id)
    return _json_ok(thread, "Reply posted")

# ── Messages ──────────────────────────────────────────────

def _mark_mine(messages: list[dict], other_id: str) -> list[dict]:
    """Anything not sent by the other party is ours."""
    marked = []
    for m in messages:
        sender = m.get("from")
        if isinstance(sender, dict):
            sender = sender.get("_id")
        marked.append({**m, "mine": str(sender) != str(other_id)})
    return marked


@app.route("/api/messages")
@login_required
def api_conversations():
    with lms_conn() as client:
        conversations = client.conversations()
    return _json_ok(conversations)


@app.route("/api/messages/<user_id>")
@login_required
def api_conversation(user_id: str):
    with lms_conn() as client:
        messages = client.messages_with(user_id)
    return _json_ok(_mark_mine(messages, user_id))


@app.route("/api/messages/<user_id>", methods=["POST"])
@login_required
def api_message_send(user_id: str):
    content = str(_body().get("content") or "").strip()
    if not content:
        return _json_error("Message cannot be empty", 400)
    with lms_conn() as client:
        client.send_message(user_id, content)
        messages = client.messages_with(user_id)
    return _json_ok(_mark_mine(messages, user_id), "Message sent")

# ── Notifications ─────────────────────────────────────────

@app.route("/api/notifications")
@login_required
def api_notifications():
    unread = _as_bool(request.args.get("unread"))
    limit = max(1, min(100, _safe_int(request.args.get("limit"), NOTIFICATIONS_PAGE_SIZE)))
    with lms_conn() as client:
        page = client.list_notifications(unread=unread, limit=limit)
    feed = notification_hub.feed(_user_id())
    feed.set_list(page["items"], page["unreadCount"], page["nextCursor"])
    return _json_ok(feed.snapshot())


@app.route("/api/notifications/more", methods=["POST"])
@login_required
def api_notifications_more():
    feed = notification_hub.feed(_user_id())
    if not feed.next_cursor:
        return _json_ok(feed.snapshot())
    with lms_conn() as client:
        page = client.list_notifications(cursor=feed.next_cursor)
    feed.append_list(page["items"], page["nextCursor"])
    return _json_ok(feed.snapshot())


@app.route("/api/notifications/seen", methods=["POST"])
@login_required
def api_notifications_seen():
    with lms_conn() as client:
        client.mark_seen()
    return _json_ok(message="Notifications marked as seen")


@app.route("/api/notifications/read", methods=["POST"])
@login_required
def api_notifications_read():
    ids = _body().get("ids")
    if not isinstance(ids, list) or not ids:
        return _json_error("Select at least one notification", 400)
    with lms_conn() as client:
        client.mark_read(ids)
    feed = notification_hub.feed(_user_id())
    feed.mark_read(ids)
    return _json_ok(feed.snapshot())


@app.route("/api/notifications/live")
@login_required
def api_notifications_live():
    feed = notification_hub.feed(_user_id())
    data = feed.snapshot()
    data["connected"] = notification_hub.is_connected(session.get("token"))
    return _json_ok(data)


def run():
    app.run(host=PORTAL_HOST, port=PORTAL_PORT, debug=True)


if __name__ == "__main__":
    run()
