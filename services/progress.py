"""
services/progress.py

Completion and grade roll-ups computed from API payloads.

The one rule with real branching is module completion: a learner may mark a
module complete only when every assignment in it has a submission from that
learner and the submission has been graded.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

GRADED = "graded"
SUBMITTED = "submitted"
NOT_SUBMITTED = "not-submitted"


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _ref_id(value: Any) -> str:
    """A reference may arrive populated ({"_id": ...}) or as a bare id."""
    if isinstance(value, dict):
        value = value.get("_id")
    return "" if value is None else str(value)


def is_graded(submission: Optional[dict]) -> bool:
    if not submission:
        return False
    return submission.get("status") == GRADED or submission.get("grade") is not None


def submission_status(submission: Optional[dict]) -> str:
    if not submission:
        return NOT_SUBMITTED
    return GRADED if is_graded(submission) else SUBMITTED


def find_student_submission(submissions: Iterable[dict], student_id: Any) -> Optional[dict]:
    wanted = _ref_id(student_id)
    if not wanted:
        return None
    return best_submission(
        sub for sub in submissions or [] if _ref_id(sub.get("studentId")) == wanted
    )

# ── Module completion ─────────────────────────────────────

@dataclass
class ModuleCompletion:
    eligible: bool
    total: int
    submitted: int
    graded: int
    blocking: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "eligible": self.eligible,
            "total": self.total,
            "submitted": self.submitted,
            "graded": self.graded,
            "blocking": list(self.blocking),
        }


def module_completion(pairs: Iterable[tuple[dict, Optional[dict]]]) -> ModuleCompletion:
    """Evaluate (assignment, submission-or-None) pairs for one module.

    A module with no assignments is eligible.
    """
    total = submitted = graded = 0
    blocking: list[str] = []
    for assignment, submission in pairs:
        total += 1
        if submission:
            submitted += 1
        if is_graded(submission):
            graded += 1
        else:
            blocking.append(str(assignment.get("title") or assignment.get("_id") or "Untitled"))
    return ModuleCompletion(
        eligible=not blocking,
        total=total,
        submitted=submitted,
        graded=graded,
        blocking=blocking,
    )


def can_complete_module(pairs: Iterable[tuple[dict, Optional[dict]]]) -> bool:
    return module_completion(pairs).eligible


def best_submission(candidates: Iterable[dict]) -> Optional[dict]:
    """Pick one of several submissions for the same assignment.

    A graded one wins over an ungraded one; ties go to the newest by
    ``submittedAt``, then ``createdAt``. Missing timestamps sort oldest.
    """
    best = None
    best_key = None
    for sub in candidates or []:
        key = (is_graded(sub), str(sub.get("submittedAt") or sub.get("createdAt") or ""))
        if best_key is None or key > best_key:
            best, best_key = sub, key
    return best


def pair_assignments(
    assignments: Iterable[dict],
    submissions: Iterable[dict],
    student_id: Any = None,
) -> list[tuple[dict, Optional[dict]]]:
    """Match each assignment with the learner's own submission, if any.

    ``submissions`` may be the learner's own list (assignmentId per row) or,
    with ``student_id`` given, every submission for the assignments.
    """
    by_assignment: dict[str, list[dict]] = {}
    for sub in submissions or []:
        by_assignment.setdefault(_ref_id(sub.get("assignmentId")), []).append(sub)

    wanted = _ref_id(student_id) if student_id is not None else None
    pairs = []
    for assignment in assignments or []:
        candidates = by_assignment.get(_ref_id(assignment.get("_id")), [])
        if wanted is not None:
            candidates = [s for s in candidates if _ref_id(s.get("studentId")) == wanted]
        pairs.append((assignment, best_submission(candidates)))
    return pairs

# ── Learner roll-ups ──────────────────────────────────────

def student_assignment_stats(modules_map: dict[str, dict]) -> dict[str, int]:
    """Count assignments across ``{module_id: {"assignments": [...]}}``."""
    total = submitted = graded = 0
    for module_data in modules_map.values():
        for assignment in module_data.get("assignments", []):
            total += 1
            sub = assignment.get("submission")
            if assignment.get("submitted") or sub:
                submitted += 1
            if sub and sub.get("grade") is not None:
                graded += 1
    return {
        "totalAssignments": total,
        "submittedAssignments": submitted,
        "gradedAssignments": graded,
    }


def grade_summary(submissions: Iterable[dict]) -> dict[str, int]:
    items = list(submissions or [])
    graded = [s for s in items if s.get("status") == GRADED]
    average = (
        round(sum(_safe_float(s.get("gradePercentage")) for s in graded) / len(graded))
        if graded else 0
    )
    return {"total": len(items), "graded": len(graded), "average": average}


def _enrollment_course(enrollment: dict) -> dict:
    course = enrollment.get("course")
    return course if isinstance(course, dict) else enrollment


def enrollment_stats(enrolled_courses: Iterable[dict]) -> dict[str, int | float]:
    enrollments = list(enrolled_courses or [])
    total = len(enrollments)
    completed = sum(1 for e in enrollments if _safe_float(e.get("progress")) >= 100)
    time_spent = sum(_safe_float(_enrollment_course(e).get("duration")) for e in enrollments)
    progress_sum = sum(_safe_float(e.get("progress")) for e in enrollments)
    return {
        "enrolled": total,
        "completed": completed,
        "timeSpent": time_spent,
        "certificates": completed,
        "overallProgress": round(progress_sum / total) if total else 0,
    }


def completed_certificates(enrolled_courses: Iterable[dict]) -> list[dict[str, Any]]:
    certificates = []
    for enrollment in enrolled_courses or []:
        progress = _safe_float(enrollment.get("progress"))
        if progress < 100:
            continue
        course = _enrollment_course(enrollment)
        certificates.append({
            "id": course.get("_id"),
            "courseTitle": course.get("title"),
            "courseDescription": course.get("description"),
            "instructor": course.get("instructor"),
            "completedAt": enrollment.get("completedAt"),
            "progress": progress or 100,
            "category": course.get("category"),
            "duration": course.get("duration"),
        })
    return certificates

# ── Grading scale ─────────────────────────────────────────

def points_to_percentage(points: Any, max_points: Any = 100) -> float:
    """Tutors grade in points; the API stores 0-100."""
    try:
        value = float(points)
    except (TypeError, ValueError) as exc:
        raise ValueError("Please enter a valid grade") from exc
    maximum = _safe_float(max_points, 100.0) or 100.0
    if value < 0 or value > maximum:
        raise ValueError(f"Grade must be between 0 and {maximum:g}")
    return value / maximum * 100


def percentage_to_points(percentage: Any, max_points: Any = 100) -> int | None:
    if percentage is None or percentage == "":
        return None
    maximum = _safe_float(max_points, 100.0) or 100.0
    return round(_safe_float(percentage) / 100 * maximum)
