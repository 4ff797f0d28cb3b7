"""
Lesson progress, course view models and certificate eligibility.

A progress document is keyed by (user_id, course_id) and holds the ids of the
completed lessons plus a derived ``percentage``.  Completions are recorded with
a single upsert using ``$addToSet`` so concurrent calls for the same lesson
cannot double count, and the percentage is only ever raised with ``$max``.

A certificate is *available* only when the percentage is exactly 100 and the
``certificate_issued`` flag has been set by an explicit issuance step.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo import ReturnDocument
from pymongo.database import Database

import activity
from config import settings
from database import to_object_id

logger = logging.getLogger(__name__)

DEFAULT_LESSON_MINUTES = 10


# ---------- Pure helpers ----------
def compute_percentage(completed_count: int, total_lessons: int) -> int:
    """floor(completed / total * 100), clamped to 0..100. A course without lessons is 0%."""
    if total_lessons <= 0:
        return 0
    return max(0, min(100, completed_count * 100 // total_lessons))


def sorted_lessons(course: dict) -> List[dict]:
    return sorted(course.get("lessons") or [], key=lambda lesson: lesson.get("order") or 0)


def lesson_ids(course: dict) -> List[str]:
    return [str(lesson["_id"]) for lesson in sorted_lessons(course)]


def lesson_minutes(lesson: dict) -> int:
    return lesson.get("duration") or DEFAULT_LESSON_MINUTES


def total_duration_minutes(lessons: Iterable[dict]) -> int:
    return sum(lesson_minutes(lesson) for lesson in lessons)


def format_duration(total_minutes: int) -> str:
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def select_badge(is_enrolled: bool, percentage: int) -> Optional[str]:
    if percentage >= 100:
        return "Completed"
    if is_enrolled and percentage > 0:
        return "In Progress"
    if is_enrolled:
        return "Enrolled"
    return None


def format_date(value: Optional[datetime]) -> Optional[str]:
    """October 19, 2026"""
    if value is None:
        return None
    return f"{value:%B} {value.day}, {value.year}"


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def is_certificate_available(progress: Optional[dict]) -> bool:
    if not progress:
        return False
    return progress.get("percentage", 0) == 100 and progress.get("certificate_issued") is True


def completed_lesson_count(course: dict, progress: Optional[dict]) -> int:
    if not progress:
        return 0
    return len(set(progress.get("lessons_completed") or []) & set(lesson_ids(course)))


def certificate_id_for(user_id: ObjectId, course_id: ObjectId) -> str:
    return f"{user_id}-{course_id}"


def parse_certificate_id(certificate_id: str) -> Optional[Tuple[str, str]]:
    parts = certificate_id.split("-")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


# ---------- View models ----------
def lesson_view(lesson: dict) -> dict:
    return {
        "id": str(lesson["_id"]),
        "title": lesson.get("title", ""),
        "videoUrl": lesson.get("video_url", ""),
        "textContent": lesson.get("text_content", ""),
        "duration": lesson_minutes(lesson),
        "order": lesson.get("order", 0),
    }


def build_course_view(course: dict, purchase: Optional[dict] = None, progress: Optional[dict] = None,
                      detailed: bool = False) -> dict:
    lessons = sorted_lessons(course)
    is_enrolled = bool(purchase and purchase.get("status") == "completed")
    percentage = progress.get("percentage", 0) if progress else 0

    view = {
        "id": str(course["_id"]),
        "title": course["title"],
        "slug": course["slug"],
        "description": course.get("description", ""),
        "thumbnail": course.get("thumbnail", ""),
        "icon": course.get("icon", "📚"),
        "progress": percentage,
        "isEnrolled": is_enrolled,
        "isCompleted": percentage == 100,
        "badge": select_badge(is_enrolled, percentage),
        "duration": format_duration(total_duration_minutes(lessons)),
        "difficulty": course.get("difficulty", "Intermediate"),
        "modules": [lesson.get("title", "") for lesson in lessons],
        "instructor": course.get("instructor", "LearnHQ Team"),
        "price": course.get("price", 0),
        "originalPrice": course.get("original_price"),
        "rating": course.get("rating", 4.8),
        "students": course.get("enrollment_count", 0),
    }
    if detailed:
        view.update({
            "lessons": [lesson_view(lesson) for lesson in lessons],
            "lessonsCompleted": list(progress.get("lessons_completed", [])) if progress else [],
            "completedAt": isoformat(progress.get("completed_at")) if progress else None,
            "certificateIssued": bool(progress and progress.get("certificate_issued")),
        })
    return view


def build_certificate_view(course: dict, purchase: dict, progress: Optional[dict]) -> dict:
    return {
        "id": str(course["_id"]),
        "courseName": course["title"],
        "completedDate": format_date(progress.get("completed_at")) if progress else None,
        "available": is_certificate_available(progress),
        "progress": progress.get("percentage", 0) if progress else 0,
        "lessonsCompleted": completed_lesson_count(course, progress),
        "totalLessons": len(course.get("lessons") or []),
        "purchaseDate": format_date(purchase.get("paid_at") or purchase.get("created_at")),
        "certificateIssued": bool(progress and progress.get("certificate_issued")),
    }


def order_certificates(rows: List[Tuple[dict, Optional[datetime]]]) -> List[dict]:
    """Available first, then most recently completed, then furthest along.

    ``rows`` pairs each certificate view with its raw completion timestamp.
    """
    rows = sorted(rows, key=lambda row: row[0]["progress"], reverse=True)
    rows = sorted(rows, key=lambda row: row[1] or datetime.min, reverse=True)
    rows = sorted(rows, key=lambda row: row[0]["available"], reverse=True)
    return [view for view, _ in rows]


def build_learning_view(course: dict, progress: Optional[dict], requested_lesson_id: Optional[str] = None) -> dict:
    lessons = sorted_lessons(course)
    completed = set(progress.get("lessons_completed") or []) if progress else set()
    first_incomplete = next(
        (index for index, lesson in enumerate(lessons) if str(lesson["_id"]) not in completed), None
    )

    views = []
    for index, lesson in enumerate(lessons):
        view = lesson_view(lesson)
        view["duration"] = f"{lesson_minutes(lesson)}:00"
        view["isCompleted"] = view["id"] in completed
        view["isLocked"] = first_incomplete is not None and index > first_incomplete
        views.append(view)

    current_index = None
    if requested_lesson_id:
        current_index = next(
            (i for i, view in enumerate(views) if view["id"] == requested_lesson_id and not view["isLocked"]), None
        )
    if current_index is None:
        current_index = first_incomplete if first_incomplete is not None else 0

    current = views[current_index] if views else None
    percentage = progress.get("percentage", 0) if progress else 0
    return {
        "course": {
            "id": str(course["_id"]),
            "title": course["title"],
            "slug": course["slug"],
            "description": course.get("description", ""),
            "instructor": course.get("instructor", "LearnHQ Team"),
        },
        "lessons": views,
        "currentLesson": current,
        "previousLessonId": views[current_index - 1]["id"] if views and current_index > 0 else None,
        "nextLessonId": views[current_index + 1]["id"] if views and current_index + 1 < len(views) else None,
        "progress": {
            "percentage": percentage,
            "lessonsCompleted": len(completed & {view["id"] for view in views}),
            "totalLessons": len(views),
            "isCompleted": percentage == 100,
            "certificateIssued": bool(progress and progress.get("certificate_issued")),
        },
    }


# ---------- Storage operations ----------
def ensure_progress(database: Database, user_id: ObjectId, course_id: ObjectId) -> dict:
    now = datetime.utcnow()
    return database["progress"].find_one_and_update(
        {"user_id": user_id, "course_id": course_id},
        {"$setOnInsert": {
            "lessons_completed": [],
            "percentage": 0,
            "completed_at": None,
            "certificate_issued": False,
            "last_accessed_at": None,
            "created_at": now,
            "updated_at": now,
        }},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def touch_last_accessed(database: Database, user_id: ObjectId, course_id: ObjectId) -> dict:
    now = datetime.utcnow()
    return database["progress"].find_one_and_update(
        {"user_id": user_id, "course_id": course_id},
        {
            "$set": {"last_accessed_at": now, "updated_at": now},
            "$setOnInsert": {
                "lessons_completed": [],
                "percentage": 0,
                "completed_at": None,
                "certificate_issued": False,
                "created_at": now,
            },
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _mark_completed_once(database: Database, progress: dict, user_id: ObjectId, course: dict,
                         now: datetime) -> dict:
    result = database["progress"].update_one(
        {"_id": progress["_id"], "completed_at": None},
        {"$set": {"completed_at": now, "updated_at": now}},
    )
    if result.modified_count:
        progress["completed_at"] = now
        logger.info("User %s completed course %s", user_id, course["_id"])
        activity.course_completed(database, user_id, course)
    return progress


def record_lesson_completion(database: Database, user: dict, course_id: Optional[str],
                             lesson_id: Optional[str]) -> dict:
    """Add ``lesson_id`` to the caller's completed set and raise the percentage.

    Re-completing a lesson leaves both the set and the percentage unchanged.
    """
    if not course_id or not lesson_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing courseId or lessonId")

    course_oid = to_object_id(course_id)
    course = database["course"].find_one({"_id": course_oid}) if course_oid else None
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")

    ids = lesson_ids(course)
    if lesson_id not in ids:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lesson not found")

    now = datetime.utcnow()
    progress = database["progress"].find_one_and_update(
        {"user_id": user["_id"], "course_id": course["_id"]},
        {
            "$addToSet": {"lessons_completed": lesson_id},
            "$set": {"last_accessed_at": now, "updated_at": now},
            "$setOnInsert": {
                "percentage": 0,
                "completed_at": None,
                "certificate_issued": False,
                "created_at": now,
            },
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )

    percentage = compute_percentage(completed_lesson_count(course, progress), len(ids))
    if percentage > progress.get("percentage", 0):
        progress = database["progress"].find_one_and_update(
            {"_id": progress["_id"]},
            {"$max": {"percentage": percentage}},
            return_document=ReturnDocument.AFTER,
        )

    if progress["percentage"] == 100 and progress.get("completed_at") is None:
        progress = _mark_completed_once(database, progress, user["_id"], course, now)
    return progress


def mark_certificate_issued(database: Database, progress: dict, user_id: ObjectId, course: dict) -> dict:
    """Flip the issued flag once; only the call that flips it records an activity."""
    now = datetime.utcnow()
    result = database["progress"].update_one(
        {"_id": progress["_id"], "certificate_issued": {"$ne": True}},
        {"$set": {"certificate_issued": True, "certificate_issued_at": now, "updated_at": now}},
    )
    progress["certificate_issued"] = True
    if result.modified_count:
        logger.info("Certificate issued to user %s for course %s", user_id, course["_id"])
        activity.certificate_issued(database, user_id, course)
    return progress


def issue_certificate(database: Database, user_id: ObjectId, course: dict, force: bool = False) -> dict:
    """Explicit issuance step. ``force`` completes every lesson first."""
    progress = ensure_progress(database, user_id, course["_id"])
    if force:
        now = datetime.utcnow()
        progress = database["progress"].find_one_and_update(
            {"_id": progress["_id"]},
            {"$set": {"lessons_completed": lesson_ids(course), "percentage": 100, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if progress.get("completed_at") is None:
            progress = _mark_completed_once(database, progress, user_id, course, now)
    elif progress.get("percentage", 0) < 100:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Course not completed. Use forceIssue=true to override.",
        )
    return mark_certificate_issued(database, progress, user_id, course)


def verify_certificate(database: Database, certificate_id: str) -> dict:
    """Public check of a ``{userId}-{courseId}`` certificate id.

    Failures carry ``{"valid": False, "error": ...}`` as the exception detail.
    """
    parsed = parse_certificate_id(certificate_id)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail={"valid": False, "error": "Invalid certificate ID format"})

    not_found = HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                              detail={"valid": False, "error": "Certificate not found or not issued"})
    user_oid, course_oid = (to_object_id(part) for part in parsed)
    if user_oid is None or course_oid is None:
        raise not_found

    user = database["user"].find_one({"_id": user_oid})
    course = database["course"].find_one({"_id": course_oid})
    progress = database["progress"].find_one({"user_id": user_oid, "course_id": course_oid})
    if user is None or course is None or progress is None:
        raise not_found
    if progress.get("percentage", 0) < 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail={"valid": False, "error": "Course not completed"})
    if not is_certificate_available(progress):
        raise not_found

    return {
        "certificateId": certificate_id,
        "studentName": user["name"],
        "studentEmail": user["email"],
        "courseName": course["title"],
        "completedDate": format_date(progress.get("completed_at")),
        "issuedDate": format_date(progress.get("certificate_issued_at") or progress.get("updated_at")),
        "verificationUrl": f"{settings.SITE_URL}/certificates/verify/{certificate_id}",
    }
