import logging
import re
from datetime import datetime, timedelta
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import activity
import coupons
import payments
import progress
from database import create_document, get_db, naive_utc, to_object_id
from dependencies import require_admin
from routers.auth import register_user
from schemas import Coupon, Course, Lesson
from security import generate_password

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])

STATUS_LABELS = {"published": "Published", "draft": "Draft", "archived": "Archived"}


# ---------- Request bodies ----------
class LessonInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    title: str = ""
    video_url: str = Field("", alias="videoUrl")
    text_content: str = Field("", alias="textContent")
    duration: int = Field(10, ge=0)
    order: Optional[int] = None


class CourseCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    icon: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, alias="originalPrice", ge=0)
    lessons: Optional[List[LessonInput]] = None
    difficulty: Literal["Beginner", "Intermediate", "Advanced"] = "Intermediate"
    instructor: Optional[str] = None
    status: Literal["draft", "published", "archived"] = "draft"
    requires_completion_for_download: bool = Field(False, alias="requiresCompletionForDownload")


class CourseUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    icon: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, alias="originalPrice", ge=0)
    lessons: Optional[List[LessonInput]] = None
    difficulty: Optional[Literal["Beginner", "Intermediate", "Advanced"]] = None
    instructor: Optional[str] = None
    status: Optional[Literal["draft", "published", "archived"]] = None
    requires_completion_for_download: Optional[bool] = Field(None, alias="requiresCompletionForDownload")


class EnrolUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    referral_code: Optional[str] = Field(None, alias="referralCode")
    course_ids: List[str] = Field(default_factory=list, alias="courseIds")


class CourseEnrolRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    course_ids: List[str] = Field(..., min_length=1, alias="courseIds")


class DeleteUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = None
    force_delete: bool = Field(False, alias="forceDelete")


class CouponCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(..., min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_-]+$")
    type: Literal["percentage", "fixed"]
    value: float = Field(..., ge=0)
    message: str = ""
    usage_limit: Optional[int] = Field(None, alias="usageLimit", ge=1)
    single_use: bool = Field(False, alias="singleUse")
    applicable_courses: List[str] = Field(default_factory=list, alias="applicableCourses")
    minimum_amount: float = Field(0, alias="minimumAmount", ge=0)
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")


class CouponStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")
    message: Optional[str] = None


# ---------- Helpers ----------
def _oid_or_404(value: str, what: str) -> ObjectId:
    oid = to_object_id(value)
    if oid is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")
    return oid


def _user_or_404(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": _oid_or_404(user_id, "User")})
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _course_or_404(db: Database, course_id: str) -> dict:
    course = db["course"].find_one({"_id": _oid_or_404(course_id, "Course")})
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    return course


def _pagination(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit
    return {"page": page, "limit": limit, "total": total, "pages": pages,
            "hasNext": page < pages, "hasPrev": page > 1}


def _search(term: str, *fields: str) -> dict:
    pattern = {"$regex": re.escape(term), "$options": "i"}
    return {"$or": [{field: pattern} for field in fields]}


def _build_lessons(items: List[LessonInput]) -> List[dict]:
    lessons = []
    for index, item in enumerate(items):
        lesson = Lesson(
            title=item.title,
            video_url=item.video_url,
            text_content=item.text_content,
            duration=item.duration,
            order=item.order if item.order is not None else index + 1,
        )
        if item.id and to_object_id(item.id):
            lesson.id = to_object_id(item.id)
        lessons.append(lesson.model_dump(by_alias=True))
    return lessons


def _completed_counts(db: Database, field: str, ids: List[ObjectId]) -> dict:
    counts = {}
    for purchase in db["purchase"].find({field: {"$in": ids}, "status": "completed"}, {field: 1}):
        counts[purchase[field]] = counts.get(purchase[field], 0) + 1
    return counts


def admin_course_view(course: dict, students: int) -> dict:
    return {
        "id": str(course["_id"]),
        "title": course["title"],
        "slug": course["slug"],
        "price": course.get("price", 0),
        "students": students,
        "lessons": len(course.get("lessons") or []),
        "status": STATUS_LABELS.get(course.get("status"), "Draft"),
        "createdAt": course["created_at"].date().isoformat() if course.get("created_at") else None,
    }


def change_percent(current: float, previous: float) -> str:
    if previous == 0:
        return "+100%"
    change = (current - previous) / previous * 100
    return f"{'+' if change >= 0 else ''}{change:.1f}%"


def time_ago(value: datetime, now: datetime) -> str:
    elapsed = now - value
    hours = int(elapsed.total_seconds() // 3600)
    if hours < 1:
        return f"{int(elapsed.total_seconds() // 60)} minutes ago"
    if hours < 24:
        return f"{hours} hours ago"
    days = hours // 24
    return "1 day ago" if days == 1 else f"{days} days ago"


# ---------- Dashboard ----------
def _revenue(db: Database, since: Optional[datetime] = None) -> float:
    query = {"status": "completed"}
    if since:
        query["paid_at"] = {"$gte": since}
    return round(sum(p.get("amount", 0) for p in db["purchase"].find(query, {"amount": 1})), 2)


@router.get("/dashboard")
def dashboard(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db)):
    now = datetime.utcnow()
    month_ago = now - timedelta(days=30)

    total_users = db["user"].count_documents({})
    total_courses = db["course"].count_documents({"status": "published"})
    revenue = _revenue(db)
    active_students = len(db["purchase"].distinct("user_id", {"status": "completed"}))

    new_users = db["user"].count_documents({"created_at": {"$gte": month_ago}})
    new_courses = db["course"].count_documents({"status": "published", "created_at": {"$gte": month_ago}})
    new_revenue = _revenue(db, month_ago)
    new_students = len(db["purchase"].distinct("user_id", {"status": "completed", "paid_at": {"$gte": month_ago}}))

    total_activities = db["activity"].count_documents({})
    recent = list(db["activity"].find().sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    names = {u["_id"]: u["name"] for u in db["user"].find({"_id": {"$in": [a["user_id"] for a in recent]}}, {"name": 1})}

    feed = []
    for entry in recent:
        course_title = (entry.get("data") or {}).get("course_title", "a course")
        if entry["type"] == "course_purchased":
            kind, action = "purchase", f"purchased {course_title}"
        elif entry["type"] == "course_completed":
            kind, action = "completion", f"completed {course_title}"
        else:
            kind, action = "activity", entry["message"]
        feed.append({
            "type": kind,
            "user": names.get(entry["user_id"], "Unknown User"),
            "action": action,
            "time": time_ago(entry["created_at"], now) if entry.get("created_at") else None,
        })

    return {
        "success": True,
        "data": {
            "totalUser": total_users,
            "activeStudents": active_students,
            "totalCourses": total_courses,
            "totalRevenue": revenue,
            "metricsChange": {
                "totalUser": change_percent(total_users, total_users - new_users),
                "activeStudents": change_percent(active_students, active_students - new_students),
                "totalCourses": change_percent(total_courses, total_courses - new_courses),
                "totalRevenue": change_percent(revenue, revenue - new_revenue),
            },
            "recentActivity": feed,
            "pagination": {"page": page, "limit": limit, "totalActivities": total_activities,
                           "totalPages": (total_activities + limit - 1) // limit},
        },
    }


# ---------- Users ----------
@router.get("/users")
def list_users(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
               role: Optional[Literal["student", "admin"]] = None, search: Optional[str] = None,
               simple: bool = False, db: Database = Depends(get_db)):
    query = {}
    if role:
        query["role"] = role
    if search:
        query.update(_search(search, "name", "email"))

    if simple:
        users = db["user"].find(query, {"name": 1, "email": 1}).sort("name", 1)
        return {"success": True, "data": [{"id": str(u["_id"]), "name": u["name"], "email": u["email"]} for u in users]}

    total = db["user"].count_documents(query)
    users = list(db["user"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    enrolled = _completed_counts(db, "user_id", [u["_id"] for u in users])
    data = [{
        "id": str(u["_id"]),
        "name": u["name"],
        "email": u["email"],
        "role": u.get("role", "student"),
        "referralCode": u.get("referral_code"),
        "referralEarnings": u.get("referral_earnings", 0),
        "coursesEnrolled": enrolled.get(u["_id"], 0),
        "joinedAt": u["created_at"].date().isoformat() if u.get("created_at") else None,
    } for u in users]
    return {"success": True, "data": {"users": data, "pagination": _pagination(page, limit, total)}}


@router.get("/users/progress/{user_id}")
def user_progress(user_id: str, db: Database = Depends(get_db)):
    user = _user_or_404(db, user_id)
    purchases = list(db["purchase"].find({"user_id": user["_id"], "status": "completed"}))
    course_ids = [p["course_id"] for p in purchases]
    courses = {c["_id"]: c for c in db["course"].find({"_id": {"$in": course_ids}})}
    records = {p["course_id"]: p for p in db["progress"].find({"user_id": user["_id"], "course_id": {"$in": course_ids}})}

    enrolments = []
    for purchase in purchases:
        course = courses.get(purchase["course_id"])
        if course is None:
            continue
        record = records.get(course["_id"])
        enrolments.append({
            "courseId": str(course["_id"]),
            "courseTitle": course["title"],
            "progress": record.get("percentage", 0) if record else 0,
            "lessonsCompleted": progress.completed_lesson_count(course, record),
            "totalLessons": len(course.get("lessons") or []),
            "completedAt": progress.isoformat(record.get("completed_at")) if record else None,
            "certificateIssued": bool(record and record.get("certificate_issued")),
            "lastAccessedAt": progress.isoformat(record.get("last_accessed_at")) if record else None,
            "purchasedAt": progress.isoformat(purchase.get("paid_at")),
        })
    return {
        "success": True,
        "data": {
            "user": {"id": str(user["_id"]), "name": user["name"], "email": user["email"]},
            "courses": enrolments,
        },
    }


@router.post("/users/enrol", status_code=status.HTTP_201_CREATED)
def enrol_new_user(body: EnrolUserRequest, db: Database = Depends(get_db)):
    courses = [_course_or_404(db, course_id) for course_id in body.course_ids]
    password = generate_password()
    user = register_user(db, body.name, body.email, password, body.referral_code)
    for course in courses:
        payments.enroll(db, user, course, 0, {"enrolled_by_admin": True}, provider="admin")
    # Welcome mail is not sent from here; the admin hands over the temporary password.
    logger.info("Admin created user %s with %d enrolments", user["_id"], len(courses))
    return {
        "success": True,
        "message": "User created successfully",
        "data": {
            "id": str(user["_id"]),
            "name": user["name"],
            "email": user["email"],
            "referralCode": user["referral_code"],
            "temporaryPassword": password,
            "enrolledCourses": [str(c["_id"]) for c in courses],
        },
    }


@router.delete("/delete-user/{user_id}")
def delete_user(user_id: str, body: Optional[DeleteUserRequest] = None, db: Database = Depends(get_db),
                admin: dict = Depends(require_admin)):
    body = body or DeleteUserRequest()
    target = _user_or_404(db, user_id)
    if target["_id"] == admin["_id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own admin account")
    if target.get("role") == "admin" and not body.force_delete:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Cannot delete admin accounts without force flag")

    purchases = db["purchase"].count_documents({"user_id": target["_id"], "status": "completed"})
    earnings = target.get("referral_earnings", 0)
    if (purchases > 0 or earnings > 0) and not body.force_delete:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "User has active purchases or referral earnings. Use forceDelete=true to override.",
                "code": "ACTIVE_DATA_EXISTS",
                "data": {"purchases": purchases, "referralEarnings": earnings},
            },
        )

    for collection in ("progress", "activity", "purchase", "review"):
        db[collection].delete_many({"user_id": target["_id"]})
    db["user"].delete_one({"_id": target["_id"]})
    logger.info("Admin %s deleted user %s (%s): %s", admin["_id"], target["_id"], target["email"],
                body.reason or "Not specified")

    deleted = {"id": str(target["_id"]), "email": target["email"], "name": target["name"]}
    activity.record_activity(
        db, admin["_id"], "system_announcement",
        title="User Account Deleted",
        message=f"You deleted user account: {target['email']}",
        category="system",
        data={"deleted_user": deleted, "reason": body.reason},
    )
    return {"success": True, "message": "User account deleted successfully", "data": {"deletedUser": deleted}}


# ---------- Courses ----------
@router.get("/courses")
def list_courses(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                 status_filter: Optional[Literal["draft", "published", "archived"]] = Query(None, alias="status"),
                 search: Optional[str] = None, db: Database = Depends(get_db)):
    query = {}
    if status_filter:
        query["status"] = status_filter
    if search:
        query.update(_search(search, "title", "description"))

    total = db["course"].count_documents(query)
    courses = list(db["course"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    students = _completed_counts(db, "course_id", [c["_id"] for c in courses])
    return {
        "success": True,
        "data": {
            "courses": [admin_course_view(c, students.get(c["_id"], 0)) for c in courses],
            "pagination": _pagination(page, limit, total),
        },
    }


@router.post("/courses", status_code=status.HTTP_201_CREATED)
def create_course(body: CourseCreateRequest, db: Database = Depends(get_db)):
    if not (body.title and body.slug and body.description and body.thumbnail and body.lessons) or body.price is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")
    if db["course"].find_one({"slug": body.slug}):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course slug already exists")

    course = Course(
        title=body.title,
        slug=body.slug,
        description=body.description,
        thumbnail=body.thumbnail,
        icon=body.icon or "📚",
        price=body.price,
        original_price=body.original_price,
        difficulty=body.difficulty,
        instructor=body.instructor or "LearnHQ Team",
        status=body.status,
        requires_completion_for_download=body.requires_completion_for_download,
    )
    doc = course.model_dump(by_alias=True)
    doc["lessons"] = _build_lessons(body.lessons)
    try:
        course_id = create_document(db, "course", doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course slug already exists")
    logger.info("Course %s (%s) created", course_id, body.slug)
    return {
        "success": True,
        "message": "Course created successfully",
        "data": admin_course_view(db["course"].find_one({"_id": course_id}), 0),
    }


@router.put("/courses/{course_id}")
def update_course(course_id: str, body: CourseUpdateRequest, db: Database = Depends(get_db)):
    course = _course_or_404(db, course_id)
    changes = body.model_dump(exclude_unset=True, exclude={"lessons"})
    if body.slug and body.slug != course["slug"] and db["course"].find_one({"slug": body.slug}):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course slug already exists")
    if body.lessons is not None:
        changes["lessons"] = _build_lessons(body.lessons)
    changes["updated_at"] = datetime.utcnow()

    updated = db["course"].find_one_and_update(
        {"_id": course["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return {
        "success": True,
        "message": "Course updated successfully",
        "data": {**progress.build_course_view(updated, detailed=True), "status": updated.get("status")},
    }


@router.delete("/courses/{course_id}")
def delete_course(course_id: str, db: Database = Depends(get_db)):
    course = _course_or_404(db, course_id)
    if db["purchase"].count_documents({"course_id": course["_id"]}) > 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Cannot delete course with existing purchases")
    db["course"].delete_one({"_id": course["_id"]})
    db["progress"].delete_many({"course_id": course["_id"]})
    db["review"].delete_many({"course_id": course["_id"]})
    return {"success": True, "message": "Course deleted successfully"}


@router.get("/courses/enrol")
def list_enrolments(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), db: Database = Depends(get_db)):
    query = {"status": "completed"}
    total = db["purchase"].count_documents(query)
    purchases = list(db["purchase"].find(query).sort("paid_at", -1).skip((page - 1) * limit).limit(limit))
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": [p["user_id"] for p in purchases]}})}
    courses = {c["_id"]: c for c in db["course"].find({"_id": {"$in": [p["course_id"] for p in purchases]}})}
    records = {
        (r["user_id"], r["course_id"]): r
        for r in db["progress"].find({"user_id": {"$in": list(users)}, "course_id": {"$in": list(courses)}})
    }

    data = []
    for purchase in purchases:
        user, course = users.get(purchase["user_id"]), courses.get(purchase["course_id"])
        if user is None or course is None:
            continue
        record = records.get((user["_id"], course["_id"]))
        data.append({
            "id": str(purchase["_id"]),
            "student": {"id": str(user["_id"]), "name": user["name"], "email": user["email"]},
            "course": {"id": str(course["_id"]), "title": course["title"]},
            "amount": purchase.get("amount", 0),
            "provider": purchase.get("payment_provider"),
            "progress": record.get("percentage", 0) if record else 0,
            "enrolledAt": progress.isoformat(purchase.get("paid_at")),
        })
    return {"success": True, "data": {"enrolments": data, "pagination": _pagination(page, limit, total)}}


@router.post("/courses/enrol")
def enrol_existing_user(body: CourseEnrolRequest, db: Database = Depends(get_db)):
    user = _user_or_404(db, body.user_id)
    courses = [_course_or_404(db, course_id) for course_id in body.course_ids]

    enrolled, skipped = [], []
    for course in courses:
        if payments.find_completed_purchase(db, user["_id"], course["_id"]):
            skipped.append({"id": str(course["_id"]), "title": course["title"], "reason": "Already enrolled"})
            continue
        payments.enroll(db, user, course, 0, {"enrolled_by_admin": True}, provider="admin")
        enrolled.append({"id": str(course["_id"]), "title": course["title"]})
    return {
        "success": True,
        "message": f"Enrolled in {len(enrolled)} course(s)",
        "data": {"enrolled": enrolled, "skipped": skipped},
    }


# ---------- Coupons ----------
@router.get("/coupons")
def list_coupons(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                 status_filter: Optional[Literal["active", "expired", "disabled"]] = Query(None, alias="status"),
                 search: Optional[str] = None, db: Database = Depends(get_db)):
    now = datetime.utcnow()
    not_expired = [{"expires_at": None}, {"expires_at": {"$gt": now}}]
    query = {}
    if status_filter == "active":
        query.update({"is_valid": True, "$or": not_expired})
    elif status_filter == "expired":
        query["expires_at"] = {"$lt": now}
    elif status_filter == "disabled":
        query["is_valid"] = False
    if search:
        query["code"] = {"$regex": re.escape(search), "$options": "i"}

    total = db["coupon"].count_documents(query)
    docs = db["coupon"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    metrics = {
        "totalCoupons": db["coupon"].count_documents({}),
        "activeCoupons": db["coupon"].count_documents({"is_valid": True, "$or": not_expired}),
        "totalUsage": sum(c.get("used_count", 0) for c in db["coupon"].find({}, {"used_count": 1})),
        "expiringSoonCount": db["coupon"].count_documents(
            {"expires_at": {"$gt": now, "$lte": now + timedelta(days=7)}}
        ),
    }
    return {
        "success": True,
        "data": {
            "coupons": [coupons.coupon_view(doc) for doc in docs],
            "metrics": metrics,
            "pagination": _pagination(page, limit, total),
        },
    }


@router.post("/coupons", status_code=status.HTTP_201_CREATED)
def create_coupon(body: CouponCreateRequest, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    if body.type == "percentage" and body.value > 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Percentage value must be between 0 and 100")
    code = coupons.normalize_code(body.code)
    if coupons.find_coupon(db, code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon code already exists")
    expires_at = naive_utc(body.expires_at)
    if expires_at and expires_at <= datetime.utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expiry date must be in the future")
    applicable = [_course_or_404(db, course_id)["_id"] for course_id in body.applicable_courses]

    coupon = Coupon(
        code=code,
        type=body.type,
        value=body.value,
        message=body.message,
        usage_limit=body.usage_limit,
        single_use=body.single_use,
        applicable_courses=applicable,
        minimum_amount=body.minimum_amount,
        expires_at=expires_at,
        created_by=admin["_id"],
    )
    try:
        coupon_id = create_document(db, "coupon", coupon)
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon code already exists")
    return {
        "success": True,
        "message": "Coupon created successfully",
        "data": coupons.coupon_view(db["coupon"].find_one({"_id": coupon_id})),
    }


@router.patch("/coupons/{coupon_id}/status")
def set_coupon_status(coupon_id: str, body: CouponStatusRequest, db: Database = Depends(get_db)):
    changes = {"is_valid": body.is_valid, "updated_at": datetime.utcnow()}
    if body.message is not None:
        changes["message"] = body.message
    coupon = db["coupon"].find_one_and_update(
        {"_id": _oid_or_404(coupon_id, "Coupon")}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return {"success": True, "message": "Coupon status updated", "data": coupons.coupon_view(coupon)}
