import logging
from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument
from pymongo.database import Database

import activity
import progress
from database import get_db, to_object_id
from dependencies import get_current_user, get_optional_user
from payments import find_completed_purchase

logger = logging.getLogger(__name__)

router = APIRouter()

REVIEW_SORTS = {
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "highest": [("rating", -1), ("created_at", -1)],
    "lowest": [("rating", 1), ("created_at", -1)],
}


class LessonCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(None, alias="courseId")
    lesson_id: Optional[str] = Field(None, alias="lessonId")


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=1000)


class HelpfulVoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    review_id: str = Field(..., alias="reviewId")
    helpful: bool


def _enrollment_state(db: Database, user: Optional[dict], course_ids: List[ObjectId]):
    """Map course id -> purchase and course id -> progress for ``user``."""
    if user is None or not course_ids:
        return {}, {}
    query = {"user_id": user["_id"], "course_id": {"$in": course_ids}}
    purchases = {p["course_id"]: p for p in db["purchase"].find(query)}
    progresses = {p["course_id"]: p for p in db["progress"].find(query)}
    return purchases, progresses


def _course_or_404(db: Database, query: dict) -> dict:
    course = db["course"].find_one(query)
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    return course


def _detail_view(db: Database, course: dict, user: Optional[dict]) -> dict:
    purchases, progresses = _enrollment_state(db, user, [course["_id"]])
    return progress.build_course_view(
        course, purchases.get(course["_id"]), progresses.get(course["_id"]), detailed=True
    )


# ---------- Catalog ----------
@router.get("")
def list_courses(db: Database = Depends(get_db), user: Optional[dict] = Depends(get_optional_user)):
    courses = list(db["course"].find({"status": "published"}).sort("created_at", -1))
    purchases, progresses = _enrollment_state(db, user, [course["_id"] for course in courses])
    data = [
        progress.build_course_view(course, purchases.get(course["_id"]), progresses.get(course["_id"]))
        for course in courses
    ]
    return {"success": True, "data": data}


@router.get("/slug/{slug}")
def get_course_by_slug(slug: str, db: Database = Depends(get_db),
                       user: Optional[dict] = Depends(get_optional_user)):
    course = _course_or_404(db, {"slug": slug})
    return {"success": True, "data": _detail_view(db, course, user)}


# ---------- Learning ----------
@router.post("/lesson/complete")
def complete_lesson(body: LessonCompleteRequest, db: Database = Depends(get_db),
                    current: dict = Depends(get_current_user)):
    record = progress.record_lesson_completion(db, current, body.course_id, body.lesson_id)
    return {
        "success": True,
        "message": "Lesson marked as completed",
        "data": {
            "percentage": record["percentage"],
            "lessonsCompleted": record.get("lessons_completed", []),
            "isCompleted": record["percentage"] == 100,
        },
    }


@router.get("/learning/{slug}")
def learning_view(slug: str, lesson_id: Optional[str] = Query(None, alias="lessonId"),
                  db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    course = _course_or_404(db, {"slug": slug})
    if find_completed_purchase(db, current["_id"], course["_id"]) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Course not purchased")
    record = progress.touch_last_accessed(db, current["_id"], course["_id"])
    return {"success": True, "data": progress.build_learning_view(course, record, lesson_id)}


# ---------- Reviews ----------
def _review_statistics(db: Database, course_id: ObjectId) -> dict:
    ratings = [r["rating"] for r in db["review"].find({"course_id": course_id, "status": "approved"}, {"rating": 1})]
    distribution: Dict[str, int] = {str(star): 0 for star in range(1, 6)}
    for rating in ratings:
        distribution[str(rating)] += 1
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    return {"averageRating": average, "totalReviews": len(ratings), "ratingDistribution": distribution}


def _review_view(review: dict, author: Optional[dict], viewer: Optional[dict]) -> dict:
    viewer_id = viewer["_id"] if viewer else None
    vote = None
    if viewer_id in review.get("helpful_voters", []):
        vote = "helpful"
    elif viewer_id in review.get("not_helpful_voters", []):
        vote = "not_helpful"
    return {
        "id": str(review["_id"]),
        "rating": review["rating"],
        "comment": review.get("comment", ""),
        "user": {
            "name": author["name"] if author else "Anonymous",
            "avatar": author.get("avatar") if author else None,
        },
        "isVerifiedPurchase": review.get("is_verified_purchase", False),
        "helpful": review.get("helpful", 0),
        "notHelpful": review.get("not_helpful", 0),
        "userVote": vote,
        "isOwn": viewer_id is not None and review["user_id"] == viewer_id,
        "createdAt": progress.isoformat(review.get("created_at")),
    }


@router.get("/review/{slug}")
def list_reviews(slug: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                 sort: str = Query("newest"), db: Database = Depends(get_db),
                 user: Optional[dict] = Depends(get_optional_user)):
    course = _course_or_404(db, {"slug": slug})
    query = {"course_id": course["_id"], "status": "approved"}
    total = db["review"].count_documents(query)
    reviews = list(
        db["review"].find(query).sort(REVIEW_SORTS.get(sort, REVIEW_SORTS["newest"]))
        .skip((page - 1) * limit).limit(limit)
    )
    authors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": [r["user_id"] for r in reviews]}})}

    own = db["review"].find_one({"course_id": course["_id"], "user_id": user["_id"]}) if user else None
    pages = (total + limit - 1) // limit
    return {
        "success": True,
        "data": {
            "reviews": [_review_view(r, authors.get(r["user_id"]), user) for r in reviews],
            "statistics": _review_statistics(db, course["_id"]),
            "userReview": _review_view(own, user, user) if own else None,
            "pagination": {"page": page, "limit": limit, "total": total, "pages": pages,
                           "hasNext": page < pages, "hasPrev": page > 1},
        },
    }


@router.post("/review/{slug}")
def upsert_review(slug: str, body: ReviewRequest, db: Database = Depends(get_db),
                  current: dict = Depends(get_current_user)):
    course = _course_or_404(db, {"slug": slug})
    now = datetime.utcnow()
    verified = find_completed_purchase(db, current["_id"], course["_id"]) is not None
    previous = db["review"].find_one_and_update(
        {"user_id": current["_id"], "course_id": course["_id"]},
        {
            "$set": {
                "rating": body.rating,
                "comment": body.comment.strip(),
                "is_verified_purchase": verified,
                "updated_at": now,
            },
            "$setOnInsert": {
                "helpful": 0,
                "not_helpful": 0,
                "helpful_voters": [],
                "not_helpful_voters": [],
                "status": "approved",
                "created_at": now,
            },
        },
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    review = db["review"].find_one({"user_id": current["_id"], "course_id": course["_id"]})

    statistics = _review_statistics(db, course["_id"])
    if statistics["totalReviews"]:
        db["course"].update_one({"_id": course["_id"]}, {"$set": {"rating": statistics["averageRating"]}})

    if previous is None:
        logger.info("User %s reviewed course %s (%d stars)", current["_id"], course["_id"], body.rating)
        activity.record_activity(
            db, current["_id"], "course_reviewed",
            title="Review Submitted",
            message=f'Thanks for reviewing "{course["title"]}".',
            category="course",
            data={"course_id": str(course["_id"]), "rating": body.rating},
            priority="low",
            action_url=f"/course/{course['slug']}",
        )
    return {
        "success": True,
        "message": "Review submitted successfully" if previous is None else "Review updated successfully",
        "data": {"review": _review_view(review, current, current), "statistics": statistics},
    }


@router.post("/review/{slug}/helpful")
def vote_review(slug: str, body: HelpfulVoteRequest, db: Database = Depends(get_db),
                current: dict = Depends(get_current_user)):
    course = _course_or_404(db, {"slug": slug})
    review_id = to_object_id(body.review_id)
    review = db["review"].find_one({"_id": review_id, "course_id": course["_id"]}) if review_id else None
    if review is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review not found")
    if review["user_id"] == current["_id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot vote on your own review")

    voter = current["_id"]
    target, other = ("helpful_voters", "not_helpful_voters") if body.helpful else ("not_helpful_voters", "helpful_voters")
    if voter not in review.get(target, []):
        review = db["review"].find_one_and_update(
            {"_id": review["_id"]},
            {"$addToSet": {target: voter}, "$pull": {other: voter}},
            return_document=ReturnDocument.AFTER,
        )
        db["review"].update_one(
            {"_id": review["_id"]},
            {"$set": {"helpful": len(review["helpful_voters"]), "not_helpful": len(review["not_helpful_voters"])}},
        )
        review["helpful"] = len(review["helpful_voters"])
        review["not_helpful"] = len(review["not_helpful_voters"])
    author = db["user"].find_one({"_id": review["user_id"]})
    return {"success": True, "data": _review_view(review, author, current)}


@router.get("/{course_id}")
def get_course(course_id: str, db: Database = Depends(get_db), user: Optional[dict] = Depends(get_optional_user)):
    oid = to_object_id(course_id)
    if oid is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    course = _course_or_404(db, {"_id": oid})
    return {"success": True, "data": _detail_view(db, course, user)}
