"""Per-user activity feed entries (notifications and a light audit log)."""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo.database import Database

from database import create_document
from schemas import Activity

logger = logging.getLogger(__name__)


def record_activity(database: Database, user_id: ObjectId, activity_type: str, title: str, message: str,
                    category: str, data: Optional[Dict[str, Any]] = None, priority: str = "medium",
                    action_url: Optional[str] = None, expires_at: Optional[datetime] = None) -> ObjectId:
    activity = Activity(
        user_id=user_id,
        type=activity_type,
        title=title,
        message=message,
        category=category,
        data=data or {},
        priority=priority,
        action_url=action_url,
        expires_at=expires_at,
    )
    activity_id = create_document(database, "activity", activity)
    logger.debug("Activity %s (%s) recorded for user %s", activity_id, activity_type, user_id)
    return activity_id


def course_purchased(database: Database, user_id: ObjectId, course: dict, amount: float) -> ObjectId:
    return record_activity(
        database, user_id, "course_purchased",
        title="Course Purchased Successfully!",
        message=f'You have successfully purchased "{course["title"]}" for {amount:g}. '
                "You can now access all course content.",
        data={"course_id": str(course["_id"]), "course_title": course["title"], "amount": amount},
        priority="high",
        category="course",
        action_url=f"/course/{course['slug']}",
    )


def course_completed(database: Database, user_id: ObjectId, course: dict) -> ObjectId:
    return record_activity(
        database, user_id, "course_completed",
        title="Course Completed!",
        message=f'Congratulations! You have completed "{course["title"]}".',
        data={"course_id": str(course["_id"]), "course_title": course["title"]},
        priority="high",
        category="course",
        action_url="/dashboard",
    )


def certificate_issued(database: Database, user_id: ObjectId, course: dict) -> ObjectId:
    return record_activity(
        database, user_id, "certificate_issued",
        title="Certificate Issued",
        message=f'Your certificate for "{course["title"]}" is ready.',
        data={"course_id": str(course["_id"]), "course_title": course["title"]},
        priority="high",
        category="course",
        action_url="/dashboard",
    )


def referral_earned(database: Database, user_id: ObjectId, referred_name: str, course: dict,
                    amount: float) -> ObjectId:
    return record_activity(
        database, user_id, "referral_earned",
        title="Referral Commission Earned!",
        message=f'You earned {amount:g} because {referred_name} purchased "{course["title"]}".',
        data={"course_id": str(course["_id"]), "course_title": course["title"], "amount": amount},
        priority="high",
        category="referral",
        action_url="/earnings",
    )
