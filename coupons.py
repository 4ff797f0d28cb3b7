import logging
from datetime import datetime
from typing import List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo import ReturnDocument
from pymongo.database import Database

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def find_coupon(database: Database, code: str) -> Optional[dict]:
    return database["coupon"].find_one({"code": normalize_code(code)})


def coupon_errors(coupon: dict, user_id: ObjectId, course_id: ObjectId, amount: float,
                  now: Optional[datetime] = None) -> List[str]:
    """Every reason ``coupon`` cannot be used by this user on this course."""
    now = now or datetime.utcnow()
    errors = []
    if not coupon.get("is_valid", True):
        errors.append(coupon.get("message") or "This coupon is no longer valid")
    if coupon.get("expires_at") and coupon["expires_at"] < now:
        errors.append("This coupon has expired")
    usage_limit = coupon.get("usage_limit")
    if usage_limit and coupon.get("used_count", 0) >= usage_limit:
        errors.append("This coupon has reached its usage limit")
    if coupon.get("single_use") and user_id in coupon.get("used_by", []):
        errors.append("You have already used this coupon")
    applicable = coupon.get("applicable_courses") or []
    if applicable and course_id not in applicable:
        errors.append("This coupon is not applicable to this course")
    minimum = coupon.get("minimum_amount") or 0
    if amount < minimum:
        errors.append(f"Minimum purchase amount of {minimum:g} required")
    return errors


def calculate_discount(coupon: dict, amount: float) -> float:
    if coupon["type"] == "percentage":
        discount = amount * min(coupon["value"], 100) / 100
    else:
        discount = coupon["value"]
    return round(min(discount, amount), 2)


def apply_coupon(database: Database, code: str, user_id: ObjectId, course: dict) -> Tuple[dict, float, float]:
    """Validate ``code`` for a purchase of ``course``; return (coupon, discount, final amount)."""
    coupon = find_coupon(database, code)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid coupon code")
    price = course.get("price", 0)
    errors = coupon_errors(coupon, user_id, course["_id"], price)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=", ".join(errors))
    discount = calculate_discount(coupon, price)
    return coupon, discount, round(max(price - discount, 0), 2)


def redeem_coupon(database: Database, code: str, user_id: ObjectId) -> Optional[dict]:
    """Count one use of ``code`` by ``user_id`` and retire the coupon once exhausted."""
    coupon = database["coupon"].find_one_and_update(
        {"code": normalize_code(code)},
        {"$inc": {"used_count": 1}, "$addToSet": {"used_by": user_id}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if coupon is None:
        logger.warning("Tried to redeem unknown coupon %s", code)
        return None

    usage_limit = coupon.get("usage_limit")
    if usage_limit and coupon["used_count"] >= usage_limit:
        database["coupon"].update_one(
            {"_id": coupon["_id"]},
            {"$set": {"is_valid": False, "message": "This coupon has reached its usage limit"}},
        )
        coupon["is_valid"] = False
        logger.info("Coupon %s exhausted after %d uses", coupon["code"], coupon["used_count"])
    return coupon


def coupon_status(coupon: dict, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if coupon.get("expires_at") and coupon["expires_at"] < now:
        return "expired"
    if not coupon.get("is_valid", True):
        return "disabled"
    return "active"


def coupon_view(coupon: dict) -> dict:
    return {
        "id": str(coupon["_id"]),
        "code": coupon["code"],
        "type": coupon["type"],
        "value": coupon["value"],
        "isValid": coupon.get("is_valid", True),
        "status": coupon_status(coupon),
        "message": coupon.get("message", ""),
        "usageLimit": coupon.get("usage_limit"),
        "usedCount": coupon.get("used_count", 0),
        "singleUse": coupon.get("single_use", False),
        "applicableCourses": [str(course_id) for course_id in coupon.get("applicable_courses", [])],
        "minimumAmount": coupon.get("minimum_amount", 0),
        "expiresAt": coupon["expires_at"].isoformat() if coupon.get("expires_at") else None,
        "createdAt": coupon["created_at"].isoformat() if coupon.get("created_at") else None,
    }
