import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

import coupons
import payments
import progress
from config import settings
from database import get_db, to_object_id
from dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: str = Field(..., alias="courseId")
    coupon_code: Optional[str] = Field(None, alias="couponCode")


class CouponVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(..., min_length=1)
    course_id: str = Field(..., alias="courseId")


def _course_or_404(db: Database, course_id: str) -> dict:
    oid = to_object_id(course_id)
    course = db["course"].find_one({"_id": oid}) if oid else None
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    return course


def _ensure_not_purchased(db: Database, user: dict, course: dict) -> None:
    if payments.find_completed_purchase(db, user["_id"], course["_id"]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course already purchased")


def _checkout_data(course: dict, coupon: Optional[dict], discount: float) -> dict:
    data = {"original_amount": course.get("price", 0), "discount_amount": discount}
    if coupon:
        data["coupon_code"] = coupon["code"]
    return data


# ---------- Coupons ----------
@router.post("/coupon/verify")
def verify_coupon(body: CouponVerifyRequest, db: Database = Depends(get_db),
                  current: dict = Depends(get_current_user)):
    course = _course_or_404(db, body.course_id)
    coupon = coupons.find_coupon(db, body.code)
    if coupon is None:
        return {"success": True, "data": {"isValid": False, "message": "Invalid coupon code"}}

    price = course.get("price", 0)
    errors = coupons.coupon_errors(coupon, current["_id"], course["_id"], price)
    if errors:
        return {"success": True, "data": {"isValid": False, "message": errors[0]}}

    discount = coupons.calculate_discount(coupon, price)
    return {
        "success": True,
        "data": {
            "isValid": True,
            "code": coupon["code"],
            "type": coupon["type"],
            "value": coupon["value"],
            "discountAmount": discount,
            "finalAmount": round(max(price - discount, 0), 2),
            "message": f"Coupon applied! You save {discount:g}",
        },
    }


# ---------- Payments ----------
@router.post("/payments/initialize")
def initialize_payment(body: CheckoutRequest, db: Database = Depends(get_db),
                       current: dict = Depends(get_current_user)):
    course = _course_or_404(db, body.course_id)
    _ensure_not_purchased(db, current, course)

    coupon, discount, amount = None, 0, course.get("price", 0)
    if body.coupon_code:
        coupon, discount, amount = coupons.apply_coupon(db, body.coupon_code, current["_id"], course)
    data = _checkout_data(course, coupon, discount)

    if amount <= 0:
        purchase = payments.enroll(db, current, course, 0, data, provider="free")
        return {
            "success": True,
            "message": "Enrolled successfully",
            "data": {"free": True, "purchase": payments.purchase_view(purchase, course)},
        }

    reference = payments.generate_reference()
    gateway = payments.initialize_transaction(
        current["email"],
        amount,
        reference,
        callback_url=f"{settings.SITE_URL}/course/{course['slug']}/payment",
        metadata={"user_id": str(current["_id"]), "course_id": str(course["_id"])},
    )
    data.update({"payment_url": gateway.get("authorization_url"), "access_code": gateway.get("access_code")})
    payments.upsert_open_purchase(db, current["_id"], course, amount, reference, data)
    logger.info("Payment %s initialized for user %s on %s", reference, current["_id"], course["slug"])
    return {
        "success": True,
        "data": {
            "free": False,
            "authorizationUrl": gateway.get("authorization_url"),
            "accessCode": gateway.get("access_code"),
            "reference": reference,
            "amount": amount,
            "originalAmount": course.get("price", 0),
            "discount": discount,
        },
    }


@router.get("/payments/verify")
def verify_payment(reference: str = Query(..., min_length=1), db: Database = Depends(get_db),
                   current: dict = Depends(get_current_user)):
    purchase = db["purchase"].find_one({"payment_reference": reference, "user_id": current["_id"]})
    if purchase is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Purchase not found")
    course = db["course"].find_one({"_id": purchase["course_id"]})
    if purchase["status"] == "completed":
        return {"success": True, "message": "Payment already verified",
                "data": payments.purchase_view(purchase, course)}

    transaction = payments.verify_transaction(reference)
    if transaction.get("status") != "success":
        db["purchase"].update_one({"_id": purchase["_id"]}, {"$set": {"status": "failed", "updated_at": datetime.utcnow()}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment was not successful")
    if transaction.get("amount") != payments.to_kobo(purchase["amount"]):
        logger.warning("Amount mismatch on %s: paid %s, expected %s", reference,
                       transaction.get("amount"), payments.to_kobo(purchase["amount"]))
        db["purchase"].update_one({"_id": purchase["_id"]}, {"$set": {"status": "failed", "updated_at": datetime.utcnow()}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment amount mismatch")

    purchase = payments.complete_purchase(db, purchase["_id"])
    return {"success": True, "message": "Payment verified successfully",
            "data": payments.purchase_view(purchase, course)}


@router.post("/payments/webhook")
async def paystack_webhook(request: Request, db: Database = Depends(get_db)):
    raw = await request.body()
    if not payments.verify_webhook_signature(raw, request.headers.get("x-paystack-signature")):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    try:
        event = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    if event.get("event") != "charge.success":
        return {"received": True}

    data = event.get("data") or {}
    reference = data.get("reference")
    purchase = db["purchase"].find_one({"payment_reference": reference}) if reference else None
    if purchase is None:
        logger.warning("Webhook for unknown reference %s", reference)
        return {"received": True}
    if purchase["status"] == "completed":
        return {"received": True}
    if data.get("amount") != payments.to_kobo(purchase["amount"]):
        logger.warning("Webhook amount mismatch on %s: %s", reference, data.get("amount"))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount mismatch")

    payments.complete_purchase(db, purchase["_id"])
    return {"received": True}


# ---------- Purchases ----------
@router.post("/purchases/free")
def enroll_free(body: CheckoutRequest, db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    course = _course_or_404(db, body.course_id)
    _ensure_not_purchased(db, current, course)

    coupon, discount, amount = None, 0, course.get("price", 0)
    if body.coupon_code:
        coupon, discount, amount = coupons.apply_coupon(db, body.coupon_code, current["_id"], course)
    if amount > 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This course is not free")

    purchase = payments.enroll(db, current, course, 0, _checkout_data(course, coupon, discount), provider="free")
    return {"success": True, "message": "Enrolled successfully", "data": payments.purchase_view(purchase, course)}


@router.get("/purchases/my-courses")
def my_courses(db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    purchases = list(db["purchase"].find({"user_id": current["_id"], "status": "completed"}))
    course_ids = [p["course_id"] for p in purchases]
    courses = {c["_id"]: c for c in db["course"].find({"_id": {"$in": course_ids}})}
    progresses = {
        p["course_id"]: p for p in db["progress"].find({"user_id": current["_id"], "course_id": {"$in": course_ids}})
    }

    data = []
    for purchase in purchases:
        course = courses.get(purchase["course_id"])
        if course is None:
            continue
        record = progresses.get(course["_id"])
        view = progress.build_course_view(course, purchase, record)
        view.update({
            "lessonsCompleted": progress.completed_lesson_count(course, record),
            "totalLessons": len(course.get("lessons") or []),
            "certificateIssued": bool(record and record.get("certificate_issued")),
            "lastAccessedAt": progress.isoformat(record.get("last_accessed_at")) if record else None,
            "purchasedAt": progress.isoformat(purchase.get("paid_at")),
        })
        data.append((view, record.get("last_accessed_at") if record else None))

    data.sort(key=lambda row: row[1] or datetime.min, reverse=True)
    return {"success": True, "data": [view for view, _ in data]}
