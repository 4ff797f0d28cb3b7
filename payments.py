"""
Course purchases: Paystack transactions, enrolment and referral commission.

Paystack amounts are in kobo (minor units); purchase documents store the major
unit amount. ``complete_purchase`` is the single place a purchase becomes
``completed`` and is safe to call more than once for the same purchase
(verify redirect and webhook can both arrive).
"""
import hashlib
import hmac
import logging
import secrets
import time
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from bson import ObjectId
from fastapi import HTTPException, status
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import activity
import coupons
import progress
from config import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Paystack could not be reached or refused the request."""


# ---------- Paystack ----------
def _paystack_client() -> httpx.Client:
    return httpx.Client(
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.PAYSTACK_TIMEOUT,
        headers={
            "Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}",
            "Content-Type": "application/json",
        },
    )


def _paystack_data(response: httpx.Response, action: str) -> Dict[str, Any]:
    body = response.json()
    if not body.get("status"):
        raise PaymentGatewayError(body.get("message") or f"Failed to {action}")
    return body.get("data") or {}


def to_kobo(amount: float) -> int:
    return int(round(amount * 100))


def initialize_transaction(email: str, amount: float, reference: str, callback_url: str,
                           metadata: Optional[dict] = None) -> Dict[str, Any]:
    payload = {
        "email": email,
        "amount": to_kobo(amount),
        "reference": reference,
        "callback_url": callback_url,
        "metadata": metadata or {},
    }
    try:
        with _paystack_client() as client:
            response = client.post("/transaction/initialize", json=payload)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Paystack initialize failed for %s: %s", reference, exc)
        raise PaymentGatewayError("Failed to initialize payment") from exc
    return _paystack_data(response, "initialize payment")


def verify_transaction(reference: str) -> Dict[str, Any]:
    try:
        with _paystack_client() as client:
            response = client.get(f"/transaction/verify/{reference}")
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Paystack verify failed for %s: %s", reference, exc)
        raise PaymentGatewayError("Failed to verify payment") from exc
    return _paystack_data(response, "verify payment")


def verify_webhook_signature(payload: bytes, signature: Optional[str]) -> bool:
    if not signature or not settings.PAYSTACK_SECRET_KEY:
        return False
    expected = hmac.new(settings.PAYSTACK_SECRET_KEY.encode(), payload, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


def generate_reference(prefix: str = "LHQ") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


# ---------- Purchases ----------
def find_completed_purchase(database: Database, user_id: ObjectId, course_id: ObjectId) -> Optional[dict]:
    return database["purchase"].find_one({"user_id": user_id, "course_id": course_id, "status": "completed"})


def upsert_open_purchase(database: Database, user_id: ObjectId, course: dict, amount: float, reference: str,
                         data: Optional[dict] = None, provider: str = "paystack") -> dict:
    """Create (or reuse) the pending purchase for this user and course.

    A completed purchase is never reopened: the unique (user_id, course_id)
    index turns that case into a 400.
    """
    now = datetime.utcnow()
    try:
        return database["purchase"].find_one_and_update(
            {"user_id": user_id, "course_id": course["_id"], "status": {"$ne": "completed"}},
            {
                "$set": {
                    "amount": amount,
                    "status": "pending",
                    "payment_reference": reference,
                    "payment_provider": provider,
                    "data": data or {},
                    "updated_at": now,
                },
                "$setOnInsert": {"paid_at": None, "created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course already purchased")


def credit_referrer(database: Database, buyer: dict, course: dict, purchase: dict) -> float:
    """Pay the buyer's referrer their commission on ``purchase``. Returns the amount credited."""
    code = buyer.get("referred_by")
    if not code or purchase.get("amount", 0) <= 0:
        return 0
    referrer = database["user"].find_one({"referral_code": code})
    if referrer is None or referrer["_id"] == buyer["_id"]:
        return 0

    commission = round(purchase["amount"] * settings.REFERRAL_COMMISSION_RATE, 2)
    database["user"].update_one({"_id": referrer["_id"]}, {"$inc": {"referral_earnings": commission}})
    database["purchase"].update_one(
        {"_id": purchase["_id"]},
        {"$set": {"data.referrer_id": referrer["_id"], "data.referral_commission": commission}},
    )
    activity.referral_earned(database, referrer["_id"], buyer.get("name", "A user"), course, commission)
    logger.info("Credited %.2f referral commission to %s", commission, referrer["_id"])
    return commission


def complete_purchase(database: Database, purchase_id: ObjectId, paid_at: Optional[datetime] = None) -> dict:
    now = datetime.utcnow()
    purchase = database["purchase"].find_one_and_update(
        {"_id": purchase_id, "status": {"$ne": "completed"}},
        {"$set": {"status": "completed", "paid_at": paid_at or now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if purchase is None:
        existing = database["purchase"].find_one({"_id": purchase_id})
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Purchase not found")
        return existing

    buyer = database["user"].find_one({"_id": purchase["user_id"]})
    course = database["course"].find_one({"_id": purchase["course_id"]})
    if buyer is None or course is None:
        logger.error("Purchase %s completed but its user or course is gone", purchase_id)
        return purchase

    progress.ensure_progress(database, buyer["_id"], course["_id"])
    database["course"].update_one({"_id": course["_id"]}, {"$inc": {"enrollment_count": 1}})

    coupon_code = (purchase.get("data") or {}).get("coupon_code")
    if coupon_code:
        coupons.redeem_coupon(database, coupon_code, buyer["_id"])

    activity.course_purchased(database, buyer["_id"], course, purchase["amount"])
    credit_referrer(database, buyer, course, purchase)
    logger.info("Purchase %s completed: user %s enrolled in %s", purchase_id, buyer["_id"], course["slug"])
    return purchase


def enroll(database: Database, user: dict, course: dict, amount: float = 0, data: Optional[dict] = None,
           provider: str = "free") -> dict:
    """Enrol without a gateway round trip (free course, 100% coupon, admin enrolment)."""
    reference = generate_reference("FREE" if provider == "free" else provider.upper())
    purchase = upsert_open_purchase(database, user["_id"], course, amount, reference, data, provider)
    return complete_purchase(database, purchase["_id"])


def purchase_view(purchase: dict, course: Optional[dict] = None) -> dict:
    view = {
        "id": str(purchase["_id"]),
        "courseId": str(purchase["course_id"]),
        "amount": purchase.get("amount", 0),
        "status": purchase.get("status"),
        "reference": purchase.get("payment_reference"),
        "provider": purchase.get("payment_provider"),
        "paidAt": purchase["paid_at"].isoformat() if purchase.get("paid_at") else None,
        "createdAt": purchase["created_at"].isoformat() if purchase.get("created_at") else None,
    }
    if course is not None:
        view["courseTitle"] = course["title"]
        view["courseSlug"] = course["slug"]
    return view
