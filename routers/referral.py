from collections import defaultdict
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from pymongo.database import Database

from config import settings
from database import get_db
from dependencies import get_current_user

router = APIRouter()

PENDING_AFTER = timedelta(days=7)


def _commission(purchase: dict) -> float:
    data = purchase.get("data") or {}
    if "referral_commission" in data:
        return data["referral_commission"]
    return round(purchase.get("amount", 0) * settings.REFERRAL_COMMISSION_RATE, 2)


def affiliate_status(purchases: list, registered_at: datetime, now: datetime) -> str:
    if any(p["status"] == "completed" for p in purchases):
        return "Completed"
    if purchases:
        return "Course Started"
    if now - registered_at > PENDING_AFTER:
        return "Pending"
    return "Registered"


@router.get("/earnings")
def referral_earnings(db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    now = datetime.utcnow()
    month_start = datetime(now.year, now.month, 1)

    referred = list(db["user"].find({"referred_by": current["referral_code"]}).sort("created_at", -1))
    purchases_by_user = defaultdict(list)
    for purchase in db["purchase"].find({"user_id": {"$in": [u["_id"] for u in referred]}}):
        purchases_by_user[purchase["user_id"]].append(purchase)

    history = []
    earnings_this_month = 0.0
    for referred_user in referred:
        purchases = purchases_by_user[referred_user["_id"]]
        completed = [p for p in purchases if p["status"] == "completed"]
        reward = sum(_commission(p) for p in completed)
        earnings_this_month += sum(
            _commission(p) for p in completed if p.get("paid_at") and p["paid_at"] >= month_start
        )
        registered_at = referred_user.get("created_at") or now
        history.append({
            "id": str(referred_user["_id"]),
            "name": referred_user["name"],
            "dateReferred": registered_at.date().isoformat(),
            "status": affiliate_status(purchases, registered_at, now),
            "reward": round(reward, 2),
        })

    total = current.get("referral_earnings", 0)
    return {
        "success": True,
        "data": {
            "totalEarnings": total,
            "successfulAffiliates": sum(1 for h in history if h["status"] == "Completed"),
            "pendingAffiliates": sum(1 for h in history if h["status"] == "Pending"),
            "withdrawableBalance": total,
            "affiliateLink": f"{settings.SITE_URL}/auth/signup?ref={current['referral_code']}",
            "earningsThisMonth": round(earnings_this_month, 2),
            "history": history,
        },
    }
