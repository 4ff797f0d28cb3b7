import logging
from datetime import date, datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument
from pymongo.database import Database

import activity
from database import get_db
from dependencies import get_current_user
from schemas import default_notification_preferences
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()

# API key -> stored key
PREFERENCE_KEYS = {
    "courseUpdates": "course_updates",
    "promotions": "promotions",
    "referralEarnings": "referral_earnings",
    "supportReplies": "support_replies",
    "systemAnnouncements": "system_announcements",
}
CHANNELS = ("email", "push")


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: Optional[str] = Field(None, alias="phoneNumber", pattern=r"^\+?[0-9 ()\-]{7,20}$")
    date_of_birth: Optional[date] = Field(None, alias="dateOfBirth")


class UsernameUpdateRequest(BaseModel):
    name: str


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword")


class NotificationPreferencesRequest(BaseModel):
    preferences: Dict[str, Dict[str, bool]]


def preferences_view(stored: Optional[dict]) -> dict:
    stored = stored or default_notification_preferences()
    defaults = default_notification_preferences()
    return {
        channel: {
            api_key: stored.get(channel, {}).get(key, defaults[channel][key])
            for api_key, key in PREFERENCE_KEYS.items()
        }
        for channel in CHANNELS
    }


def profile_view(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "avatar": user.get("avatar"),
        "phoneNumber": user.get("phone_number"),
        "dateOfBirth": user["date_of_birth"].date().isoformat() if user.get("date_of_birth") else None,
        "referralCode": user.get("referral_code"),
        "referralEarnings": user.get("referral_earnings", 0),
        "role": user.get("role", "student"),
        "notificationPreferences": preferences_view(user.get("notification_preferences")),
        "createdAt": user["created_at"].isoformat() if user.get("created_at") else None,
    }


def _update_user(db: Database, user: dict, changes: dict) -> dict:
    changes["updated_at"] = datetime.utcnow()
    return db["user"].find_one_and_update(
        {"_id": user["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )


@router.get("/profile")
def get_profile(current: dict = Depends(get_current_user)):
    return {"success": True, "data": profile_view(current)}


@router.put("/profile")
def update_profile(body: ProfileUpdateRequest, db: Database = Depends(get_db),
                   current: dict = Depends(get_current_user)):
    changes = {}
    if body.phone_number is not None:
        changes["phone_number"] = body.phone_number.strip()
    if body.date_of_birth is not None:
        if body.date_of_birth >= date.today():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Date of birth must be in the past")
        changes["date_of_birth"] = datetime.combine(body.date_of_birth, datetime.min.time())
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No profile fields to update")

    user = _update_user(db, current, changes)
    activity.record_activity(
        db, user["_id"], "profile_updated",
        title="Profile Updated",
        message="Your profile details were updated.",
        category="system",
        priority="low",
    )
    return {"success": True, "message": "Profile updated successfully", "data": profile_view(user)}


@router.put("/update-username")
def update_username(body: UsernameUpdateRequest, db: Database = Depends(get_db),
                    current: dict = Depends(get_current_user)):
    name = body.name.strip()
    if len(name) < 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name must be at least 2 characters long")
    if len(name) > 50:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name must be less than 50 characters")
    user = _update_user(db, current, {"name": name})
    return {"success": True, "message": "Name updated successfully", "data": profile_view(user)}


@router.post("/change-password")
def change_password(body: ChangePasswordRequest, db: Database = Depends(get_db),
                    current: dict = Depends(get_current_user)):
    if not current.get("password"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Password change is not available for social login accounts")
    if len(body.new_password) < 8:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="New password must be at least 8 characters long")
    if not verify_password(body.current_password, current["password"]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    if body.current_password == body.new_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="New password must be different from the current password")

    _update_user(db, current, {"password": hash_password(body.new_password)})
    activity.record_activity(
        db, current["_id"], "password_changed",
        title="Password Changed",
        message="Your password was changed. If this wasn't you, contact support immediately.",
        category="security",
        priority="high",
    )
    logger.info("User %s changed their password", current["_id"])
    return {"success": True, "message": "Password changed successfully"}


@router.delete("/delete-account")
def delete_account(db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    completed = db["purchase"].count_documents({"user_id": current["_id"], "status": "completed"})
    if completed > 0 and current.get("referral_earnings", 0) > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Cannot delete account with active purchases and referral earnings. "
                         "Please contact support.",
                "code": "ACTIVE_DATA_EXISTS",
            },
        )

    db["progress"].delete_many({"user_id": current["_id"]})
    db["activity"].delete_many({"user_id": current["_id"]})
    db["purchase"].delete_many({"user_id": current["_id"], "status": {"$ne": "completed"}})
    db["user"].delete_one({"_id": current["_id"]})
    logger.info("User %s deleted their account", current["_id"])
    return {"success": True, "message": "Account deleted successfully"}


@router.get("/notification-preferences")
def get_notification_preferences(current: dict = Depends(get_current_user)):
    return {"success": True, "data": preferences_view(current.get("notification_preferences"))}


@router.put("/notification-preferences")
def update_notification_preferences(body: NotificationPreferencesRequest, db: Database = Depends(get_db),
                                    current: dict = Depends(get_current_user)):
    merged = preferences_view(current.get("notification_preferences"))
    for channel in CHANNELS:
        for api_key, value in body.preferences.get(channel, {}).items():
            if api_key in PREFERENCE_KEYS:
                merged[channel][api_key] = value
    stored = {
        channel: {PREFERENCE_KEYS[api_key]: value for api_key, value in merged[channel].items()}
        for channel in CHANNELS
    }
    _update_user(db, current, {"notification_preferences": stored})
    return {"success": True, "message": "Notification preferences updated", "data": merged}
