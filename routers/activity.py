from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument
from pymongo.database import Database

import activity
from database import get_db, naive_utc, to_object_id
from dependencies import get_current_user, require_admin
from schemas import ActivityCategory, ActivityPriority, ActivityType

router = APIRouter()


class ActivityCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    type: ActivityType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    category: ActivityCategory
    priority: ActivityPriority = "medium"
    data: Dict[str, Any] = Field(default_factory=dict)
    action_url: Optional[str] = Field(None, alias="actionUrl")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")


class ActivityUpdateRequest(BaseModel):
    read: bool = True


def activity_view(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "type": doc["type"],
        "title": doc["title"],
        "message": doc["message"],
        "data": doc.get("data") or {},
        "read": doc.get("read", False),
        "priority": doc.get("priority", "medium"),
        "category": doc["category"],
        "actionUrl": doc.get("action_url"),
        "createdAt": doc["created_at"].isoformat() if doc.get("created_at") else None,
    }


def _live(user_id, now: datetime) -> dict:
    return {"user_id": user_id, "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}]}


def _own_activity_or_404(db: Database, activity_id: str, user: dict) -> dict:
    oid = to_object_id(activity_id)
    doc = db["activity"].find_one({"_id": oid, "user_id": user["_id"]}) if oid else None
    if doc is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
    return doc


@router.get("")
def list_activities(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                    category: Optional[ActivityCategory] = None, read: Optional[bool] = None,
                    priority: Optional[ActivityPriority] = None,
                    db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    query = _live(current["_id"], datetime.utcnow())
    if category:
        query["category"] = category
    if read is not None:
        query["read"] = read
    if priority:
        query["priority"] = priority

    total = db["activity"].count_documents(query)
    docs = db["activity"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    unread = db["activity"].count_documents({"user_id": current["_id"], "read": False})
    pages = (total + limit - 1) // limit
    return {
        "success": True,
        "data": {
            "activities": [activity_view(doc) for doc in docs],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": pages,
                           "hasNext": page < pages, "hasPrev": page > 1},
            "unreadCount": unread,
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_activity(body: ActivityCreateRequest, db: Database = Depends(get_db),
                    admin: dict = Depends(require_admin)):
    user_oid = to_object_id(body.user_id)
    if user_oid is None or db["user"].find_one({"_id": user_oid}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    activity_id = activity.record_activity(
        db, user_oid, body.type,
        title=body.title,
        message=body.message,
        category=body.category,
        data=body.data,
        priority=body.priority,
        action_url=body.action_url,
        expires_at=naive_utc(body.expires_at),
    )
    return {"success": True, "data": activity_view(db["activity"].find_one({"_id": activity_id}))}


@router.post("/mark-all-read")
def mark_all_read(db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    result = db["activity"].update_many(
        {"user_id": current["_id"], "read": False},
        {"$set": {"read": True, "updated_at": datetime.utcnow()}},
    )
    return {"success": True, "message": "All activities marked as read",
            "data": {"modifiedCount": result.modified_count}}


@router.get("/stats")
def activity_stats(db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    docs = list(db["activity"].find({"user_id": current["_id"]}, {"read": 1, "category": 1, "priority": 1,
                                                                  "created_at": 1}))
    week_ago = datetime.utcnow() - timedelta(days=7)
    categories: Dict[str, int] = {}
    priorities: Dict[str, int] = {}
    for doc in docs:
        categories[doc["category"]] = categories.get(doc["category"], 0) + 1
        priorities[doc.get("priority", "medium")] = priorities.get(doc.get("priority", "medium"), 0) + 1

    total = len(docs)
    unread = sum(1 for doc in docs if not doc.get("read"))
    return {
        "success": True,
        "data": {
            "total": total,
            "unread": unread,
            "read": total - unread,
            "recent": sum(1 for doc in docs if doc.get("created_at") and doc["created_at"] >= week_ago),
            "categories": categories,
            "priorities": priorities,
            "readPercentage": round((total - unread) / total * 100) if total else 0,
        },
    }


@router.get("/{activity_id}")
def get_activity(activity_id: str, db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    return {"success": True, "data": activity_view(_own_activity_or_404(db, activity_id, current))}


@router.patch("/{activity_id}")
def update_activity(activity_id: str, body: ActivityUpdateRequest, db: Database = Depends(get_db),
                    current: dict = Depends(get_current_user)):
    doc = _own_activity_or_404(db, activity_id, current)
    doc = db["activity"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": {"read": body.read, "updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "data": activity_view(doc)}


@router.delete("/{activity_id}")
def delete_activity(activity_id: str, db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    doc = _own_activity_or_404(db, activity_id, current)
    db["activity"].delete_one({"_id": doc["_id"]})
    return {"success": True, "message": "Activity deleted successfully"}
