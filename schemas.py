"""
Database Schemas for LearnHQ

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
References to other documents are stored as ObjectIds in ``*_id`` fields.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

ActivityType = Literal[
    "course_purchased",
    "lesson_completed",
    "course_completed",
    "certificate_issued",
    "referral_earned",
    "payment_received",
    "profile_updated",
    "password_changed",
    "support_ticket_created",
    "support_ticket_replied",
    "payout_requested",
    "payout_completed",
    "system_announcement",
    "course_reviewed",
]
ActivityPriority = Literal["low", "medium", "high", "urgent"]
ActivityCategory = Literal["course", "payment", "referral", "support", "system", "security"]
PurchaseStatus = Literal["pending", "completed", "failed", "refunded"]


class _Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)


def default_notification_preferences() -> Dict[str, Dict[str, bool]]:
    return {
        "email": {
            "course_updates": True,
            "promotions": True,
            "referral_earnings": True,
            "support_replies": True,
            "system_announcements": True,
        },
        "push": {
            "course_updates": True,
            "promotions": False,
            "referral_earnings": True,
            "support_replies": True,
            "system_announcements": True,
        },
    }


class User(_Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password: Optional[str] = Field(None, description="Password hash, absent for OAuth accounts")
    avatar: Optional[str] = Field(None, description="Profile image URL")
    phone_number: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    referral_code: str = Field(..., description="User's unique referral code")
    referred_by: Optional[str] = Field(None, description="Referral code of the inviter")
    referral_earnings: float = Field(0, ge=0)
    role: Literal["student", "admin"] = "student"
    oauth_provider: Optional[str] = None
    email_verified: Optional[datetime] = None
    notification_preferences: Dict[str, Dict[str, bool]] = Field(default_factory=default_notification_preferences)


class Lesson(_Document):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    title: str
    video_url: str = ""
    text_content: str = ""
    duration: int = Field(10, ge=0, description="Minutes")
    order: int = 0


class Course(_Document):
    title: str
    slug: str
    description: str
    thumbnail: str
    icon: str = "📚"
    price: float = Field(..., ge=0)
    original_price: Optional[float] = None
    lessons: List[Lesson] = Field(default_factory=list)
    difficulty: Literal["Beginner", "Intermediate", "Advanced"] = "Intermediate"
    instructor: str = "LearnHQ Team"
    rating: float = Field(4.8, ge=0, le=5)
    enrollment_count: int = 0
    status: Literal["draft", "published", "archived"] = "draft"
    requires_completion_for_download: bool = False


class Purchase(_Document):
    user_id: ObjectId
    course_id: ObjectId
    amount: float = Field(..., ge=0)
    status: PurchaseStatus = "pending"
    payment_reference: str
    payment_provider: str = "paystack"
    paid_at: Optional[datetime] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class Progress(_Document):
    user_id: ObjectId
    course_id: ObjectId
    lessons_completed: List[str] = Field(default_factory=list)
    percentage: int = Field(0, ge=0, le=100)
    completed_at: Optional[datetime] = None
    certificate_issued: bool = False
    certificate_issued_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None


class Activity(_Document):
    user_id: ObjectId
    type: ActivityType
    title: str = Field(..., max_length=200)
    message: str = Field(..., max_length=1000)
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    priority: ActivityPriority = "medium"
    category: ActivityCategory
    action_url: Optional[str] = None
    expires_at: Optional[datetime] = None


class Coupon(_Document):
    code: str
    type: Literal["percentage", "fixed"]
    value: float = Field(..., ge=0)
    is_valid: bool = True
    message: str = ""
    usage_limit: Optional[int] = Field(None, ge=1, description="None means unlimited")
    used_count: int = 0
    single_use: bool = False
    used_by: List[ObjectId] = Field(default_factory=list)
    applicable_courses: List[ObjectId] = Field(default_factory=list, description="Empty means every course")
    minimum_amount: float = 0
    expires_at: Optional[datetime] = None
    created_by: Optional[ObjectId] = None


class Review(_Document):
    user_id: ObjectId
    course_id: ObjectId
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=1000)
    is_verified_purchase: bool = False
    helpful: int = 0
    not_helpful: int = 0
    helpful_voters: List[ObjectId] = Field(default_factory=list)
    not_helpful_voters: List[ObjectId] = Field(default_factory=list)
    status: Literal["pending", "approved", "rejected"] = "approved"
