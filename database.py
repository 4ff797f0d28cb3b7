"""
MongoDB access for LearnHQ.

Collections are named after the lowercased schema class (see schemas.py).
Routers receive the database through the ``get_db`` dependency so tests can
swap in an in-memory database.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import settings

logger = logging.getLogger(__name__)

client = MongoClient(settings.DATABASE_URL)
db: Database = client[settings.DATABASE_NAME]


def get_db() -> Database:
    return db


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a path/body id. Malformed ids yield None so callers answer 404."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> ObjectId:
    """Insert a schema model (or plain dict) with created/updated timestamps."""
    doc = data.model_dump(by_alias=True) if isinstance(data, BaseModel) else dict(data)
    now = datetime.utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return result.inserted_id


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("referral_code", unique=True, sparse=True)
    database["user"].create_index("referred_by")

    database["course"].create_index("slug", unique=True)
    database["course"].create_index("status")

    database["purchase"].create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)
    database["purchase"].create_index("payment_reference", unique=True)
    database["purchase"].create_index("status")

    database["progress"].create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)

    database["review"].create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)
    database["review"].create_index([("course_id", ASCENDING), ("created_at", DESCENDING)])

    database["coupon"].create_index("code", unique=True)

    database["activity"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["activity"].create_index([("user_id", ASCENDING), ("read", ASCENDING)])
    database["activity"].create_index("expires_at", expireAfterSeconds=0)
    logger.info("Indexes ensured on %s", database.name)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC, the way pymongo hands them back."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
