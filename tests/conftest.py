from datetime import datetime

import mongomock
import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import Course, Lesson, User
from security import create_access_token, generate_referral_code, hash_password

PASSWORD = "Secret123"


@pytest.fixture(name="db")
def db_fixture():
    database = mongomock.MongoClient().learnhq_test
    ensure_indexes(database)
    yield database


@pytest.fixture(name="client")
def client_fixture(db):
    def get_db_override():
        return db

    app.dependency_overrides[get_db] = get_db_override
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def factory(name="Ada Lovelace", email="ada@example.com", role="student", referred_by=None, **extra):
        user = User(
            name=name,
            email=email,
            password=hash_password(PASSWORD),
            referral_code=generate_referral_code(),
            referred_by=referred_by,
            role=role,
        )
        doc = user.model_dump(by_alias=True)
        doc.update(extra)
        user_id = create_document(db, "user", doc)
        return db["user"].find_one({"_id": user_id})
    return factory


@pytest.fixture
def make_course(db):
    def factory(slug="python-basics", price=5000, lessons=4, status="published", **extra):
        course = Course(
            title=slug.replace("-", " ").title(),
            slug=slug,
            description="Learn by doing.",
            thumbnail="/img/course.png",
            price=price,
            status=status,
            lessons=[Lesson(title=f"Lesson {n}", duration=15, order=n) for n in range(1, lessons + 1)],
        )
        doc = course.model_dump(by_alias=True)
        doc.update(extra)
        course_id = create_document(db, "course", doc)
        return db["course"].find_one({"_id": course_id})
    return factory


@pytest.fixture
def enrol(db):
    def factory(user, course, amount=0):
        create_document(db, "purchase", {
            "user_id": user["_id"],
            "course_id": course["_id"],
            "amount": amount,
            "status": "completed",
            "payment_reference": f"TEST-{ObjectId()}",
            "payment_provider": "free",
            "paid_at": datetime.utcnow(),
            "data": {},
        })
    return factory


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user['_id'])})}"}


def lesson_id(course, index) -> str:
    return str(sorted(course["lessons"], key=lambda lesson: lesson["order"])[index]["_id"])
