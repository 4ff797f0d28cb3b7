from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from conftest import auth_headers
from routers.admin import change_percent, time_ago


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", email="admin@example.com", role="admin")


def lesson_payload(count=3):
    return [{"title": f"Part {n}", "videoUrl": f"https://video.test/{n}", "duration": 20} for n in range(1, count + 1)]


def test_change_percent():
    assert change_percent(10, 0) == "+100%"
    assert change_percent(15, 10) == "+50.0%"
    assert change_percent(5, 10) == "-50.0%"


def test_time_ago():
    now = datetime(2026, 10, 19, 12, 0)
    assert time_ago(now - timedelta(minutes=5), now) == "5 minutes ago"
    assert time_ago(now - timedelta(hours=3), now) == "3 hours ago"
    assert time_ago(now - timedelta(days=1, hours=2), now) == "1 day ago"
    assert time_ago(now - timedelta(days=4), now) == "4 days ago"


@pytest.mark.asyncio
async def test_admin_routes_require_admin(client: AsyncClient, make_user):
    student = make_user()
    response = await client.get("/api/admin/dashboard", headers=auth_headers(student))
    assert response.status_code == 403
    assert response.json() == {"error": "Admin access required"}

    anonymous = await client.get("/api/admin/dashboard")
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_dashboard(client: AsyncClient, admin, make_user, make_course, enrol, db):
    student, course = make_user(), make_course()
    enrol(student, course, amount=5000)

    response = await client.get("/api/admin/dashboard", headers=auth_headers(admin))
    data = response.json()["data"]
    assert data["totalUser"] == 2
    assert data["totalCourses"] == 1
    assert data["totalRevenue"] == 5000
    assert data["activeStudents"] == 1
    assert data["metricsChange"]["totalRevenue"] == "+100%"


@pytest.mark.asyncio
async def test_list_users(client: AsyncClient, admin, make_user, make_course, enrol):
    student = make_user(name="Ada (test)", email="ada@example.com")
    enrol(student, make_course())
    headers = auth_headers(admin)

    response = await client.get("/api/admin/users?role=student", headers=headers)
    users = response.json()["data"]["users"]
    assert [u["email"] for u in users] == ["ada@example.com"]
    assert users[0]["coursesEnrolled"] == 1

    searched = await client.get("/api/admin/users", params={"search": "(test)"}, headers=headers)
    assert len(searched.json()["data"]["users"]) == 1

    simple = await client.get("/api/admin/users?simple=true", headers=headers)
    assert {u["email"] for u in simple.json()["data"]} == {"ada@example.com", "admin@example.com"}


@pytest.mark.asyncio
async def test_enrol_new_user(client: AsyncClient, db, admin, make_course):
    course = make_course()
    response = await client.post("/api/admin/users/enrol", json={
        "name": "New Student", "email": "new@example.com", "courseIds": [str(course["_id"])],
    }, headers=auth_headers(admin))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["enrolledCourses"] == [str(course["_id"])]

    login = await client.post("/api/auth/login", json={"email": "new@example.com",
                                                       "password": data["temporaryPassword"]})
    assert login.status_code == 200

    user = db["user"].find_one({"email": "new@example.com"})
    progress = await client.get(f"/api/admin/users/progress/{user['_id']}", headers=auth_headers(admin))
    assert progress.json()["data"]["courses"][0]["progress"] == 0


@pytest.mark.asyncio
async def test_course_crud(client: AsyncClient, db, admin, make_user, enrol):
    headers = auth_headers(admin)
    payload = {
        "title": "Data Science", "slug": "data-science", "description": "Numbers.",
        "thumbnail": "/img/ds.png", "price": 8000, "lessons": lesson_payload(), "status": "published",
    }

    missing = await client.post("/api/admin/courses", json={"title": "Half"}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing required fields"}

    created = await client.post("/api/admin/courses", json=payload, headers=headers)
    assert created.status_code == 201
    assert created.json()["data"]["status"] == "Published"
    assert created.json()["data"]["lessons"] == 3
    course_id = created.json()["data"]["id"]

    duplicate = await client.post("/api/admin/courses", json=payload, headers=headers)
    assert duplicate.json() == {"error": "Course slug already exists"}

    updated = await client.put(f"/api/admin/courses/{course_id}", json={"price": 9000}, headers=headers)
    assert updated.json()["data"]["price"] == 9000
    assert len(updated.json()["data"]["lessons"]) == 3

    listing = await client.get("/api/admin/courses?status=published", headers=headers)
    assert listing.json()["data"]["pagination"]["total"] == 1

    enrol(make_user(), db["course"].find_one({"slug": "data-science"}))
    blocked = await client.delete(f"/api/admin/courses/{course_id}", headers=headers)
    assert blocked.status_code == 400
    assert blocked.json() == {"error": "Cannot delete course with existing purchases"}


@pytest.mark.asyncio
async def test_delete_unpurchased_course(client: AsyncClient, db, admin, make_course):
    course = make_course()
    response = await client.delete(f"/api/admin/courses/{course['_id']}", headers=auth_headers(admin))
    assert response.status_code == 200
    assert db["course"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_enrol_existing_user_skips_owned_courses(client: AsyncClient, admin, make_user, make_course, enrol):
    student = make_user()
    owned, fresh = make_course(slug="owned"), make_course(slug="fresh")
    enrol(student, owned)

    response = await client.post("/api/admin/courses/enrol", json={
        "userId": str(student["_id"]), "courseIds": [str(owned["_id"]), str(fresh["_id"])],
    }, headers=auth_headers(admin))
    data = response.json()["data"]
    assert [c["id"] for c in data["enrolled"]] == [str(fresh["_id"])]
    assert [c["id"] for c in data["skipped"]] == [str(owned["_id"])]

    listing = await client.get("/api/admin/courses/enrol", headers=auth_headers(admin))
    assert listing.json()["data"]["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_delete_user(client: AsyncClient, db, admin, make_user, make_course, enrol):
    headers = auth_headers(admin)
    student = make_user()
    enrol(student, make_course())

    own = await client.delete(f"/api/admin/delete-user/{admin['_id']}", headers=headers)
    assert own.status_code == 400

    blocked = await client.delete(f"/api/admin/delete-user/{student['_id']}", headers=headers)
    assert blocked.status_code == 400
    assert blocked.json()["code"] == "ACTIVE_DATA_EXISTS"

    forced = await client.request("DELETE", f"/api/admin/delete-user/{student['_id']}",
                                  json={"reason": "Requested by user", "forceDelete": True}, headers=headers)
    assert forced.status_code == 200
    assert db["user"].find_one({"_id": student["_id"]}) is None
    assert db["purchase"].count_documents({"user_id": student["_id"]}) == 0
    assert db["activity"].count_documents({"user_id": admin["_id"], "type": "system_announcement"}) == 1


@pytest.mark.asyncio
async def test_coupons(client: AsyncClient, db, admin):
    headers = auth_headers(admin)

    too_big = await client.post("/api/admin/coupons", json={"code": "HUGE", "type": "percentage", "value": 150},
                                headers=headers)
    assert too_big.status_code == 400

    created = await client.post("/api/admin/coupons", json={
        "code": "launch20", "type": "percentage", "value": 20,
        "expiresAt": (datetime.utcnow() + timedelta(days=3)).isoformat(),
    }, headers=headers)
    assert created.status_code == 201
    coupon = created.json()["data"]
    assert coupon["code"] == "LAUNCH20"
    assert coupon["status"] == "active"

    duplicate = await client.post("/api/admin/coupons", json={"code": "LAUNCH20", "type": "fixed", "value": 5},
                                  headers=headers)
    assert duplicate.json() == {"error": "Coupon code already exists"}

    listing = await client.get("/api/admin/coupons", headers=headers)
    metrics = listing.json()["data"]["metrics"]
    assert metrics["totalCoupons"] == 1
    assert metrics["activeCoupons"] == 1
    assert metrics["expiringSoonCount"] == 1

    disabled = await client.patch(f"/api/admin/coupons/{coupon['id']}/status",
                                  json={"isValid": False, "message": "Paused"}, headers=headers)
    assert disabled.json()["data"]["status"] == "disabled"

    filtered = await client.get("/api/admin/coupons?status=disabled", headers=headers)
    assert [c["code"] for c in filtered.json()["data"]["coupons"]] == ["LAUNCH20"]
