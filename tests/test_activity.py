from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

import activity
from conftest import auth_headers


@pytest.mark.asyncio
async def test_feed_and_read_state(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course()
    activity.course_purchased(db, user["_id"], course, 5000)
    activity.course_completed(db, user["_id"], course)
    headers = auth_headers(user)

    feed = await client.get("/api/activity", headers=headers)
    data = feed.json()["data"]
    assert data["pagination"]["total"] == 2
    assert data["unreadCount"] == 2

    first = data["activities"][0]["id"]
    patched = await client.patch(f"/api/activity/{first}", json={"read": True}, headers=headers)
    assert patched.json()["data"]["read"] is True

    stats = await client.get("/api/activity/stats", headers=headers)
    assert stats.json()["data"]["unread"] == 1
    assert stats.json()["data"]["readPercentage"] == 50

    marked = await client.post("/api/activity/mark-all-read", headers=headers)
    assert marked.json()["data"]["modifiedCount"] == 1


@pytest.mark.asyncio
async def test_activity_is_private(client: AsyncClient, db, make_user, make_course):
    owner, other = make_user(), make_user(name="Grace", email="grace@example.com")
    activity_id = activity.course_completed(db, owner["_id"], make_course())

    response = await client.get(f"/api/activity/{activity_id}", headers=auth_headers(other))
    assert response.status_code == 404

    deleted = await client.delete(f"/api/activity/{activity_id}", headers=auth_headers(owner))
    assert deleted.status_code == 200
    assert db["activity"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_admin_creates_announcement(client: AsyncClient, db, make_user):
    admin = make_user(name="Admin", email="admin@example.com", role="admin")
    student = make_user()
    body = {
        "userId": str(student["_id"]),
        "type": "system_announcement",
        "title": "Maintenance",
        "message": "Back soon.",
        "category": "system",
        "expiresAt": (datetime.utcnow() + timedelta(days=1)).isoformat() + "Z",
    }

    forbidden = await client.post("/api/activity", json=body, headers=auth_headers(student))
    assert forbidden.status_code == 403

    created = await client.post("/api/activity", json=body, headers=auth_headers(admin))
    assert created.status_code == 201
    stored = db["activity"].find_one({"user_id": student["_id"]})
    assert stored["expires_at"].tzinfo is None


@pytest.mark.asyncio
async def test_bad_activity_body(client: AsyncClient, make_user):
    admin = make_user(role="admin")
    response = await client.post("/api/activity", json={"type": "nope"}, headers=auth_headers(admin))
    assert response.status_code == 400
    assert "error" in response.json()
