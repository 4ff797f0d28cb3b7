import pytest
from httpx import AsyncClient

from conftest import auth_headers


def complete_course(db, user, course, issued=False, percentage=100):
    db["progress"].insert_one({
        "user_id": user["_id"],
        "course_id": course["_id"],
        "lessons_completed": [str(lesson["_id"]) for lesson in course["lessons"]],
        "percentage": percentage,
        "completed_at": None,
        "certificate_issued": issued,
    })


@pytest.mark.asyncio
async def test_verify_rejects_bad_format(client: AsyncClient):
    response = await client.get("/api/certificates/verify/not-a-valid-id-format")
    assert response.status_code == 400
    assert response.json() == {"valid": False, "error": "Invalid certificate ID format"}


@pytest.mark.asyncio
async def test_verify_unknown_certificate(client: AsyncClient, make_user, make_course):
    user, course = make_user(), make_course()
    response = await client.get(f"/api/certificates/verify/{user['_id']}-{course['_id']}")
    assert response.status_code == 404
    assert response.json() == {"valid": False, "error": "Certificate not found or not issued"}


@pytest.mark.asyncio
async def test_verify_incomplete_course_even_when_flag_set(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course()
    complete_course(db, user, course, issued=True, percentage=80)

    response = await client.get(f"/api/certificates/verify/{user['_id']}-{course['_id']}")
    assert response.status_code == 400
    assert response.json() == {"valid": False, "error": "Course not completed"}


@pytest.mark.asyncio
async def test_verify_completed_but_not_issued(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course()
    complete_course(db, user, course, issued=False)

    response = await client.get(f"/api/certificates/verify/{user['_id']}-{course['_id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_issued_certificate(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course()
    complete_course(db, user, course, issued=True)

    certificate_id = f"{user['_id']}-{course['_id']}"
    response = await client.get(f"/api/certificates/verify/{certificate_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["data"]["certificateId"] == certificate_id
    assert body["data"]["studentName"] == "Ada Lovelace"
    assert body["data"]["courseName"] == course["title"]


@pytest.mark.asyncio
async def test_list_certificates(client: AsyncClient, db, make_user, make_course, enrol):
    user = make_user()
    empty = await client.get("/api/certificates", headers=auth_headers(user))
    assert empty.json()["data"] == []
    assert empty.json()["message"] == "No purchased courses found"

    started, finished = make_course(slug="started"), make_course(slug="finished")
    enrol(user, started)
    enrol(user, finished)
    complete_course(db, user, finished, issued=True)

    response = await client.get("/api/certificates", headers=auth_headers(user))
    data = response.json()["data"]
    assert [row["courseName"] for row in data] == [finished["title"], started["title"]]
    assert data[0]["available"] is True
    assert data[1]["available"] is False
    assert data[1]["lessonsCompleted"] == 0


@pytest.mark.asyncio
async def test_get_certificate_guards(client: AsyncClient, db, make_user, make_course, enrol):
    user, course = make_user(), make_course()
    headers = auth_headers(user)

    not_bought = await client.get(f"/api/certificates/{course['_id']}", headers=headers)
    assert not_bought.status_code == 403

    enrol(user, course)
    incomplete = await client.get(f"/api/certificates/{course['_id']}", headers=headers)
    assert incomplete.status_code == 400


@pytest.mark.asyncio
async def test_download_issues_certificate(client: AsyncClient, db, make_user, make_course, enrol):
    user, course = make_user(), make_course()
    enrol(user, course)
    complete_course(db, user, course)
    headers = auth_headers(user)

    meta = await client.get(f"/api/certificates/{course['_id']}", headers=headers)
    assert meta.status_code == 200
    assert meta.json()["data"]["certificateIssued"] is False
    assert meta.json()["data"]["available"] is False

    download = await client.get(f"/api/certificates/{course['_id']}?download=true", headers=headers)
    assert download.status_code == 200
    assert download.headers["content-type"] == "image/png"
    assert download.content.startswith(b"\x89PNG")

    record = db["progress"].find_one({"user_id": user["_id"]})
    assert record["certificate_issued"] is True
    assert db["activity"].count_documents({"type": "certificate_issued"}) == 1

    after = await client.get(f"/api/certificates/{course['_id']}", headers=headers)
    assert after.json()["data"]["available"] is True
    assert after.json()["data"]["certificateIssued"] is True


@pytest.mark.asyncio
async def test_admin_issue_certificate(client: AsyncClient, db, make_user, make_course):
    admin = make_user(name="Admin", email="admin@example.com", role="admin")
    student, course = make_user(), make_course()

    forbidden = await client.post(f"/api/certificates/{course['_id']}", json={"userId": str(student["_id"])},
                                  headers=auth_headers(student))
    assert forbidden.status_code == 403

    refused = await client.post(f"/api/certificates/{course['_id']}", json={"userId": str(student["_id"])},
                                headers=auth_headers(admin))
    assert refused.status_code == 400

    forced = await client.post(f"/api/certificates/{course['_id']}",
                               json={"userId": str(student["_id"]), "forceIssue": True}, headers=auth_headers(admin))
    assert forced.status_code == 200
    certificate_id = forced.json()["data"]["certificateId"]

    verified = await client.get(f"/api/certificates/verify/{certificate_id}")
    assert verified.json()["valid"] is True
