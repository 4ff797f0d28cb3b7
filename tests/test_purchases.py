import hashlib
import hmac
import json

import pytest
from httpx import AsyncClient

import payments
from config import settings
from conftest import auth_headers
from database import create_document
from schemas import Coupon


def add_coupon(db, code="SAVE10", type="fixed", value=1000, **extra):
    return create_document(db, "coupon", Coupon(code=code, type=type, value=value, **extra))


@pytest.fixture
def paystack(monkeypatch):
    calls = {}

    def fake_initialize(email, amount, reference, callback_url, metadata=None):
        calls["initialize"] = {"email": email, "amount": amount, "reference": reference}
        return {"authorization_url": f"https://checkout.test/{reference}", "access_code": "ACCESS"}

    def fake_verify(reference):
        calls["verify"] = reference
        return calls.get("transaction", {"status": "success", "amount": payments.to_kobo(calls["initialize"]["amount"])})

    monkeypatch.setattr(payments, "initialize_transaction", fake_initialize)
    monkeypatch.setattr(payments, "verify_transaction", fake_verify)
    return calls


@pytest.mark.asyncio
async def test_free_enrolment(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course(price=0)
    headers = auth_headers(user)

    response = await client.post("/api/purchases/free", json={"courseId": str(course["_id"])}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "completed"
    assert db["progress"].count_documents({"user_id": user["_id"], "course_id": course["_id"]}) == 1
    assert db["course"].find_one({"_id": course["_id"]})["enrollment_count"] == 1
    assert db["activity"].count_documents({"user_id": user["_id"], "type": "course_purchased"}) == 1

    again = await client.post("/api/purchases/free", json={"courseId": str(course["_id"])}, headers=headers)
    assert again.status_code == 400
    assert again.json() == {"error": "Course already purchased"}


@pytest.mark.asyncio
async def test_free_enrolment_rejects_paid_course(client: AsyncClient, make_user, make_course):
    user, course = make_user(), make_course(price=5000)
    response = await client.post("/api/purchases/free", json={"courseId": str(course["_id"])},
                                 headers=auth_headers(user))
    assert response.status_code == 400
    assert response.json() == {"error": "This course is not free"}


@pytest.mark.asyncio
async def test_full_discount_coupon_enrols_for_free(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course(price=5000)
    add_coupon(db, code="FULL100", type="percentage", value=100, usage_limit=1)

    response = await client.post("/api/purchases/free", json={"courseId": str(course["_id"]), "couponCode": "full100"},
                                 headers=auth_headers(user))
    assert response.status_code == 200
    coupon = db["coupon"].find_one({"code": "FULL100"})
    assert coupon["used_count"] == 1
    assert coupon["is_valid"] is False


@pytest.mark.asyncio
async def test_coupon_verify(client: AsyncClient, db, make_user, make_course):
    user, course = make_user(), make_course(price=5000)
    add_coupon(db)
    headers = auth_headers(user)

    valid = await client.post("/api/coupon/verify", json={"code": "save10", "courseId": str(course["_id"])},
                              headers=headers)
    assert valid.json()["data"]["isValid"] is True
    assert valid.json()["data"]["discountAmount"] == 1000
    assert valid.json()["data"]["finalAmount"] == 4000

    invalid = await client.post("/api/coupon/verify", json={"code": "NOPE", "courseId": str(course["_id"])},
                                headers=headers)
    assert invalid.json()["data"] == {"isValid": False, "message": "Invalid coupon code"}


@pytest.mark.asyncio
async def test_paid_checkout_credits_referrer(client: AsyncClient, db, make_user, make_course, paystack):
    referrer = make_user(name="Grace", email="grace@example.com")
    buyer = make_user(referred_by=referrer["referral_code"])
    course = make_course(price=5000)
    headers = auth_headers(buyer)

    init = await client.post("/api/payments/initialize", json={"courseId": str(course["_id"])}, headers=headers)
    assert init.status_code == 200
    reference = init.json()["data"]["reference"]
    assert init.json()["data"]["authorizationUrl"].endswith(reference)
    assert db["purchase"].find_one({"payment_reference": reference})["status"] == "pending"

    verify = await client.get(f"/api/payments/verify?reference={reference}", headers=headers)
    assert verify.status_code == 200
    assert verify.json()["data"]["status"] == "completed"
    assert db["user"].find_one({"_id": referrer["_id"]})["referral_earnings"] == 1500
    assert db["activity"].count_documents({"user_id": referrer["_id"], "type": "referral_earned"}) == 1

    repeat = await client.get(f"/api/payments/verify?reference={reference}", headers=headers)
    assert repeat.json()["message"] == "Payment already verified"
    assert db["user"].find_one({"_id": referrer["_id"]})["referral_earnings"] == 1500

    earnings = await client.get("/api/referral/earnings", headers=auth_headers(referrer))
    data = earnings.json()["data"]
    assert data["successfulAffiliates"] == 1
    assert data["withdrawableBalance"] == data["totalEarnings"] == 1500
    assert data["history"][0]["reward"] == 1500


@pytest.mark.asyncio
async def test_verify_marks_failed_payment(client: AsyncClient, db, make_user, make_course, paystack):
    user, course = make_user(), make_course(price=5000)
    headers = auth_headers(user)
    init = await client.post("/api/payments/initialize", json={"courseId": str(course["_id"])}, headers=headers)
    reference = init.json()["data"]["reference"]

    paystack["transaction"] = {"status": "success", "amount": 100}
    response = await client.get(f"/api/payments/verify?reference={reference}", headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Payment amount mismatch"}
    assert db["purchase"].find_one({"payment_reference": reference})["status"] == "failed"


@pytest.mark.asyncio
async def test_webhook(client: AsyncClient, db, make_user, make_course, paystack, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "sk_test_secret")
    user, course = make_user(), make_course(price=5000)
    init = await client.post("/api/payments/initialize", json={"courseId": str(course["_id"])},
                             headers=auth_headers(user))
    reference = init.json()["data"]["reference"]

    body = json.dumps({"event": "charge.success", "data": {"reference": reference, "amount": 500000}}).encode()
    signature = hmac.new(b"sk_test_secret", body, hashlib.sha512).hexdigest()

    rejected = await client.post("/api/payments/webhook", content=body, headers={"x-paystack-signature": "bad"})
    assert rejected.status_code == 401

    for _ in range(2):
        accepted = await client.post("/api/payments/webhook", content=body,
                                     headers={"x-paystack-signature": signature, "content-type": "application/json"})
        assert accepted.json() == {"received": True}

    assert db["purchase"].find_one({"payment_reference": reference})["status"] == "completed"
    assert db["course"].find_one({"_id": course["_id"]})["enrollment_count"] == 1


@pytest.mark.asyncio
async def test_my_courses(client: AsyncClient, make_user, make_course, enrol):
    user, course = make_user(), make_course()
    enrol(user, course)

    response = await client.get("/api/purchases/my-courses", headers=auth_headers(user))
    data = response.json()["data"]
    assert len(data) == 1
    assert data[0]["slug"] == course["slug"]
    assert data[0]["totalLessons"] == 4
