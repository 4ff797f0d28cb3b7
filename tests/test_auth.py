import pytest
from httpx import AsyncClient

from conftest import PASSWORD, auth_headers
from security import (
    generate_password,
    generate_referral_code,
    hash_password,
    validate_password_strength,
    verify_password,
)


def test_password_strength_rules():
    assert validate_password_strength("Secret123") is None
    assert validate_password_strength("Ab1") == "Password must be at least 6 characters long"
    assert validate_password_strength("secret123") == "Password must contain at least one uppercase letter"
    assert validate_password_strength(generate_password()) is None


def test_new_password_hashes_use_argon2():
    hashed = hash_password("Secret123")
    assert hashed.startswith("$argon2")
    assert verify_password("Secret123", hashed)
    assert not verify_password("Secret124", hashed)
    assert not verify_password("Secret123", None)


def test_referral_codes_are_unique():
    codes = {generate_referral_code() for _ in range(50)}
    assert len(codes) == 50


@pytest.mark.asyncio
async def test_signup_login_and_me(client: AsyncClient, db):
    signup = await client.post("/api/auth/signup",
                               json={"name": "Ada", "email": "Ada@Example.com", "password": "Secret123"})
    assert signup.status_code == 200
    assert signup.json()["data"]["user"]["email"] == "ada@example.com"

    duplicate = await client.post("/api/auth/signup",
                                  json={"name": "Ada", "email": "ada@example.com", "password": "Secret123"})
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "User already exists with this email"}

    login = await client.post("/api/auth/login", data={"username": "ada@example.com", "password": "Secret123"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["name"] == "Ada"


@pytest.mark.asyncio
async def test_signup_records_known_referral_code(client: AsyncClient, db, make_user):
    referrer = make_user()
    response = await client.post("/api/auth/signup", json={
        "name": "Grace", "email": "grace@example.com", "password": "Secret123",
        "referralCode": referrer["referral_code"],
    })
    assert response.status_code == 200
    assert db["user"].find_one({"email": "grace@example.com"})["referred_by"] == referrer["referral_code"]


@pytest.mark.asyncio
async def test_login_json_and_bad_credentials(client: AsyncClient, make_user):
    make_user()
    ok = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": PASSWORD})
    assert ok.status_code == 200

    bad = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json() == {"error": "Invalid credentials"}


@pytest.mark.asyncio
async def test_token_for_deleted_user(client: AsyncClient, db, make_user):
    user = make_user()
    db["user"].delete_one({"_id": user["_id"]})
    response = await client.get("/api/auth/me", headers=auth_headers(user))
    assert response.status_code == 404

    garbage = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
