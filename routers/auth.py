import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db
from dependencies import get_current_user
from schemas import User
from security import (
    create_access_token,
    generate_referral_code,
    hash_password,
    validate_password_strength,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    referral_code: Optional[str] = Field(None, alias="referralCode")

    model_config = {"populate_by_name": True}


def user_view(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "role": user.get("role", "student"),
        "avatar": user.get("avatar"),
        "referralCode": user.get("referral_code"),
        "emailVerified": bool(user.get("email_verified")),
    }


def register_user(database: Database, name: str, email: str, password: Optional[str],
                  referred_by: Optional[str] = None, role: str = "student") -> dict:
    email = email.lower()
    if database["user"].find_one({"email": email}):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists with this email")

    referrer_code = referred_by.strip().upper() if referred_by else None
    if referrer_code and not database["user"].find_one({"referral_code": referrer_code}):
        logger.info("Ignoring unknown referral code %s for %s", referrer_code, email)
        referrer_code = None

    user = User(
        name=name.strip(),
        email=email,
        password=hash_password(password) if password else None,
        referral_code=generate_referral_code(),
        referred_by=referrer_code,
        role=role,
    )
    try:
        user_id = create_document(database, "user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists with this email")
    logger.info("Registered user %s (%s)", user_id, email)
    return database["user"].find_one({"_id": user_id})


@router.post("/signup")
def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    problem = validate_password_strength(payload.password)
    if problem:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=problem)
    user = register_user(db, payload.name, payload.email, payload.password, payload.referral_code)
    token = create_access_token({"sub": str(user["_id"])})
    return {"success": True, "data": {"user": user_view(user), "token": token}}


@router.post("/login", response_model=Token)
async def login(request: Request, db: Database = Depends(get_db)):
    # Accept either application/x-www-form-urlencoded (username) or JSON { email, password }
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")
        email, password = body.get("email"), body.get("password")
    else:
        form = await request.form()
        email = form.get("username") or form.get("email")
        password = form.get("password")
    if not email or not password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and password are required")

    user = db["user"].find_one({"email": str(email).lower()})
    if user is None or not verify_password(str(password), user.get("password")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return Token(access_token=create_access_token({"sub": str(user["_id"])}))


@router.get("/me")
def me(current: dict = Depends(get_current_user)):
    return {"success": True, "data": user_view(current)}
