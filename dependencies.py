from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

from database import get_db, to_object_id
from security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _load_user(token: str, database: Database) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if not payload:
        raise credentials_exception
    user_id = to_object_id(payload.get("sub"))
    if user_id is None:
        raise credentials_exception
    user = database["user"].find_one({"_id": user_id})
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), database: Database = Depends(get_db)) -> dict:
    """Resolve the bearer token to the stored user document."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _load_user(token, database)


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme),
                      database: Database = Depends(get_db)) -> Optional[dict]:
    """Like get_current_user, but anonymous or stale tokens resolve to None."""
    if not token:
        return None
    try:
        return _load_user(token, database)
    except HTTPException:
        return None


def require_role(*roles: str):
    """Dependency factory that ensures a user has one of the required roles."""
    def role_checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
        return user
    return role_checker


require_admin = require_role("admin")
