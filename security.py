"""
Authentication and authorization.

Protected routes need the same signed token twice: as `Authorization: Bearer`
and as the HTTP-only `token` cookie set when the token was issued.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Cookie, Depends, Header
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from database import find_by_id, get_db, sanitize
from errors import ErrorResponse
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

RESET_TOKEN_TTL = timedelta(minutes=10)
LOGOUT_COOKIE_TTL = timedelta(seconds=5)
NOT_AUTHORIZED = "Not authorized to access this route"


# Passwords

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# Signed session tokens

def create_access_token(user_id: str, settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expire_days)
    return jwt.encode({"sub": user_id, "exp": expire}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> str:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise ErrorResponse(NOT_AUTHORIZED, 401)
    user_id = payload.get("sub")
    if not user_id:
        raise ErrorResponse(NOT_AUTHORIZED, 401)
    return user_id


def token_response(user_id: str, message: str, settings: Settings, status_code: int = 200) -> JSONResponse:
    """Issue a token, return it in the body and mirror it into the cookie."""
    token = create_access_token(user_id, settings)
    response = JSONResponse(
        status_code=status_code,
        content={"success": True, "status": True, "message": message, "token": token},
    )
    response.set_cookie(
        "token",
        token,
        expires=datetime.now(timezone.utc) + timedelta(days=settings.jwt_cookie_expire_days),
        httponly=True,
        secure=settings.is_production,
    )
    return response


def logout_response(settings: Settings) -> JSONResponse:
    response = JSONResponse(
        status_code=200,
        content={"success": True, "status": True, "message": "User logged out successfully", "data": {}},
    )
    response.set_cookie(
        "token",
        "none",
        expires=datetime.now(timezone.utc) + LOGOUT_COOKIE_TTL,
        httponly=True,
        secure=settings.is_production,
    )
    return response


# One-time tokens for password reset and email confirmation

def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def generate_reset_token() -> Tuple[str, str, datetime]:
    """Returns (raw token for the email, hash to store, expiry)."""
    raw = secrets.token_hex(20)
    return raw, hash_token(raw), datetime.now(timezone.utc) + RESET_TOKEN_TTL


def generate_confirm_token() -> Tuple[str, str]:
    """Returns (token for the email link, hash of its first segment to store)."""
    raw = secrets.token_hex(20)
    extension = secrets.token_hex(100)
    return f"{raw}.{extension}", hash_token(raw)


def hash_confirm_token(token: str) -> str:
    return hash_token(token.split(".")[0])


# Route dependencies

def protect(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Cookie(None),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    if not authorization or not authorization.startswith("Bearer"):
        raise ErrorResponse(f"{NOT_AUTHORIZED}-Bearer", 401)
    if not token:
        raise ErrorResponse(f"{NOT_AUTHORIZED}-Cookie", 401)

    parts = authorization.split(" ")
    bearer = parts[1] if len(parts) > 1 else ""
    if not hmac.compare_digest(bearer.encode(), token.encode()):
        raise ErrorResponse("Token mismatch", 401)

    user_id = decode_access_token(bearer, settings)
    try:
        user = find_by_id(db, "user", user_id)
    except ErrorResponse:
        user = None
    if not user:
        logger.info("Token subject %s has no user", user_id)
        raise ErrorResponse("No user found with this id", 401)
    return sanitize(user)


def authorize(*roles: str):
    def role_dep(current_user: dict = Depends(protect)) -> dict:
        role = (current_user or {}).get("role")
        if not role:
            raise ErrorResponse("User role information not available", 403)
        if role not in roles:
            raise ErrorResponse(f"User role as a {role} is not authorized to access this route", 403)
        return current_user
    return role_dep
