import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import create_document, delete_documents, get_document
from errors import AuthenticationError
from schemas import RefreshToken
from settings import settings

logger = logging.getLogger(f"{settings.SERVICE_NAME}.auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)

# Users are never read back with their password hash
PUBLIC_USER = {"password_hash": 0}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.JWT_EXPIRES_MIN))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def issue_refresh_token(user_id: str) -> str:
    """Signs a refresh token and records its id so it can be rotated or revoked."""
    jti = uuid.uuid4().hex
    expire = datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_EXPIRES_DAYS)
    token = jwt.encode(
        {"sub": user_id, "jti": jti, "type": "refresh", "exp": expire},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALG,
    )
    doc = RefreshToken(token=jti, user=user_id, expires_at=expire).model_dump()
    doc["user"] = ObjectId(user_id)
    create_document("refresh_tokens", doc)
    return token


def issue_tokens(user: dict) -> dict:
    user_id = str(user["_id"])
    return {
        "access_token": create_access_token({"sub": user_id, "name": user.get("name")}),
        "refresh_token": issue_refresh_token(user_id),
        "token_type": "bearer",
    }


def decode_token(token: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise AuthenticationError("Invalid token")
    return payload


def revoke_refresh_token(token: str) -> dict:
    payload = decode_token(token, "refresh")
    if not delete_documents("refresh_tokens", {"token": payload.get("jti")}):
        logger.warning("Refresh token %s reused or revoked", payload.get("jti"))
        raise AuthenticationError("Refresh token revoked", error="invalid_grant")
    return payload


def rotate_refresh_token(token: str) -> dict:
    """Revokes `token` and issues a fresh pair for its user."""
    payload = revoke_refresh_token(token)
    user = get_document("users", payload["sub"], PUBLIC_USER)
    if user is None:
        raise AuthenticationError("User not found", error="invalid_grant")
    return issue_tokens(user)


def revoke_user_tokens(user_id: ObjectId) -> int:
    return delete_documents("refresh_tokens", {"user": user_id})


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Not authenticated")
    payload = decode_token(credentials.credentials, "access")
    user = get_document("users", payload["sub"], PUBLIC_USER)
    if user is None:
        raise AuthenticationError("User not found")
    return user
