"""Password hashing, bearer tokens and the FastAPI dependency that resolves the caller."""

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .errors import Unauthorized


logger = logging.getLogger("uvicorn.error")

ALGORITHM = "HS256"
BCRYPT_MAX_BYTES = 72

bearer_scheme = HTTPBearer(auto_error=False)


def _password_bytes(password: str) -> bytes:
    raw = password.encode("utf-8")
    # bcrypt ignores everything past 72 bytes; fold long passwords into a fixed digest.
    if len(raw) > BCRYPT_MAX_BYTES:
        raw = hashlib.sha256(raw).hexdigest().encode("utf-8")
    return raw


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user_id: str, secret: str, ttl_minutes: int = 60) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)
    claims = {"sub": user_id, "exp": expire, "type": "access"}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> str:
    """Return the user id carried by ``token`` or raise :class:`Unauthorized`."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise Unauthorized("invalid or expired token") from exc
    user_id = claims.get("sub")
    if not user_id or claims.get("type") != "access":
        raise Unauthorized("invalid token claims")
    return str(user_id)


async def optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[dict]:
    if credentials is None or not credentials.credentials:
        return None
    settings = request.app.state.settings
    if not settings.auth_secret:
        logger.warning("AUTH_SECRET is not configured; rejecting bearer token")
        return None
    try:
        user_id = decode_access_token(credentials.credentials, settings.auth_secret)
    except Unauthorized as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    return await request.app.state.db.get_user(user_id)


async def current_user(user: Optional[dict] = Depends(optional_user)) -> dict:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
