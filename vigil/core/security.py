"""Password hashing and JWT utilities for responder profiles."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt

from vigil.core.config import settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def create_access_token(profile_id: uuid.UUID, expires_in: timedelta | None = None) -> str:
    """Issue an HS256 token whose `sub` is the profile id."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_in or timedelta(minutes=settings.jwt_expire_minutes))
    claims: dict[str, Any] = {"sub": str(profile_id), "iat": now, "exp": expire}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Validated claims, or None for a bad/expired token."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def profile_id_from_token(token: str) -> uuid.UUID | None:
    claims = decode_access_token(token)
    if not claims or "sub" not in claims:
        return None
    try:
        return uuid.UUID(claims["sub"])
    except ValueError:
        return None
