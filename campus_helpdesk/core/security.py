"""Security helpers for password hashing, JWT creation and one-time tokens."""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt
from passlib.context import CryptContext

from campus_helpdesk.settings import settings

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

_TOKEN_FORMAT = re.compile(r"^[a-f0-9]+$", re.IGNORECASE)


def hash_password(password: str) -> str:
    """Hash a plain text password."""

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a password against its hash."""

    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _create_token(
    subject: str,
    token_type: str,
    expires_minutes: int,
    claims: dict[str, Any] | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": subject,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": now + timedelta(minutes=expires_minutes),
        "iss": settings.jwt_issuer,
        "jti": secrets.token_hex(8),
    }
    if claims:
        payload.update(claims)
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(
    subject: str,
    expires_minutes: int | None = None,
    claims: dict[str, Any] | None = None,
) -> str:
    """Create a signed short-lived JWT access token."""

    expire_minutes = expires_minutes or settings.jwt_access_token_expires_minutes
    return _create_token(subject, ACCESS_TOKEN_TYPE, expire_minutes, claims)


def create_refresh_token(subject: str, expires_minutes: int | None = None) -> str:
    """Create a signed JWT refresh token."""

    expire_minutes = expires_minutes or settings.jwt_refresh_token_expires_minutes
    return _create_token(subject, REFRESH_TOKEN_TYPE, expire_minutes)


def decode_token(token: str) -> dict[str, Any]:
    """Decode a JWT token returning its payload."""

    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
    )


def generate_token(nbytes: int = 32) -> str:
    """Random hex token for emailed one-time links."""

    return secrets.token_hex(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 digest used to persist one-time and refresh tokens."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(plain_token: str, hashed_token: str | None) -> bool:
    if not hashed_token:
        return False
    return hmac.compare_digest(hash_token(plain_token), hashed_token)


def is_valid_token_format(token: Any) -> bool:
    return isinstance(token, str) and len(token) >= 32 and bool(_TOKEN_FORMAT.fullmatch(token))


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) >= expires_at
