"""Request authentication: token verification, account checks and role gating."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from jose import ExpiredSignatureError, JWTError
from loguru import logger

from campus_helpdesk.core.security import ACCESS_TOKEN_TYPE, decode_token
from campus_helpdesk.observability import record_auth_failure

ROLES = ("student", "staff", "technician", "admin")
SUPPORT_ROLES = ("technician", "admin")
USER_STATUSES = ("pending", "active", "inactive", "suspended")


class AuthError(ValueError):
    """Authentication or authorization failure with the HTTP status it maps to."""

    def __init__(self, code: str, status_code: int = 401) -> None:
        super().__init__(code)
        self.code = code
        self.status_code = status_code


class UserLookup(Protocol):
    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        ...


@dataclass
class Principal:
    """Authenticated user context derived from an access token."""

    user_id: str
    username: str
    email: str
    role: str
    status: str
    token_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_support(self) -> bool:
        return self.role in SUPPORT_ROLES


def extract_token(
    authorization: str | None,
    cookie: str | None = None,
    query: str | None = None,
) -> str | None:
    """Pick the access token from a Bearer header, then the cookie, then the query string."""

    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    if cookie:
        return cookie
    if query:
        return query
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthGate:
    """Runs every check a protected request must pass, in order."""

    def __init__(self, store: UserLookup) -> None:
        self._store = store

    @staticmethod
    def _fail(code: str, status_code: int, **context: Any) -> AuthError:
        record_auth_failure(code)
        logger.warning("Authentication rejected: {} {}", code, context or "")
        return AuthError(code, status_code)

    async def authenticate(self, token: str | None) -> Principal:
        if not token:
            raise self._fail("not_authenticated", 401)

        try:
            payload = decode_token(token)
        except ExpiredSignatureError as exc:
            raise self._fail("token_expired", 401) from exc
        except JWTError as exc:
            raise self._fail("invalid_token", 401) from exc

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise self._fail("invalid_token_type", 401)

        subject = payload.get("sub")
        if not subject:
            raise self._fail("invalid_token_payload", 401)

        user = await self._store.get_user(str(subject))
        if user is None:
            raise self._fail("user_not_found", 404, user_id=subject)

        if user.get("status") != "active":
            raise self._fail("account_inactive", 403, user_id=subject)

        changed_at = user.get("password_changed_at")
        issued_at = payload.get("iat")
        if changed_at is not None and issued_at is not None:
            if int(_as_utc(changed_at).timestamp()) > int(issued_at):
                raise self._fail("password_changed", 401, user_id=subject)

        return Principal(
            user_id=user["id"],
            username=user.get("username", ""),
            email=user.get("email", ""),
            role=user.get("role", "student"),
            status=user["status"],
            token_payload=payload,
        )

    def authorize(self, principal: Principal, allowed_roles: Iterable[str]) -> Principal:
        allowed = tuple(allowed_roles)
        if allowed and principal.role not in allowed:
            raise self._fail("forbidden", 403, user_id=principal.user_id)
        return principal

    async def authenticate_optional(self, token: str | None) -> Principal | None:
        """Like :meth:`authenticate`, but any failure yields an anonymous request."""

        if not token:
            return None
        try:
            return await self.authenticate(token)
        except AuthError:
            return None
