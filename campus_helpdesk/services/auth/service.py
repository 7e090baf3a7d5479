"""Domain services for registration, login, sessions and account tokens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from jose import JWTError
from loguru import logger
from redis.asyncio import Redis

from campus_helpdesk.core.security import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
    generate_token,
    hash_password,
    hash_token,
    is_expired,
    is_valid_token_format,
    token_matches,
    verify_password,
)
from campus_helpdesk.observability import record_auth_failure
from campus_helpdesk.services.auth.gate import AuthError
from campus_helpdesk.settings import settings

SELF_REGISTRATION_ROLES = ("student", "staff")

PASSWORD_RESET_TOKEN_FIELD = "password_reset_token"
EMAIL_VERIFICATION_TOKEN_FIELD = "email_verification_token"

_PRIVATE_USER_FIELDS = frozenset(
    {
        "password",
        "refresh_token",
        PASSWORD_RESET_TOKEN_FIELD,
        "password_reset_expires",
        EMAIL_VERIFICATION_TOKEN_FIELD,
        "email_verification_expires",
        "login_attempts",
        "lock_until",
    }
)


class UserStore(Protocol):
    async def create_user(self, document: dict[str, Any]) -> dict[str, Any]: ...

    async def get_user(self, user_id: str) -> dict[str, Any] | None: ...

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None: ...

    async def get_user_by_username(self, username: str) -> dict[str, Any] | None: ...

    async def get_user_by_token_hash(self, field: str, token_hash: str) -> dict[str, Any] | None: ...

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any] | None: ...

    async def update_user_by_token_hash(
        self,
        field: str,
        token_hash: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None: ...

    async def swap_refresh_token(
        self,
        user_id: str,
        expected_hash: str,
        new_hash: str | None,
    ) -> bool: ...

    async def increment_login_attempts(self, user_id: str) -> int: ...


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """Drop credentials and token material from a user document."""

    return {key: value for key, value in user.items() if key not in _PRIVATE_USER_FIELDS}


class AuthService:
    """Encapsulates user related authentication workflows."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        return await self._store.get_user(user_id)

    async def register_user(
        self,
        payload: dict[str, Any],
        *,
        allowed_roles: tuple[str, ...] = SELF_REGISTRATION_ROLES,
    ) -> dict[str, Any]:
        """Register a new user; the account stays pending until the email is verified."""

        username = payload["username"].strip()
        email = payload["email"].strip().lower()
        role = payload.get("role") or "student"
        if role not in allowed_roles:
            raise ValueError("role_not_allowed")

        if await self._store.get_user_by_username(username) is not None:
            raise ValueError("username_already_exists")
        if await self._store.get_user_by_email(email) is not None:
            raise ValueError("email_already_exists")

        now = datetime.now(timezone.utc)
        user = await self._store.create_user(
            {
                "username": username,
                "email": email,
                "password": hash_password(payload["password"]),
                "first_name": payload["first_name"].strip(),
                "last_name": payload["last_name"].strip(),
                "role": role,
                "status": payload.get("status") or "pending",
                "department": payload.get("department"),
                "phone": payload.get("phone"),
                "email_verified": bool(payload.get("email_verified", False)),
                "login_attempts": 0,
                "lock_until": None,
                "refresh_token": None,
                "password_changed_at": None,
                "last_login": None,
                "created_at": now,
                "updated_at": now,
            }
        )
        logger.info("Registered new user id={}", user["id"])
        return user

    async def authenticate_user(self, email: str, password: str) -> dict[str, Any]:
        """Check credentials, applying the failed-attempt lockout."""

        user = await self._store.get_user_by_email(email.strip().lower())
        if user is None:
            record_auth_failure("invalid_credentials")
            raise AuthError("invalid_credentials", 401)

        if not is_expired(user.get("lock_until")):
            record_auth_failure("account_locked")
            raise AuthError("account_locked", 423)

        if not verify_password(password, user.get("password")):
            attempts = await self._store.increment_login_attempts(user["id"])
            if attempts >= settings.max_login_attempts:
                lock_until = datetime.now(timezone.utc) + timedelta(
                    minutes=settings.account_lock_minutes,
                )
                await self._store.update_user(
                    user["id"],
                    {"lock_until": lock_until, "login_attempts": 0},
                )
                logger.warning("Locked account id={} after {} failed logins", user["id"], attempts)
                record_auth_failure("account_locked")
                raise AuthError("account_locked", 423)
            record_auth_failure("invalid_credentials")
            raise AuthError("invalid_credentials", 401)

        if user.get("status") == "pending" and not user.get("email_verified") and user.get("role") != "admin":
            record_auth_failure("email_not_verified")
            raise AuthError("email_not_verified", 403)
        if user.get("status") != "active":
            record_auth_failure("account_inactive")
            raise AuthError("account_inactive", 403)

        updated = await self._store.update_user(
            user["id"],
            {
                "login_attempts": 0,
                "lock_until": None,
                "last_login": datetime.now(timezone.utc),
            },
        )
        return updated or user

    def issue_access_token(self, user: dict[str, Any]) -> tuple[str, int]:
        expires = settings.jwt_access_token_expires_minutes
        token = create_access_token(
            subject=user["id"],
            expires_minutes=expires,
            claims={"role": user.get("role"), "email": user.get("email")},
        )
        return token, expires

    async def create_session(self, user: dict[str, Any]) -> dict[str, Any]:
        """Issue an access/refresh pair; the new refresh token replaces any previous one."""

        access_token, expires_minutes = self.issue_access_token(user)
        refresh_token = create_refresh_token(user["id"])
        await self._store.update_user(user["id"], {"refresh_token": hash_token(refresh_token)})
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": expires_minutes * 60,
        }

    async def refresh_session(self, refresh_token: str) -> tuple[dict[str, Any], dict[str, Any]]:
        """Rotate the refresh token; a token that was already rotated is rejected."""

        try:
            payload = decode_token(refresh_token)
        except JWTError as exc:
            record_auth_failure("invalid_refresh_token")
            raise AuthError("invalid_refresh_token", 401) from exc
        if payload.get("type") != REFRESH_TOKEN_TYPE:
            record_auth_failure("invalid_refresh_token")
            raise AuthError("invalid_refresh_token", 401)

        user = await self._store.get_user(str(payload.get("sub")))
        if user is None:
            record_auth_failure("invalid_refresh_token")
            raise AuthError("invalid_refresh_token", 401)
        if user.get("status") != "active":
            record_auth_failure("account_inactive")
            raise AuthError("account_inactive", 403)
        if not token_matches(refresh_token, user.get("refresh_token")):
            record_auth_failure("refresh_token_reused")
            raise AuthError("refresh_token_reused", 401)

        access_token, expires_minutes = self.issue_access_token(user)
        new_refresh_token = create_refresh_token(user["id"])
        swapped = await self._store.swap_refresh_token(
            user["id"],
            hash_token(refresh_token),
            hash_token(new_refresh_token),
        )
        if not swapped:
            logger.warning("Concurrent refresh rejected for user id={}", user["id"])
            record_auth_failure("refresh_token_reused")
            raise AuthError("refresh_token_reused", 401)

        tokens = {
            "access_token": access_token,
            "refresh_token": new_refresh_token,
            "expires_in": expires_minutes * 60,
        }
        return tokens, user

    async def logout(self, user_id: str) -> None:
        await self._store.update_user(user_id, {"refresh_token": None})

    async def create_password_reset_token(
        self,
        email: str,
        *,
        redis: Redis | None = None,
    ) -> tuple[dict[str, Any], str] | None:
        """Create a reset token for the account behind ``email``, if any.

        Only the token's SHA-256 digest is stored; a new token replaces the
        previous one. With ``redis`` the requests are rate limited per user.
        """

        user = await self._store.get_user_by_email(email.strip().lower())
        if user is None:
            return None

        if redis is not None:
            rate_key = f"password_reset:rate:{user['id']}"
            attempts = await redis.incr(rate_key)
            if attempts == 1:
                await redis.expire(rate_key, 3600)
            if attempts > settings.password_reset_requests_per_hour:
                logger.warning("Password reset rate limited for user id={}", user["id"])
                return None

        token = generate_token()
        expires = datetime.now(timezone.utc) + timedelta(
            minutes=settings.password_reset_token_expires_minutes,
        )
        await self._store.update_user(
            user["id"],
            {PASSWORD_RESET_TOKEN_FIELD: hash_token(token), "password_reset_expires": expires},
        )
        logger.info("Created password reset token for user id={}", user["id"])
        return user, token

    async def _user_for_token(self, field: str, expires_field: str, token: str) -> dict[str, Any]:
        if not is_valid_token_format(token):
            raise ValueError("invalid_or_expired_token")
        user = await self._store.get_user_by_token_hash(field, hash_token(token))
        if user is None or is_expired(user.get(expires_field)):
            raise ValueError("invalid_or_expired_token")
        return user

    async def _consume_token(
        self,
        field: str,
        expires_field: str,
        token: str,
        updates: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply ``updates`` and clear the token in one write; only one caller can win."""

        updated = await self._store.update_user_by_token_hash(
            field,
            hash_token(token),
            {field: None, expires_field: None, **updates},
        )
        if updated is None:
            logger.warning("Rejected an already consumed {}", field)
            raise ValueError("invalid_or_expired_token")
        return updated

    async def verify_password_reset_token(self, token: str) -> dict[str, Any]:
        return await self._user_for_token(
            PASSWORD_RESET_TOKEN_FIELD,
            "password_reset_expires",
            token,
        )

    @staticmethod
    def _password_updates(new_password: str) -> dict[str, Any]:
        # Tokens carry whole-second iat values; back-date so tokens issued right after still pass.
        changed_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        return {
            "password": hash_password(new_password),
            "password_changed_at": changed_at,
            "refresh_token": None,
        }

    async def reset_password(self, token: str, new_password: str) -> dict[str, Any]:
        """Reset the password behind a valid reset token and end existing sessions.

        The token is cleared in the same write as the password, so replaying
        it concurrently resets the password at most once.
        """

        user = await self.verify_password_reset_token(token)
        updated = await self._consume_token(
            PASSWORD_RESET_TOKEN_FIELD,
            "password_reset_expires",
            token,
            {**self._password_updates(new_password), "login_attempts": 0, "lock_until": None},
        )
        logger.info("Password reset for user id={}", user["id"])
        return updated

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
    ) -> dict[str, Any]:
        user = await self._store.get_user(user_id)
        if user is None:
            raise ValueError("user_not_found")
        if not verify_password(current_password, user.get("password")):
            record_auth_failure("invalid_current_password")
            raise ValueError("invalid_current_password")
        updated = await self._store.update_user(user_id, self._password_updates(new_password))
        if updated is None:
            raise ValueError("user_not_found")
        logger.info("Password changed for user id={}", user_id)
        return updated

    async def create_email_verification_token(self, user: dict[str, Any]) -> str:
        token = generate_token()
        expires = datetime.now(timezone.utc) + timedelta(
            minutes=settings.email_verification_token_expires_minutes,
        )
        await self._store.update_user(
            user["id"],
            {EMAIL_VERIFICATION_TOKEN_FIELD: hash_token(token), "email_verification_expires": expires},
        )
        return token

    async def resend_email_verification(self, email: str) -> tuple[dict[str, Any], str] | None:
        user = await self._store.get_user_by_email(email.strip().lower())
        if user is None or user.get("email_verified"):
            return None
        return user, await self.create_email_verification_token(user)

    async def verify_email(self, token: str) -> dict[str, Any]:
        """Mark the email behind ``token`` verified and activate a pending account."""

        user = await self._user_for_token(
            EMAIL_VERIFICATION_TOKEN_FIELD,
            "email_verification_expires",
            token,
        )
        updates: dict[str, Any] = {"email_verified": True}
        if user.get("status") == "pending":
            updates["status"] = "active"
        updated = await self._consume_token(
            EMAIL_VERIFICATION_TOKEN_FIELD,
            "email_verification_expires",
            token,
            updates,
        )
        logger.info("Verified email for user id={}", user["id"])
        return updated
