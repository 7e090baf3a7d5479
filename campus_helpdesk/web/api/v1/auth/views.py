"""Versioned authentication endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from redis.asyncio import Redis

from campus_helpdesk.services.auth.gate import AuthError, Principal
from campus_helpdesk.services.auth.service import AuthService, public_user
from campus_helpdesk.services.events import publish_email_event, publish_security_event
from campus_helpdesk.services.redis.dependency import get_redis
from campus_helpdesk.settings import settings
from campus_helpdesk.web.api.dependencies import (
    ACCESS_TOKEN_COOKIE,
    get_auth_service,
    get_current_principal,
)
from campus_helpdesk.web.api.errors import http_error
from campus_helpdesk.web.api.v1.auth.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    StatusResponse,
    TokenPair,
    TokenValidityResponse,
    UserProfileResponse,
    VerifyEmailRequest,
)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


def _profile(user: dict[str, Any]) -> UserProfileResponse:
    return UserProfileResponse.model_validate(public_user(user))


def _set_access_cookie(response: Response, tokens: dict[str, Any]) -> None:
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        tokens["access_token"],
        max_age=tokens["expires_in"],
        httponly=True,
        secure=settings.environment != "dev",
        samesite="strict",
    )


async def _send_verification_email(
    request: Request,
    user: dict[str, Any],
    token: str,
) -> None:
    await publish_email_event(
        request,
        "email_verification",
        {
            "user_id": user["id"],
            "email": user["email"],
            "first_name": user.get("first_name"),
            "verification_url": f"{settings.frontend_url}/verify-email/{token}",
        },
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    try:
        user = await auth_service.register_user(payload.model_dump())
    except ValueError as exc:
        raise http_error(exc) from exc

    token = await auth_service.create_email_verification_token(user)
    await _send_verification_email(request, user, token)
    return RegisterResponse(user=_profile(user))


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        user = await auth_service.authenticate_user(payload.email, payload.password)
    except AuthError as exc:
        await publish_security_event(request, "login_failed", {"reason": exc.code})
        raise http_error(exc) from exc

    tokens = await auth_service.create_session(user)
    _set_access_cookie(response, tokens)
    await publish_security_event(request, "login_succeeded", {"user_id": user["id"]})
    return LoginResponse(tokens=TokenPair(**tokens), user=_profile(user))


@router.post("/refresh", response_model=LoginResponse)
async def refresh(
    payload: RefreshRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        tokens, user = await auth_service.refresh_session(payload.refresh_token)
    except ValueError as exc:
        raise http_error(exc) from exc

    _set_access_cookie(response, tokens)
    return LoginResponse(tokens=TokenPair(**tokens), user=_profile(user))


@router.post("/logout", response_model=StatusResponse)
async def logout(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    await auth_service.logout(principal.user_id)
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return StatusResponse()


@router.get("/me", response_model=UserProfileResponse)
async def me(
    principal: Principal = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserProfileResponse:
    user = await auth_service.get_user(principal.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user_not_found")
    return _profile(user)


@router.post("/password/forgot", response_model=StatusResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    redis: Redis = Depends(get_redis),
) -> StatusResponse:
    issued = await auth_service.create_password_reset_token(payload.email, redis=redis)
    if issued is not None:
        user, token = issued
        await publish_email_event(
            request,
            "password_reset",
            {
                "user_id": user["id"],
                "email": user["email"],
                "first_name": user.get("first_name"),
                "reset_url": f"{settings.frontend_url}/reset-password/{token}",
                "expires_minutes": settings.password_reset_token_expires_minutes,
            },
        )
    return StatusResponse()


@router.get("/password/reset/{token}", response_model=TokenValidityResponse)
async def verify_reset_token(
    token: str,
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenValidityResponse:
    try:
        await auth_service.verify_password_reset_token(token)
    except ValueError as exc:
        raise http_error(exc) from exc
    return TokenValidityResponse(valid=True)


@router.post("/password/reset", response_model=StatusResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    try:
        user = await auth_service.reset_password(payload.token, payload.new_password)
    except ValueError as exc:
        raise http_error(exc) from exc

    await publish_security_event(request, "password_reset", {"user_id": user["id"]})
    return StatusResponse()


@router.post("/password/change", response_model=LoginResponse)
async def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        user = await auth_service.change_password(
            principal.user_id,
            payload.current_password,
            payload.new_password,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    await publish_security_event(request, "password_changed", {"user_id": user["id"]})
    tokens = await auth_service.create_session(user)
    _set_access_cookie(response, tokens)
    return LoginResponse(tokens=TokenPair(**tokens), user=_profile(user))


@router.post("/email/verify", response_model=StatusResponse)
async def verify_email(
    payload: VerifyEmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    try:
        await auth_service.verify_email(payload.token)
    except ValueError as exc:
        raise http_error(exc) from exc
    return StatusResponse()


@router.post("/email/resend", response_model=StatusResponse)
async def resend_verification(
    payload: ResendVerificationRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    issued = await auth_service.resend_email_verification(payload.email)
    if issued is not None:
        user, token = issued
        await _send_verification_email(request, user, token)
    return StatusResponse()
