"""Pydantic models for the auth API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from campus_helpdesk.validation.fields import validate_password_strength, validate_username


def _strong_password(value: str) -> str:
    result = validate_password_strength(value)
    if not result.valid:
        raise ValueError("; ".join(result.errors))
    return value


class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str = Field(..., max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: Literal["student", "staff"] = "student"
    department: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=20)

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        result = validate_username(value)
        if not result.valid:
            raise ValueError(result.errors[0])
        return value.strip()

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _strong_password(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token expiry in seconds")


class UserProfileResponse(BaseModel):
    id: str
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str
    department: str | None = None
    phone: str | None = None
    email_verified: bool = False
    last_login: datetime | None = None
    created_at: datetime | None = None


class RegisterResponse(BaseModel):
    user: UserProfileResponse
    message: str = "Registration successful. Please verify your email address."


class LoginResponse(BaseModel):
    tokens: TokenPair
    user: UserProfileResponse


class RefreshRequest(BaseModel):
    refresh_token: str


class StatusResponse(BaseModel):
    status: str = "ok"


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class TokenValidityResponse(BaseModel):
    valid: bool


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., max_length=128)

    @field_validator("new_password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _strong_password(value)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., max_length=128)

    @field_validator("new_password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _strong_password(value)


class VerifyEmailRequest(BaseModel):
    token: str


class ResendVerificationRequest(BaseModel):
    email: EmailStr
