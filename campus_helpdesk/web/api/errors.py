"""Translation of service errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from campus_helpdesk.services.auth.gate import AuthError
from campus_helpdesk.services.tickets import InvalidPayload

_STATUS_BY_CODE = {
    "username_already_exists": status.HTTP_409_CONFLICT,
    "email_already_exists": status.HTTP_409_CONFLICT,
    "role_not_allowed": status.HTTP_403_FORBIDDEN,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "reopen_not_allowed": status.HTTP_403_FORBIDDEN,
    "user_not_found": status.HTTP_404_NOT_FOUND,
    "ticket_not_found": status.HTTP_404_NOT_FOUND,
}


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, InvalidPayload):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.detail())
    if isinstance(exc, AuthError):
        return HTTPException(status_code=exc.status_code, detail=exc.code)
    code = str(exc)
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(code, status.HTTP_400_BAD_REQUEST),
        detail=code,
    )
