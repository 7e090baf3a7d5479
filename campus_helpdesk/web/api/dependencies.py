"""Reusable API dependencies for authentication and role enforcement."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from campus_helpdesk.services.auth.gate import AuthError, AuthGate, Principal, extract_token
from campus_helpdesk.services.auth.service import AuthService
from campus_helpdesk.services.document_store import HelpdeskDocumentStore
from campus_helpdesk.services.tickets import TicketService

ACCESS_TOKEN_COOKIE = "accessToken"

bearer_scheme = HTTPBearer(auto_error=False)


def get_document_store(request: Request) -> HelpdeskDocumentStore:
    store: HelpdeskDocumentStore = request.app.state.document_store
    return store


def get_auth_service(store: HelpdeskDocumentStore = Depends(get_document_store)) -> AuthService:
    return AuthService(store)


def get_ticket_service(store: HelpdeskDocumentStore = Depends(get_document_store)) -> TicketService:
    return TicketService(store)


def get_auth_gate(store: HelpdeskDocumentStore = Depends(get_document_store)) -> AuthGate:
    return AuthGate(store)


def get_request_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> str | None:
    authorization = f"{credentials.scheme} {credentials.credentials}" if credentials else None
    return extract_token(
        authorization,
        request.cookies.get(ACCESS_TOKEN_COOKIE),
        request.query_params.get("token"),
    )


async def get_current_principal(
    token: str | None = Depends(get_request_token),
    gate: AuthGate = Depends(get_auth_gate),
) -> Principal:
    """Resolve the request's access token into an active user."""

    try:
        return await gate.authenticate(token)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.code) from exc


async def get_optional_principal(
    token: str | None = Depends(get_request_token),
    gate: AuthGate = Depends(get_auth_gate),
) -> Principal | None:
    return await gate.authenticate_optional(token)


def require_roles(*roles: str):
    """Factory returning a dependency that admits only the listed roles."""

    async def _dependency(
        principal: Principal = Depends(get_current_principal),
        gate: AuthGate = Depends(get_auth_gate),
    ) -> Principal:
        try:
            return gate.authorize(principal, roles)
        except AuthError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.code) from exc

    return _dependency
