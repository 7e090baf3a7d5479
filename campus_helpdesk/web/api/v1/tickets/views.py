"""Versioned ticket endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, Response, status
from loguru import logger

from campus_helpdesk.services.auth.gate import SUPPORT_ROLES, Principal
from campus_helpdesk.services.events import publish_ticket_event
from campus_helpdesk.services.tickets import TicketService
from campus_helpdesk.validation.sanitizer import sanitize_payload
from campus_helpdesk.web.api.dependencies import (
    get_current_principal,
    get_optional_principal,
    get_ticket_service,
    require_roles,
)
from campus_helpdesk.web.api.errors import http_error
from campus_helpdesk.web.api.v1.tickets.schemas import (
    BulkOperationResponse,
    CommentResponse,
    SlaPreviewResponse,
    TicketPage,
    TicketResponse,
    TicketStats,
)

router = APIRouter(prefix="/v1/tickets", tags=["tickets"])


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    request: Request,
    payload: Any = Body(...),
    principal: Principal = Depends(get_current_principal),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    try:
        ticket, result = await ticket_service.create_ticket(payload, principal)
    except ValueError as exc:
        raise http_error(exc) from exc

    await publish_ticket_event(
        request,
        "ticket.created",
        {"ticket_id": ticket["id"], "urgency": ticket["urgency"], "created_by": principal.user_id},
    )
    return TicketResponse(ticket=ticket, warnings=result.warnings)


@router.get("", response_model=TicketPage)
async def list_tickets(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> TicketPage:
    filters = sanitize_payload(dict(request.query_params))
    try:
        page = await ticket_service.list_tickets(filters, principal)
    except ValueError as exc:
        raise http_error(exc) from exc
    return TicketPage(**page)


@router.get("/sla", response_model=SlaPreviewResponse)
async def sla_preview(
    urgency: str,
    due_date: str | None = Query(default=None, alias="dueDate"),
    principal: Principal | None = Depends(get_optional_principal),
) -> SlaPreviewResponse:
    logger.debug(
        "SLA preview for {} requested by {}",
        urgency,
        principal.user_id if principal else "anonymous",
    )
    return SlaPreviewResponse(**TicketService.sla_preview(urgency, due_date))


@router.get("/stats", response_model=TicketStats)
async def ticket_stats(
    principal: Principal = Depends(require_roles(*SUPPORT_ROLES)),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> TicketStats:
    return TicketStats(**await ticket_service.ticket_stats())


@router.post("/bulk", response_model=BulkOperationResponse)
async def bulk_operation(
    request: Request,
    payload: Any = Body(...),
    principal: Principal = Depends(require_roles(*SUPPORT_ROLES)),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> BulkOperationResponse:
    try:
        outcome = await ticket_service.bulk_operation(payload, principal)
    except ValueError as exc:
        raise http_error(exc) from exc

    await publish_ticket_event(request, "ticket.bulk", {**outcome, "performed_by": principal.user_id})
    return BulkOperationResponse(**outcome)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    principal: Principal = Depends(get_current_principal),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    try:
        ticket = await ticket_service.get_ticket(ticket_id, principal)
    except ValueError as exc:
        raise http_error(exc) from exc
    return TicketResponse(ticket=ticket)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    request: Request,
    payload: Any = Body(...),
    principal: Principal = Depends(get_current_principal),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    try:
        ticket, result = await ticket_service.update_ticket(ticket_id, payload, principal)
    except ValueError as exc:
        raise http_error(exc) from exc

    await publish_ticket_event(
        request,
        "ticket.updated",
        {"ticket_id": ticket_id, "status": ticket.get("status"), "updated_by": principal.user_id},
    )
    return TicketResponse(ticket=ticket, warnings=result.warnings)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(
    ticket_id: str,
    principal: Principal = Depends(require_roles("admin")),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> Response:
    try:
        await ticket_service.delete_ticket(ticket_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    ticket_id: str,
    payload: Any = Body(...),
    principal: Principal = Depends(get_current_principal),
    ticket_service: TicketService = Depends(get_ticket_service),
) -> CommentResponse:
    try:
        comment = await ticket_service.add_comment(ticket_id, payload, principal)
    except ValueError as exc:
        raise http_error(exc) from exc
    return CommentResponse(comment=comment)
