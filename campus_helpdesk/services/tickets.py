"""Ticket workflows on top of the payload validators."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from loguru import logger

from campus_helpdesk.observability import record_validation_outcome
from campus_helpdesk.services.auth.gate import Principal
from campus_helpdesk.validation.fields import VALID_STATUSES, VALID_URGENCIES
from campus_helpdesk.validation.result import ValidationResult
from campus_helpdesk.validation.tickets import (
    CLOSED_STATUSES,
    bulk_action_status,
    calculate_sla_due_date,
    sla_status,
    validate_bulk_operation,
    validate_comment,
    validate_due_date,
    validate_ticket_data,
    validate_ticket_filters,
)


class InvalidPayload(ValueError):
    """Raised when a request body fails validation; carries the full result."""

    def __init__(self, result: ValidationResult, message: str = "Validation failed") -> None:
        super().__init__(message)
        self.message = message
        self.result = result

    def detail(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "errors": list(self.result.errors),
            "warnings": list(self.result.warnings),
        }


class TicketStore(Protocol):
    async def create_ticket(self, document: dict[str, Any]) -> dict[str, Any]: ...

    async def get_ticket(self, ticket_id: str) -> dict[str, Any] | None: ...

    async def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> dict[str, Any] | None: ...

    async def delete_ticket(self, ticket_id: str) -> bool: ...

    async def list_tickets(
        self,
        filters: dict[str, Any],
        *,
        created_by: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]: ...

    async def add_comment(self, ticket_id: str, comment: dict[str, Any]) -> dict[str, Any] | None: ...

    async def bulk_update_tickets(
        self,
        ticket_ids: list[str],
        updates: dict[str, Any],
        history_entry: dict[str, Any],
    ) -> int: ...

    async def ticket_stats(self, now: datetime) -> dict[str, Any]: ...


def _present(ticket: dict[str, Any], principal: Principal) -> dict[str, Any]:
    """Attach the SLA status and hide internal comments from non-support users."""

    shown = {**ticket, "sla": sla_status(ticket)}
    if not principal.is_support:
        shown["comments"] = [
            comment for comment in ticket.get("comments", []) if not comment.get("isInternal")
        ]
    return shown


class TicketService:
    """Create, update, list and bulk-process helpdesk tickets."""

    def __init__(self, store: TicketStore) -> None:
        self._store = store

    def _check(self, payload: str, result: ValidationResult) -> ValidationResult:
        record_validation_outcome(payload, result)
        if not result.valid:
            raise InvalidPayload(result)
        return result

    def _require_object(
        self,
        payload: str,
        raw: Any,
        validator: Callable[[Any], ValidationResult],
    ) -> None:
        if not isinstance(raw, dict):
            self._check(payload, validator(raw))

    async def _get_for(self, ticket_id: str, principal: Principal) -> dict[str, Any]:
        ticket = await self._store.get_ticket(ticket_id)
        if ticket is None:
            raise ValueError("ticket_not_found")
        if not principal.is_support and ticket.get("createdBy") != principal.user_id:
            raise ValueError("forbidden")
        return ticket

    async def create_ticket(
        self,
        raw: dict[str, Any],
        principal: Principal,
    ) -> tuple[dict[str, Any], ValidationResult]:
        """Validate and store a new ticket owned by ``principal``.

        Without an explicit due date the ticket is due at the end of the SLA
        timeframe for its urgency.
        """

        self._require_object("ticket", raw, validate_ticket_data)
        data = dict(raw)
        data["createdBy"] = principal.user_id
        if not principal.is_support:
            data.pop("assignedTo", None)

        result = validate_ticket_data(data)
        if result.valid and data.get("dueDate"):
            result = result.merge(validate_due_date(data["dueDate"], result.sanitized_data["urgency"]))
        self._check("ticket", result)

        document = dict(result.sanitized_data)
        if "dueDate" not in document:
            document["dueDate"] = calculate_sla_due_date(document["urgency"], document["createdAt"])
        ticket = await self._store.create_ticket(document)
        logger.info("Ticket {} created by user id={}", ticket["id"], principal.user_id)
        return _present(ticket, principal), result

    async def get_ticket(self, ticket_id: str, principal: Principal) -> dict[str, Any]:
        return _present(await self._get_for(ticket_id, principal), principal)

    async def update_ticket(
        self,
        ticket_id: str,
        raw: dict[str, Any],
        principal: Principal,
    ) -> tuple[dict[str, Any], ValidationResult]:
        self._require_object("ticket", raw, validate_ticket_data)
        ticket = await self._get_for(ticket_id, principal)
        data = dict(raw)
        data.pop("createdBy", None)

        if data.get("assignedTo") and not principal.is_support:
            raise ValueError("forbidden")
        status = str(data.get("status") or "").lower()
        if status == "open" and ticket.get("status") in CLOSED_STATUSES and not principal.is_support:
            raise ValueError("reopen_not_allowed")

        result = validate_ticket_data(data, is_update=True)
        if not data.get("urgency"):
            result.sanitized_data.pop("urgency", None)
        urgency = result.sanitized_data.get("urgency") or ticket.get("urgency")
        if result.valid and data.get("dueDate"):
            result = result.merge(validate_due_date(data["dueDate"], urgency))
        self._check("ticket", result)

        updates = dict(result.sanitized_data)
        if "urgency" in updates and "dueDate" not in updates and updates["urgency"] != ticket.get("urgency"):
            updates["dueDate"] = calculate_sla_due_date(updates["urgency"], ticket.get("createdAt"))

        updated = await self._store.update_ticket(ticket_id, updates)
        if updated is None:
            raise ValueError("ticket_not_found")
        logger.info("Ticket {} updated by user id={}", ticket_id, principal.user_id)
        return _present(updated, principal), result

    async def delete_ticket(self, ticket_id: str) -> None:
        if not await self._store.delete_ticket(ticket_id):
            raise ValueError("ticket_not_found")

    async def list_tickets(self, raw_filters: dict[str, Any], principal: Principal) -> dict[str, Any]:
        """One page of tickets; users without a support role only see their own."""

        filters = self._check("filters", validate_ticket_filters(raw_filters)).sanitized_data
        created_by = None if principal.is_support else principal.user_id
        items, total = await self._store.list_tickets(filters, created_by=created_by)
        return {
            "items": [_present(item, principal) for item in items],
            "total": total,
            "page": filters["page"],
            "limit": filters["limit"],
            "pages": math.ceil(total / filters["limit"]) if total else 0,
        }

    async def add_comment(
        self,
        ticket_id: str,
        raw: dict[str, Any],
        principal: Principal,
    ) -> dict[str, Any]:
        self._require_object("comment", raw, validate_comment)
        await self._get_for(ticket_id, principal)
        data = dict(raw)
        data["author"] = principal.user_id

        result = self._check("comment", validate_comment(data))
        if result.sanitized_data["isInternal"] and not principal.is_support:
            raise ValueError("forbidden")

        comment = await self._store.add_comment(ticket_id, result.sanitized_data)
        if comment is None:
            raise ValueError("ticket_not_found")
        return comment

    async def bulk_operation(self, raw: dict[str, Any], principal: Principal) -> dict[str, Any]:
        result = self._check("bulk", validate_bulk_operation(raw))
        operation = result.sanitized_data
        status = bulk_action_status(operation["action"])

        history_entry = {
            "action": operation["action"],
            "performedBy": principal.user_id,
            "performedAt": operation["performedAt"],
        }
        if operation.get("notes"):
            history_entry["notes"] = operation["notes"]

        modified = await self._store.bulk_update_tickets(
            operation["ticketIds"],
            {"status": status, "updatedAt": operation["performedAt"]},
            history_entry,
        )
        logger.info(
            "Bulk {} applied to {} tickets by user id={}",
            operation["action"],
            modified,
            principal.user_id,
        )
        return {
            "action": operation["action"],
            "status": status,
            "requested": len(operation["ticketIds"]),
            "modified": modified,
        }

    async def ticket_stats(self) -> dict[str, Any]:
        """Ticket counts per status and urgency, plus open tickets past their due date."""

        counts = await self._store.ticket_stats(datetime.now(timezone.utc))
        by_status = {name: 0 for name in VALID_STATUSES}
        by_status.update(counts.get("byStatus", {}))
        by_urgency = {name: 0 for name in VALID_URGENCIES}
        by_urgency.update(counts.get("byUrgency", {}))
        return {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "byUrgency": by_urgency,
            "overdue": counts.get("overdue", 0),
        }

    @staticmethod
    def sla_preview(urgency: str, due_date: Any = None) -> dict[str, Any]:
        """Recommended due date for ``urgency`` and, if given, a check of ``due_date``."""

        preview: dict[str, Any] = {
            "urgency": urgency,
            "slaDueDate": calculate_sla_due_date(urgency),
        }
        if due_date:
            preview["dueDateCheck"] = validate_due_date(due_date, urgency).to_dict()
        return preview
