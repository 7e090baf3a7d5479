"""Whole-payload validation for tickets, filters, comments and bulk operations."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from campus_helpdesk.validation.fields import (
    RESERVED_METADATA_KEYS,
    MAX_METADATA_VALUE_LENGTH,
    VALID_ISSUE_TYPES,
    VALID_STATUSES,
    VALID_URGENCIES,
    ContactText,
    StructuredContact,
    format_field_name,
    is_valid_email,
    is_valid_object_id,
    parse_contact_info,
    validate_attachments,
    validate_category,
    validate_contact_info,
    validate_department,
    validate_description,
    validate_issue_type,
    validate_location,
    validate_metadata,
    validate_status,
    validate_title,
    validate_urgency,
    validate_user_id,
)
from campus_helpdesk.validation.result import ValidationResult
from campus_helpdesk.validation.sanitizer import contains_malicious_content

REQUIRED_TICKET_FIELDS = ("title", "description", "issueType")

SLA_TIMEFRAMES_HOURS = {
    "low": 72,
    "medium": 48,
    "high": 24,
    "critical": 4,
}
MAX_DUE_DATE_DAYS = 30
CLOSED_STATUSES = ("resolved", "closed")
SLA_CRITICAL_MINUTES = 60
SLA_WARNING_MINUTES = 240

VALID_SORT_FIELDS = ("createdAt", "updatedAt", "title", "urgency", "status")
VALID_SORT_ORDERS = ("asc", "desc")
MAX_SEARCH_LENGTH = 100
MAX_PAGE_SIZE = 100
DEFAULT_FILTERS = {"page": 1, "limit": 10, "sortBy": "createdAt", "sortOrder": "desc"}

MAX_COMMENT_LENGTH = 2000

MAX_BULK_TICKETS = 100
MAX_BULK_NOTES_LENGTH = 500
BULK_ACTION_STATUSES = {
    "in-progress": "in-progress",
    "resolved": "resolved",
    "closed": "closed",
    "reopen": "open",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    return not value or str(value).strip() == ""


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings, dates and datetimes into aware UTC datetimes."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def validate_ticket_data(raw: Any, is_update: bool = False) -> ValidationResult:
    """Validate a ticket create (``is_update=False``) or partial update payload."""

    result = ValidationResult()
    if not isinstance(raw, dict):
        return result.error("Ticket data is required and must be an object")

    data = dict(raw)

    if not is_update:
        for field_name in REQUIRED_TICKET_FIELDS:
            if _is_blank(data.get(field_name)):
                result.error(f"{format_field_name(field_name)} is required")
        if not result.valid:
            return result

    result = result.merge(
        validate_title(data.get("title")),
        validate_description(data.get("description")),
        validate_issue_type(data.get("issueType")),
        validate_urgency(data.get("urgency")),
        validate_status(data.get("status"), is_update),
        validate_category(data.get("category")),
        validate_department(data.get("department")),
        validate_location(data.get("location")),
        validate_contact_info(data.get("contactInfo")),
        validate_attachments(data.get("attachments")),
        validate_metadata(data.get("metadata")),
        validate_user_id(data.get("assignedTo"), "assignedTo"),
        validate_user_id(data.get("createdBy"), "createdBy"),
    )

    now = _utcnow()
    defaults: dict[str, Any] = {}
    if not data.get("urgency"):
        defaults["urgency"] = "medium"
    if not is_update:
        if not data.get("status"):
            defaults["status"] = "open"
        if not data.get("createdAt"):
            defaults["createdAt"] = now
    defaults["updatedAt"] = now

    if not result.valid:
        result.sanitized_data = defaults
        return result

    sanitized: dict[str, Any] = dict(defaults)
    for text_field in ("title", "description"):
        if data.get(text_field):
            sanitized[text_field] = str(data[text_field]).strip()
    if data.get("issueType"):
        sanitized["issueType"] = str(data["issueType"]).lower()
    if data.get("urgency"):
        sanitized["urgency"] = str(data["urgency"]).lower()
    if data.get("status"):
        sanitized["status"] = str(data["status"]).lower()
    for optional_field in ("category", "department", "location"):
        if data.get(optional_field):
            sanitized[optional_field] = str(data[optional_field]).strip()
    if data.get("contactInfo"):
        sanitized["contactInfo"] = sanitize_contact_info(data["contactInfo"])
    for reference in ("assignedTo", "createdBy"):
        if data.get(reference):
            sanitized[reference] = str(data[reference]).strip()
    if data.get("attachments"):
        sanitized["attachments"] = [
            {key: attachment.get(key) for key in ("name", "size", "type") if key in attachment}
            for attachment in data["attachments"]
        ]
    if data.get("metadata"):
        sanitized["metadata"] = sanitize_metadata(data["metadata"])
    if not is_update and data.get("createdAt"):
        created_at = parse_datetime(data["createdAt"])
        if created_at is not None:
            sanitized["createdAt"] = created_at

    result.sanitized_data = sanitized
    return result


def sanitize_contact_info(raw: Any) -> dict[str, str] | str:
    """Normalise contact info; unsafe or invalid parts are dropped."""

    contact = parse_contact_info(raw)
    if contact is None:
        return {}
    if isinstance(contact, ContactText):
        return contact.value.strip()[:100]
    if not isinstance(contact, StructuredContact):
        return {}

    sanitized: dict[str, str] = {}
    if contact.email:
        email = contact.email.strip()
        if is_valid_email(email):
            sanitized["email"] = email.lower()
    if contact.phone:
        digits = "".join(char for char in contact.phone if char.isdigit())
        sanitized["phone"] = f"+{digits}" if contact.phone.strip().startswith("+") else digits
    if contact.name:
        sanitized["name"] = contact.name.strip()[:100]
    if contact.department:
        sanitized["department"] = contact.department.strip()[:100]
    return sanitized


def sanitize_metadata(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}

    sanitized: dict[str, Any] = {}
    for key, value in raw.items():
        if key in RESERVED_METADATA_KEYS or contains_malicious_content(key):
            continue
        if isinstance(value, str):
            cleaned = value.strip()[:MAX_METADATA_VALUE_LENGTH]
            if not contains_malicious_content(cleaned):
                sanitized[key] = cleaned
        elif value is None or isinstance(value, (bool, int, float)):
            sanitized[key] = value
    return sanitized


def validate_ticket_filters(raw: Any) -> ValidationResult:
    """Validate listing filters; every filter is checked independently."""

    result = ValidationResult()
    filters = raw if isinstance(raw, dict) else {}
    sanitized: dict[str, Any] = {}

    for key, allowed, label in (
        ("status", VALID_STATUSES, "status"),
        ("urgency", VALID_URGENCIES, "urgency"),
        ("issueType", VALID_ISSUE_TYPES, "issue type"),
    ):
        value = filters.get(key)
        if not value:
            continue
        lowered = str(value).lower()
        if lowered in allowed:
            sanitized[key] = lowered
        else:
            result.error(f"Invalid {label} filter: {value}")

    if filters.get("search"):
        term = str(filters["search"]).strip()
        if len(term) > MAX_SEARCH_LENGTH:
            result.error(f"Search term cannot exceed {MAX_SEARCH_LENGTH} characters")
        elif term:
            sanitized["search"] = term

    if filters.get("dateFrom"):
        date_from = parse_datetime(filters["dateFrom"])
        if date_from is None:
            result.error("Invalid start date format")
        else:
            sanitized["dateFrom"] = date_from

    if filters.get("dateTo"):
        date_to = parse_datetime(filters["dateTo"])
        if date_to is None:
            result.error("Invalid end date format")
        else:
            sanitized["dateTo"] = date_to
            if "dateFrom" in sanitized and date_to < sanitized["dateFrom"]:
                result.error("End date cannot be before start date")

    if filters.get("page") not in (None, ""):
        page = _parse_int(filters["page"])
        if page is not None and page > 0:
            sanitized["page"] = page
        else:
            result.error("Page must be a positive number")

    if filters.get("limit") not in (None, ""):
        limit = _parse_int(filters["limit"])
        if limit is not None and 0 < limit <= MAX_PAGE_SIZE:
            sanitized["limit"] = limit
        else:
            result.error(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

    if filters.get("sortBy"):
        if filters["sortBy"] in VALID_SORT_FIELDS:
            sanitized["sortBy"] = filters["sortBy"]
        else:
            result.error(f"Invalid sort field: {filters['sortBy']}")

    if filters.get("sortOrder"):
        order = str(filters["sortOrder"]).lower()
        if order in VALID_SORT_ORDERS:
            sanitized["sortOrder"] = order
        else:
            result.error('Sort order must be "asc" or "desc"')

    for key, default in DEFAULT_FILTERS.items():
        sanitized.setdefault(key, default)

    result.valid = not result.errors
    result.sanitized_data = sanitized
    return result


def validate_comment(raw: Any) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(raw, dict):
        return result.error("Comment data is required")

    if _is_blank(raw.get("content")):
        result.error("Comment content is required")
    else:
        content = str(raw["content"]).strip()
        if len(content) > MAX_COMMENT_LENGTH:
            result.error(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")
        if contains_malicious_content(content):
            result.error("Comment contains suspicious content", security=True)
        result.sanitized_data["content"] = content

    if raw.get("author"):
        author_check = validate_user_id(raw["author"], "author")
        result = result.merge(author_check)
        if author_check.valid:
            result.sanitized_data["author"] = str(raw["author"]).strip()

    is_internal = raw.get("isInternal", False)
    if isinstance(is_internal, bool):
        result.sanitized_data["isInternal"] = is_internal
    else:
        result.error("isInternal must be a boolean value")

    now = _utcnow()
    result.sanitized_data["createdAt"] = now
    result.sanitized_data["updatedAt"] = now
    return result


def validate_bulk_operation(raw: Any) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(raw, dict):
        return result.error("Bulk operation data is required")

    ticket_ids = raw.get("ticketIds")
    if not isinstance(ticket_ids, list):
        result.error("ticketIds must be an array")
    elif not ticket_ids:
        result.error("At least one ticket ID is required")
    elif len(ticket_ids) > MAX_BULK_TICKETS:
        result.error(f"Cannot process more than {MAX_BULK_TICKETS} tickets at once")
    else:
        valid_ids: list[str] = []
        for position, ticket_id in enumerate(ticket_ids):
            if not ticket_id or not isinstance(ticket_id, str):
                result.error(f"Ticket ID at position {position} is invalid")
            elif not is_valid_object_id(ticket_id):
                result.error(f"Invalid ticket ID format at position {position}")
            elif ticket_id not in valid_ids:
                valid_ids.append(ticket_id)
        result.sanitized_data["ticketIds"] = valid_ids

    action = raw.get("action")
    if not action or not isinstance(action, str):
        result.error("Action is required")
    elif action.lower() not in BULK_ACTION_STATUSES:
        result.error(f"Action must be one of: {', '.join(BULK_ACTION_STATUSES)}")
    else:
        result.sanitized_data["action"] = action.lower()

    if raw.get("notes"):
        notes = str(raw["notes"]).strip()
        if len(notes) > MAX_BULK_NOTES_LENGTH:
            result.error(f"Notes cannot exceed {MAX_BULK_NOTES_LENGTH} characters")
        elif contains_malicious_content(notes):
            result.error("Notes contain suspicious content", security=True)
        else:
            result.sanitized_data["notes"] = notes

    result.sanitized_data["performedAt"] = _utcnow()
    return result


def bulk_action_status(action: str) -> str:
    """Ticket status that results from applying a bulk ``action``."""

    return BULK_ACTION_STATUSES[action]


def calculate_sla_due_date(urgency: Any, start: datetime | None = None) -> datetime | None:
    hours = SLA_TIMEFRAMES_HOURS.get(str(urgency).lower()) if urgency else None
    if hours is None:
        return None
    return (start or _utcnow()) + timedelta(hours=hours)


def sla_status(ticket: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    """Where ``ticket`` stands against its due date.

    ``status`` is one of ``completed``, ``no-sla``, ``breached``, ``critical``,
    ``warning`` or ``normal``. ``minutesRemaining`` never goes below zero and
    is ``None`` for tickets without a due date.
    """

    due_date = parse_datetime(ticket.get("dueDate"))
    seconds = None if due_date is None else (due_date - (now or _utcnow())).total_seconds()
    minutes_remaining = None if seconds is None else max(0, int(seconds // 60))

    if ticket.get("status") in CLOSED_STATUSES:
        return {"status": "completed", "minutesRemaining": minutes_remaining, "breached": False}
    if seconds is None:
        return {"status": "no-sla", "minutesRemaining": None, "breached": False}

    if seconds < 0:
        state = "breached"
    elif seconds < SLA_CRITICAL_MINUTES * 60:
        state = "critical"
    elif seconds < SLA_WARNING_MINUTES * 60:
        state = "warning"
    else:
        state = "normal"
    return {"status": state, "minutesRemaining": minutes_remaining, "breached": state == "breached"}


def validate_due_date(
    due_date: Any,
    urgency: Any,
    *,
    now: datetime | None = None,
) -> ValidationResult:
    result = ValidationResult()
    if due_date is None or due_date == "":
        return result

    parsed = parse_datetime(due_date)
    if parsed is None:
        return result.error("Invalid due date format")

    now = now or _utcnow()
    if parsed < now:
        result.error("Due date cannot be in the past")

    if parsed > now + timedelta(days=MAX_DUE_DATE_DAYS):
        result.warn(f"Due date is set more than {MAX_DUE_DATE_DAYS} days in advance")

    sla_due_date = calculate_sla_due_date(urgency, now)
    if sla_due_date is not None and parsed > sla_due_date:
        result.warn(f"Due date exceeds recommended SLA timeframe for {urgency} priority")

    if result.valid:
        result.sanitized_data["dueDate"] = parsed
    return result
