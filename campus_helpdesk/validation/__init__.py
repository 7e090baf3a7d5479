"""Input validation and sanitization for helpdesk payloads."""

from campus_helpdesk.validation.result import ValidationResult
from campus_helpdesk.validation.sanitizer import (
    contains_malicious_content,
    sanitize_input,
    sanitize_payload,
)
from campus_helpdesk.validation.tickets import (
    calculate_sla_due_date,
    validate_bulk_operation,
    validate_comment,
    validate_due_date,
    validate_ticket_data,
    validate_ticket_filters,
)

__all__ = [
    "ValidationResult",
    "calculate_sla_due_date",
    "contains_malicious_content",
    "sanitize_input",
    "sanitize_payload",
    "validate_bulk_operation",
    "validate_comment",
    "validate_due_date",
    "validate_ticket_data",
    "validate_ticket_filters",
]
