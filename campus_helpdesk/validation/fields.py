"""Per-field ticket rules.

Each ``validate_*`` function inspects a single raw value and returns a new
:class:`ValidationResult` describing only that field. A missing value is
always valid here; required fields are enforced by the composing validator.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

from campus_helpdesk.validation.result import ValidationResult
from campus_helpdesk.validation.sanitizer import contains_malicious_content

VALID_STATUSES = ("open", "in-progress", "awaiting-user", "resolved", "closed")
VALID_URGENCIES = ("low", "medium", "high", "critical")
VALID_ISSUE_TYPES = ("hardware", "software", "network", "account", "security", "other")

KNOWN_DEPARTMENTS = (
    "IT Support",
    "Academic Affairs",
    "Administration",
    "Finance",
    "Human Resources",
    "Student Services",
    "Facilities",
    "Library",
)

MAX_ATTACHMENTS = 10
MAX_FILE_SIZE = 10 * 1024 * 1024
ALLOWED_FILE_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
        "text/csv",
    }
)

MAX_METADATA_SIZE = 5000
MAX_METADATA_VALUE_LENGTH = 1000
RESERVED_METADATA_KEYS = frozenset({"_id", "createdAt", "updatedAt", "__v"})

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
UUID4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_EMAIL_PATTERN = re.compile(
    r"[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*"
)
_PHONE_PATTERN = re.compile(r"\+?[1-9]\d{0,15}")
_USERNAME_PATTERN = re.compile(r"[a-zA-Z0-9_]{3,50}")
_CAMEL_BOUNDARY = re.compile(r"([A-Z])")


@dataclass(frozen=True)
class ContactText:
    """Free-text contact details, e.g. an office extension or an email."""

    value: str


@dataclass(frozen=True)
class StructuredContact:
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    department: str | None = None


ContactInfo = Union[ContactText, StructuredContact]


def parse_contact_info(raw: Any) -> ContactInfo | None:
    if not raw:
        return None
    if isinstance(raw, str):
        return ContactText(raw)
    if isinstance(raw, dict):
        return StructuredContact(
            email=_optional_str(raw.get("email")),
            phone=_optional_str(raw.get("phone")),
            name=_optional_str(raw.get("name")),
            department=_optional_str(raw.get("department")),
        )
    return None


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def format_field_name(field_name: str) -> str:
    """Turn ``issueType`` into ``Issue Type`` for user-facing messages."""

    spaced = _CAMEL_BOUNDARY.sub(r" \1", field_name).strip()
    return spaced[:1].upper() + spaced[1:]


def is_valid_email(email: Any) -> bool:
    if not email or not isinstance(email, str):
        return False
    if not _EMAIL_PATTERN.fullmatch(email):
        return False
    if len(email) > 254:
        return False
    local_part, _, domain = email.partition("@")
    if len(local_part) > 64 or len(domain) > 253:
        return False
    if ".." in email or " " in email:
        return False
    return True


def validate_phone(phone: Any) -> bool:
    """Loose E.164 check on the digits of ``phone``."""

    digits = re.sub(r"\D", "", str(phone))
    return bool(_PHONE_PATTERN.fullmatch(digits))


def is_valid_object_id(value: Any) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.fullmatch(value))


def is_valid_user_id(value: Any) -> bool:
    candidate = str(value).strip()
    return bool(OBJECT_ID_PATTERN.fullmatch(candidate) or UUID4_PATTERN.fullmatch(candidate))


def validate_title(title: Any) -> ValidationResult:
    result = ValidationResult()
    if not title:
        return result

    trimmed = str(title).strip()
    if len(trimmed) < 5:
        result.error("Title must be at least 5 characters long")
    elif len(trimmed) > 200:
        result.error("Title cannot exceed 200 characters")

    if contains_malicious_content(trimmed):
        result.error("Title contains suspicious content", security=True)
    return result


def validate_description(description: Any) -> ValidationResult:
    result = ValidationResult()
    if not description:
        return result

    trimmed = str(description).strip()
    if len(trimmed) < 10:
        result.error("Description must be at least 10 characters long")
    elif len(trimmed) > 5000:
        result.error("Description cannot exceed 5000 characters")

    if contains_malicious_content(trimmed):
        result.error("Description contains suspicious content", security=True)

    if len(trimmed.split()) < 5:
        result.warn("Description seems brief. Please provide more details for better support.")
    return result


def validate_issue_type(issue_type: Any) -> ValidationResult:
    result = ValidationResult()
    if not issue_type:
        return result
    if str(issue_type).lower() not in VALID_ISSUE_TYPES:
        result.error(f"Issue type must be one of: {', '.join(VALID_ISSUE_TYPES)}")
    return result


def validate_urgency(urgency: Any) -> ValidationResult:
    result = ValidationResult()
    if not urgency:
        return result

    lowered = str(urgency).lower()
    if lowered not in VALID_URGENCIES:
        result.error(f"Urgency must be one of: {', '.join(VALID_URGENCIES)}")
    if lowered == "critical":
        result.warn(
            "Critical urgency tickets require immediate attention and supervisor approval."
        )
    return result


def validate_status(status: Any, is_update: bool = False) -> ValidationResult:
    result = ValidationResult()
    if not status:
        return result

    lowered = str(status).lower()
    if lowered not in VALID_STATUSES:
        result.error(f"Status must be one of: {', '.join(VALID_STATUSES)}")
    if is_update and lowered == "open":
        result.warn("Reopening a closed ticket requires additional authorization.")
    return result


def validate_category(category: Any) -> ValidationResult:
    result = ValidationResult()
    if category and len(str(category).strip()) > 100:
        result.error("Category cannot exceed 100 characters")
    return result


def validate_department(department: Any) -> ValidationResult:
    result = ValidationResult()
    if not department:
        return result

    trimmed = str(department).strip()
    if len(trimmed) > 100:
        result.error("Department cannot exceed 100 characters")
    if trimmed not in KNOWN_DEPARTMENTS:
        result.warn(f'Department "{trimmed}" is not in the standard list.')
    return result


def validate_location(location: Any) -> ValidationResult:
    result = ValidationResult()
    if location and len(str(location).strip()) > 200:
        result.error("Location cannot exceed 200 characters")
    return result


def validate_contact_info(raw: Any) -> ValidationResult:
    result = ValidationResult()
    contact = parse_contact_info(raw)
    if contact is None:
        if raw:
            result.error("Contact information must be text or an object")
        return result

    if isinstance(contact, ContactText):
        trimmed = contact.value.strip()
        if len(trimmed) > 100:
            result.error("Contact information cannot exceed 100 characters")
        if "@" in trimmed and not is_valid_email(trimmed):
            result.warn("Contact information appears to be an email but format is invalid")
        return result

    if contact.email and not is_valid_email(contact.email.strip()):
        result.error("Invalid email address in contact information")
    if contact.phone and not validate_phone(contact.phone):
        result.warn("Phone number format appears invalid")
    return result


def validate_attachments(attachments: Any) -> ValidationResult:
    result = ValidationResult()
    if not attachments:
        return result
    if not isinstance(attachments, list):
        return result.error("Attachments must be a list")

    if len(attachments) > MAX_ATTACHMENTS:
        return result.error(f"Cannot attach more than {MAX_ATTACHMENTS} files")

    for position, attachment in enumerate(attachments, start=1):
        if not isinstance(attachment, dict):
            result.error(f"Attachment {position} is invalid")
            continue

        name = str(attachment.get("name") or "").strip()
        if not name:
            result.error(f"Attachment {position} has no file name")

        size = attachment.get("size") or 0
        if isinstance(size, (int, float)) and size > MAX_FILE_SIZE:
            result.error(f'Attachment "{name}" exceeds maximum file size of 10MB')

        mime_type = attachment.get("type")
        if mime_type and mime_type not in ALLOWED_FILE_TYPES:
            result.error(
                f'File type "{mime_type}" is not allowed for attachment "{name}"',
                security=True,
            )

        if name and contains_malicious_content(name):
            result.error(f'Attachment name "{name}" contains suspicious characters', security=True)
    return result


def validate_metadata(metadata: Any) -> ValidationResult:
    result = ValidationResult()
    if not metadata:
        return result
    if not isinstance(metadata, dict):
        return result.error("Metadata must be an object")

    serialized = json.dumps(metadata, separators=(",", ":"), ensure_ascii=False, default=str)
    if len(serialized) > MAX_METADATA_SIZE:
        return result.error("Metadata exceeds maximum size of 5KB")

    for key, value in metadata.items():
        if key in RESERVED_METADATA_KEYS:
            result.error(f'Metadata key "{key}" is reserved', security=True)
        if contains_malicious_content(key):
            result.error(f'Metadata key "{key}" contains suspicious characters', security=True)
        if isinstance(value, str) and len(value) > MAX_METADATA_VALUE_LENGTH:
            result.error(
                f'Metadata value for "{key}" exceeds maximum length of '
                f"{MAX_METADATA_VALUE_LENGTH} characters"
            )
    return result


def validate_user_id(user_id: Any, field_name: str) -> ValidationResult:
    result = ValidationResult()
    if not user_id:
        return result
    if not is_valid_user_id(user_id):
        result.error(f"{format_field_name(field_name)} must be a valid user ID")
    return result


def validate_password_strength(password: Any) -> ValidationResult:
    """Registration password policy."""

    result = ValidationResult()
    if not isinstance(password, str) or not password:
        return result.error("Password is required")
    if len(password) < 8:
        result.error("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", password):
        result.error("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        result.error("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        result.error("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9]", password):
        result.error("Password must contain at least one special character")
    return result


def validate_username(username: Any) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(username, str) or not _USERNAME_PATTERN.fullmatch(username.strip()):
        result.error(
            "Username must be 3-50 characters of letters, numbers, and underscores"
        )
    return result
