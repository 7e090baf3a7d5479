"""Detection and stripping of injection payloads in free text."""

from __future__ import annotations

import re
from typing import Any

_MALICIOUS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # markup and script injection
        r"<script\b[^>]*>",
        r"javascript:",
        r"on\w+\s*=",
        r"data:",
        r"vbscript:",
        r"expression\s*\(",
        # DOM access
        r"eval\s*\(",
        r"alert\s*\(",
        r"document\.",
        r"window\.",
        r"localStorage\.",
        r"sessionStorage\.",
        r"\.innerHTML",
        r"\.outerHTML",
        r"\.write\s*\(",
        r"fromCharCode\s*\(",
        r"base64_decode",
        # SQL
        r"union\s+select",
        r"select\s+\*\s+from",
        r"insert\s+into",
        r"drop\s+table",
        r"delete\s+from",
        r"or\s+1=1",
        r"';",
        r"/\*.*\*/",
        r"--",
        # server-side code execution
        r"<\?php",
        r"<\?=",
        r"<\?.*\?>",
        r"system\s*\(",
        r"exec\s*\(",
        r"shell_exec\s*\(",
        r"passthru\s*\(",
        r"proc_open\s*\(",
        r"popen\s*\(",
    )
)

_ANGLE_BRACKETS = re.compile(r"[<>]")
_JAVASCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)


def contains_malicious_content(text: Any) -> bool:
    """Return True when ``text`` matches any known injection pattern."""

    if not text or not isinstance(text, str):
        return False
    return any(pattern.search(text) for pattern in _MALICIOUS_PATTERNS)


def sanitize_input(value: Any) -> Any:
    """Strip angle brackets and the ``javascript:`` protocol from a string."""

    if not isinstance(value, str):
        return value
    value = _ANGLE_BRACKETS.sub("", value)
    value = _JAVASCRIPT_PROTOCOL.sub("", value)
    return value.strip()


def sanitize_payload(payload: Any) -> Any:
    """Apply :func:`sanitize_input` to every string in a JSON-like structure."""

    if isinstance(payload, dict):
        return {key: sanitize_payload(value) for key, value in payload.items()}
    if isinstance(payload, list):
        return [sanitize_payload(item) for item in payload]
    return sanitize_input(payload)
