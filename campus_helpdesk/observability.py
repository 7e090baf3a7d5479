"""Centralized Prometheus metrics definitions and helpers."""

from __future__ import annotations

from loguru import logger
from prometheus_client import Counter

from campus_helpdesk.validation.result import ValidationResult

VALIDATION_REJECTIONS = Counter(
    "helpdesk_validation_rejections_total",
    "Number of payloads rejected by validation.",
    labelnames=("payload", "kind"),
)

AUTH_FAILURES = Counter(
    "helpdesk_auth_failures_total",
    "Number of failed authentication or authorization checks.",
    labelnames=("reason",),
)


def record_validation_outcome(payload: str, result: ValidationResult) -> None:
    """Count a rejected payload; security rejections are logged separately."""

    if result.valid:
        return
    kind = "security" if result.security_flagged else "validation"
    VALIDATION_REJECTIONS.labels(payload=payload, kind=kind).inc()
    if result.security_flagged:
        logger.warning("Rejected {} payload with suspicious content", payload)


def record_auth_failure(reason: str) -> None:
    AUTH_FAILURES.labels(reason=reason).inc()
