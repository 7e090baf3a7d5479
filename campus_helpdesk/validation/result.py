"""Validation result value shared by every validator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ValidationResult:
    """Outcome of a validation step.

    Field validators return a fresh delta which the composing validator folds
    into its own result with :meth:`merge`; no validator mutates a result it
    did not create.
    """

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    sanitized_data: dict[str, Any] = field(default_factory=dict)
    security_flagged: bool = False

    def error(self, message: str, *, security: bool = False) -> "ValidationResult":
        self.valid = False
        self.errors.append(message)
        if security:
            self.security_flagged = True
        return self

    def warn(self, message: str) -> "ValidationResult":
        self.warnings.append(message)
        return self

    def merge(self, *others: "ValidationResult") -> "ValidationResult":
        """Combine this result with ``others`` into a new result."""

        merged = ValidationResult(
            valid=self.valid,
            errors=list(self.errors),
            warnings=list(self.warnings),
            sanitized_data=dict(self.sanitized_data),
            security_flagged=self.security_flagged,
        )
        for other in others:
            merged.valid = merged.valid and other.valid
            merged.errors.extend(other.errors)
            merged.warnings.extend(other.warnings)
            merged.sanitized_data.update(other.sanitized_data)
            merged.security_flagged = merged.security_flagged or other.security_flagged
        return merged

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
