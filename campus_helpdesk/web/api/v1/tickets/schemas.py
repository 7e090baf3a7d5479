"""Pydantic models for the ticket API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class TicketResponse(BaseModel):
    ticket: dict[str, Any]
    warnings: list[str] = Field(default_factory=list)


class TicketPage(BaseModel):
    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    pages: int


class CommentResponse(BaseModel):
    comment: dict[str, Any]


class BulkOperationResponse(BaseModel):
    action: str
    status: str
    requested: int
    modified: int


class DueDateCheck(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]


class SlaPreviewResponse(BaseModel):
    urgency: str
    slaDueDate: datetime | None = None
    dueDateCheck: DueDateCheck | None = None


class TicketStats(BaseModel):
    total: int
    byStatus: dict[str, int]
    byUrgency: dict[str, int]
    overdue: int
