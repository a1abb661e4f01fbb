"""Pydantic schemas for the activity log."""

from datetime import datetime
from uuid import UUID

from ..models import ActivityAction
from .base import DocStreamBaseModel, PaginatedResponse


class ActivityLogEntry(DocStreamBaseModel):
    """A single activity log entry."""

    id: UUID
    sequence: int
    actor_id: UUID | None = None
    actor_name: str
    role: str
    action: ActivityAction
    description: str
    resource_type: str
    resource_id: UUID | None = None
    details: dict
    created_at: datetime

    # Chain integrity
    previous_hash: str | None = None
    entry_hash: str | None = None


class ActivityLogResponse(PaginatedResponse):
    """Paginated activity log response."""

    items: list[ActivityLogEntry]


class ChainVerificationResult(DocStreamBaseModel):
    """Result of verifying the activity log hash chain."""

    is_valid: bool
    verified_entries: int
    broken_at_id: UUID | None = None
    verified_at: datetime
