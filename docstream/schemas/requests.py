"""Pydantic schemas for workflow requests."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import (
    ApprovalStatus,
    NotificationType,
    OverallStatus,
    Role,
    RoutingAttribute,
    Stage,
)
from ..services import RequestState
from .base import DocStreamBaseModel, PaginatedResponse


# =============================================================================
# REQUEST BODIES
# =============================================================================


class SubmitRequestBody(DocStreamBaseModel):
    """Create a request. ``details`` is opaque to the workflow."""

    routing: RoutingAttribute
    details: dict[str, Any] = Field(default_factory=dict)


class ApproveRequestBody(DocStreamBaseModel):
    comments: str | None = Field(None, max_length=2000)


class DeclineRequestBody(DocStreamBaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class AssignRequestBody(DocStreamBaseModel):
    """Resource/operator details for dispatch."""

    operator_name: str = Field(..., min_length=1, max_length=255)
    resource_ref: str = Field(..., min_length=1, max_length=100)
    operator_id: str | None = None
    resource_type: str | None = None
    expected_return: str | None = None
    urgent: bool = False


# =============================================================================
# RESPONSES
# =============================================================================


class StageApprovalResponse(DocStreamBaseModel):
    stage: Stage
    status: ApprovalStatus
    approver_id: UUID | None = None
    approved_at: datetime | None = None
    comments: str | None = None


class DeclineResponse(DocStreamBaseModel):
    actor_id: UUID
    role: Role
    reason: str
    declined_at: datetime


class AssignmentResponse(DocStreamBaseModel):
    operator_name: str
    resource_ref: str
    operator_id: str | None = None
    resource_type: str | None = None
    expected_return: str | None = None
    urgent: bool = False
    assigned_by: UUID
    assigned_at: datetime


class NotificationResponse(DocStreamBaseModel):
    recipient_id: UUID
    message: str
    notification_type: NotificationType
    created_at: datetime


class RequestResponse(DocStreamBaseModel):
    """Full request state as returned by every workflow endpoint."""

    id: UUID
    request_number: str
    requester_id: UUID
    routing: RoutingAttribute
    current_stage: Stage | None
    overall_status: OverallStatus
    approvals: list[StageApprovalResponse]
    details: dict[str, Any]
    decline: DeclineResponse | None = None
    assignment: AssignmentResponse | None = None
    notifications: list[NotificationResponse] = []
    version: int
    created_at: datetime

    @classmethod
    def from_state(cls, request: RequestState) -> "RequestResponse":
        return cls.model_validate(request)


class RequestListResponse(PaginatedResponse):
    """Paginated request list."""

    items: list[RequestResponse]


class DashboardStats(DocStreamBaseModel):
    today: dict[str, int]
    totals: dict[str, int]
    by_routing: dict[str, int]
    total_requests: int
    generated_at: datetime
