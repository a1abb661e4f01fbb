"""SQLAlchemy ORM Models for DocStream.

Enums here are shared with the workflow engine; they are stored by value.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class Role(str, PyEnum):
    STAFF = "staff"
    UPLOADER = "uploader"
    APPROVER = "approver"
    VIEWER = "viewer"
    ROM_SUPERVISOR = "rom_supervisor"
    SUPERVISOR = "supervisor"
    CORPORATE_SERVICES = "corporate_services"
    REGIONAL_COORDINATOR = "regional_coordinator"
    VEHICLE_OFFICER = "vehicle_officer"
    ICT_ADMIN = "ict_admin"


class Permission(str, PyEnum):
    VIEW_OWN_REQUESTS = "view_own_requests"
    CREATE_REQUEST = "create_request"
    VIEW_ALL_REQUESTS = "view_all_requests"
    APPROVE_STAGE = "approve_stage"
    DECLINE_REQUEST = "decline_request"
    ASSIGN_RESOURCE = "assign_resource"
    UPLOAD_FILES = "upload_files"
    MANAGE_IDENTITIES = "manage_identities"
    VIEW_ACTIVITY_LOG = "view_activity_log"
    EXPORT_DATA = "export_data"


class Stage(str, PyEnum):
    SUPERVISOR = "supervisor"
    CORPORATE = "corporate"
    REGIONAL_COORDINATOR = "regional_coordinator"
    VEHICLE_OFFICER = "vehicle_officer"


class RoutingAttribute(str, PyEnum):
    WITHIN_TOWN = "within_town"
    OUT_OF_TOWN = "out_of_town"


class OverallStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    DISPATCHED = "dispatched"


class ApprovalStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class NotificationType(str, PyEnum):
    APPROVED = "approved"
    DECLINED = "declined"
    DISPATCHED = "dispatched"
    URGENT_DISPATCH = "urgent_dispatch"


class ActivityAction(str, PyEnum):
    CREATED_REQUEST = "created_request"
    APPROVED_REQUEST = "approved_request"
    DECLINED_REQUEST = "declined_request"
    DISPATCHED_REQUEST = "dispatched_request"
    ACTING_AS_ROLE = "acting_as_role"
    CLEARED_ACTING_ROLE = "cleared_acting_role"
    EDITED_STAFF = "edited_staff"
    DEACTIVATED_STAFF = "deactivated_staff"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# Shared column types so each PostgreSQL enum type is created once
RoleType = _enum(Role, "role")
StageType = _enum(Stage, "stage")


# =============================================================================
# IDENTITIES
# =============================================================================


class Identity(Base, UUIDMixin, TimestampMixin):
    """A staff member who submits or acts on requests."""

    __tablename__ = "identities"

    staff_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    department: Mapped[str | None] = mapped_column(String(100))
    role: Mapped[Role] = mapped_column(RoleType, default=Role.STAFF)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Temporary delegation ("acting as")
    acting_role: Mapped[Role | None] = mapped_column(RoleType)
    acting_starts_at: Mapped[datetime | None] = mapped_column()
    acting_ends_at: Mapped[datetime | None] = mapped_column()
    acting_assigned_by: Mapped[UUID | None] = mapped_column(ForeignKey("identities.id"))

    __table_args__ = (
        Index("idx_identities_role", "department", "role"),
    )


# =============================================================================
# REQUESTS
# =============================================================================


class WorkflowRequest(Base, UUIDMixin, TimestampMixin):
    """Aggregate root row for a request moving through approval."""

    __tablename__ = "requests"

    request_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    requester_id: Mapped[UUID] = mapped_column(ForeignKey("identities.id"), nullable=False)
    routing: Mapped[RoutingAttribute] = mapped_column(
        _enum(RoutingAttribute, "routing_attribute"), nullable=False
    )
    current_stage: Mapped[Stage | None] = mapped_column(
        StageType,
        comment="NULL once every stage is approved",
    )
    overall_status: Mapped[OverallStatus] = mapped_column(
        _enum(OverallStatus, "overall_status"), default=OverallStatus.PENDING
    )
    details: Mapped[dict] = mapped_column(default=dict)

    # Decline record (terminal, set once)
    declined_by: Mapped[UUID | None] = mapped_column(ForeignKey("identities.id"))
    declined_role: Mapped[Role | None] = mapped_column(RoleType)
    decline_reason: Mapped[str | None] = mapped_column(Text)
    declined_at: Mapped[datetime | None] = mapped_column()

    # Assignment record (terminal, set once)
    assignment: Mapped[dict | None] = mapped_column()

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    requester: Mapped["Identity"] = relationship(foreign_keys=[requester_id])
    approvals: Mapped[list["StageApprovalRecord"]] = relationship(
        back_populates="request",
        order_by="StageApprovalRecord.position",
        cascade="all, delete-orphan",
    )
    notifications: Mapped[list["RequestNotification"]] = relationship(
        back_populates="request",
        order_by="RequestNotification.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_requests_requester", "requester_id"),
        Index("idx_requests_status", "overall_status", "created_at"),
        Index("idx_requests_stage", "current_stage"),
    )


class StageApprovalRecord(Base, UUIDMixin):
    """Write-once approval record for one stage of a request."""

    __tablename__ = "stage_approvals"

    request_id: Mapped[UUID] = mapped_column(ForeignKey("requests.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[Stage] = mapped_column(StageType, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "approval_status"), default=ApprovalStatus.PENDING
    )
    approver_id: Mapped[UUID | None] = mapped_column(ForeignKey("identities.id"))
    approved_at: Mapped[datetime | None] = mapped_column()
    comments: Mapped[str | None] = mapped_column(Text)

    request: Mapped["WorkflowRequest"] = relationship(back_populates="approvals")

    __table_args__ = (
        UniqueConstraint("request_id", "stage"),
        Index("idx_stage_approvals_request", "request_id"),
    )


class RequestNotification(Base, UUIDMixin):
    """Append-only outbound notice tied to a request."""

    __tablename__ = "request_notifications"

    request_id: Mapped[UUID] = mapped_column(ForeignKey("requests.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_id: Mapped[UUID] = mapped_column(ForeignKey("identities.id"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    request: Mapped["WorkflowRequest"] = relationship(back_populates="notifications")

    __table_args__ = (
        UniqueConstraint("request_id", "position"),
        Index("idx_request_notifications_recipient", "recipient_id", "created_at"),
    )


# =============================================================================
# ACTIVITY LOG
# =============================================================================


class ActivityLog(Base, UUIDMixin):
    """Append-only audit trail of state-changing actions."""

    __tablename__ = "activity_log"

    sequence: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(ForeignKey("identities.id"))
    actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[ActivityAction] = mapped_column(
        _enum(ActivityAction, "activity_action"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[UUID | None] = mapped_column()
    details: Mapped[dict] = mapped_column(default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    previous_hash: Mapped[str | None] = mapped_column(String(64))
    entry_hash: Mapped[str | None] = mapped_column(String(64))

    actor: Mapped["Identity | None"] = relationship()

    __table_args__ = (
        Index("idx_activity_log_time", "created_at"),
        Index("idx_activity_log_actor", "actor_id", "created_at"),
        Index("idx_activity_log_resource", "resource_type", "resource_id"),
        Index("idx_activity_log_action", "action", "created_at"),
    )
