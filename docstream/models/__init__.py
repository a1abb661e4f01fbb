"""SQLAlchemy ORM Models for DocStream."""

from .base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    ActivityAction,
    ApprovalStatus,
    NotificationType,
    OverallStatus,
    Permission,
    Role,
    RoutingAttribute,
    Stage,
    # Identities
    Identity,
    # Requests
    RequestNotification,
    StageApprovalRecord,
    WorkflowRequest,
    # Audit
    ActivityLog,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    # Enums
    "ActivityAction",
    "ApprovalStatus",
    "NotificationType",
    "OverallStatus",
    "Permission",
    "Role",
    "RoutingAttribute",
    "Stage",
    # Identities
    "Identity",
    # Requests
    "WorkflowRequest",
    "StageApprovalRecord",
    "RequestNotification",
    # Audit
    "ActivityLog",
]
