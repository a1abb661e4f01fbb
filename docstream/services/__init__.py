"""Business logic services for DocStream."""

from .activity_log import ActivityLogService, ActivityLogger, SqlActivityLogger
from .approval_engine import (
    ActivityEvent,
    Actor,
    ApprovalEngine,
    Assignment,
    AssignmentInput,
    DeclineRecord,
    Notification,
    NotificationEvent,
    RequestState,
    StageApproval,
    TransitionResult,
)
from .errors import (
    AlreadyTerminal,
    AuthorizationError,
    ConcurrentModification,
    ConfigurationError,
    IncompleteApprovals,
    RequestNotFound,
    StageMismatch,
    StorageUnavailable,
    UnknownRoutingAttribute,
    UnknownStage,
    ValidationError,
    WorkflowError,
    WorkflowPreconditionError,
)
from .identities import (
    IdentityDirectory,
    IdentityNotFound,
    IdentityRecord,
    IdentityService,
    SqlIdentityDirectory,
)
from .notifications import LoggingNotifier, Notifier
from .repository import RequestStore, SqlRequestStore
from .requests_query import RequestQueryService
from .stage_graph import DEFAULT_STAGE_GRAPH, StageGraph
from .workflow_service import WorkflowService, build_workflow_service

__all__ = [
    # Workflow (primary)
    "WorkflowService",
    "build_workflow_service",
    "ApprovalEngine",
    "StageGraph",
    "DEFAULT_STAGE_GRAPH",
    "Actor",
    "RequestState",
    "StageApproval",
    "DeclineRecord",
    "Assignment",
    "AssignmentInput",
    "Notification",
    "TransitionResult",
    "ActivityEvent",
    "NotificationEvent",
    # Errors
    "WorkflowError",
    "ValidationError",
    "AuthorizationError",
    "StageMismatch",
    "WorkflowPreconditionError",
    "AlreadyTerminal",
    "IncompleteApprovals",
    "ConfigurationError",
    "UnknownRoutingAttribute",
    "UnknownStage",
    "RequestNotFound",
    "ConcurrentModification",
    "StorageUnavailable",
    "IdentityNotFound",
    # Collaborators
    "RequestStore",
    "SqlRequestStore",
    "IdentityDirectory",
    "SqlIdentityDirectory",
    "IdentityRecord",
    "ActivityLogger",
    "SqlActivityLogger",
    "Notifier",
    "LoggingNotifier",
    # Read side
    "RequestQueryService",
    "ActivityLogService",
    "IdentityService",
]
