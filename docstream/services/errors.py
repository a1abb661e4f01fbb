"""Workflow error taxonomy.

Every error carries a stable ``code`` used in API error bodies. The
``retryable`` flag marks the transient kinds the workflow service may retry.
"""


class WorkflowError(Exception):
    """Base exception for workflow operations."""

    code = "workflow_error"
    retryable = False


class ValidationError(WorkflowError):
    """Missing or malformed input."""

    code = "validation_error"


class AuthorizationError(WorkflowError):
    """The actor's role may not perform this action."""

    code = "not_authorized"


class StageMismatch(AuthorizationError):
    """The actor's role does not match the request's current stage."""

    code = "stage_mismatch"


class WorkflowPreconditionError(WorkflowError):
    """Operation not allowed in the request's current state."""


class AlreadyTerminal(WorkflowPreconditionError):
    """The request was declined or dispatched."""

    code = "already_terminal"


class IncompleteApprovals(WorkflowPreconditionError):
    """Not every stage has been approved yet."""

    code = "incomplete_approvals"


class ConfigurationError(WorkflowError):
    """Stage or routing data missing from the deployment's configuration."""


class UnknownRoutingAttribute(ConfigurationError):
    code = "unknown_routing_attribute"


class UnknownStage(ConfigurationError):
    code = "unknown_stage"


class RequestNotFound(WorkflowError):
    """Request does not exist."""

    code = "request_not_found"


class ConcurrentModification(WorkflowError):
    """The stored request changed since it was loaded."""

    code = "concurrent_modification"
    retryable = True


class StorageUnavailable(WorkflowError):
    """The storage backend could not be reached."""

    code = "storage_unavailable"
    retryable = True
