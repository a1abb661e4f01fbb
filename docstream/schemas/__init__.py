"""DocStream API Schemas.

Schemas are organized by domain:
- base: Common types, pagination, errors
- requests: Workflow request bodies and responses
- audit: Activity log entries, chain verification
- identities: Identities and delegated roles
"""

from .audit import ActivityLogEntry, ActivityLogResponse, ChainVerificationResult
from .base import (
    DocStreamBaseModel,
    ErrorDetail,
    ErrorResponse,
    PaginatedResponse,
)
from .identities import (
    ActingRoleBody,
    CurrentIdentityResponse,
    IdentityListResponse,
    IdentityResponse,
    IdentityUpdateBody,
)
from .requests import (
    ApproveRequestBody,
    AssignRequestBody,
    DashboardStats,
    DeclineRequestBody,
    RequestListResponse,
    RequestResponse,
    SubmitRequestBody,
)

__all__ = [
    # Base
    "DocStreamBaseModel",
    "PaginatedResponse",
    "ErrorDetail",
    "ErrorResponse",
    # Requests
    "SubmitRequestBody",
    "ApproveRequestBody",
    "DeclineRequestBody",
    "AssignRequestBody",
    "RequestResponse",
    "RequestListResponse",
    "DashboardStats",
    # Audit
    "ActivityLogEntry",
    "ActivityLogResponse",
    "ChainVerificationResult",
    # Identities
    "IdentityResponse",
    "CurrentIdentityResponse",
    "ActingRoleBody",
    "IdentityUpdateBody",
    "IdentityListResponse",
]
