"""Pydantic schemas for identities and delegation."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field, model_validator

from ..models import Permission, Role
from .base import DocStreamBaseModel, PaginatedResponse


class IdentityResponse(DocStreamBaseModel):
    id: UUID
    staff_id: str
    name: str
    email: EmailStr
    department: str | None = None
    role: Role
    is_active: bool
    acting_role: Role | None = None
    acting_starts_at: datetime | None = None
    acting_ends_at: datetime | None = None


class CurrentIdentityResponse(IdentityResponse):
    """The caller, with the role used for authorization right now."""

    effective_role: Role
    permissions: list[Permission]


class ActingRoleBody(DocStreamBaseModel):
    """Delegate a role for a bounded window."""

    role: Role
    starts_at: datetime
    ends_at: datetime = Field(..., description="Inclusive end of the delegation window")

    @model_validator(mode="after")
    def check_window(self) -> "ActingRoleBody":
        if self.starts_at >= self.ends_at:
            raise ValueError("starts_at must be before ends_at")
        return self


class IdentityUpdateBody(DocStreamBaseModel):
    """Fields an administrator may change. Omitted fields are left alone."""

    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    department: str | None = Field(None, max_length=100)
    role: Role | None = None
    is_active: bool | None = None


class IdentityListResponse(PaginatedResponse):
    """Paginated identity list."""

    items: list[IdentityResponse]
