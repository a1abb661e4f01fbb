"""Role-permission table and effective-role resolution.

This module provides:
1. The static role -> permission mapping
2. Permission checks against that mapping
3. Effective role resolution for identities with a temporary delegation

The table is built once at import time and never mutated; callers pass
it to the workflow engine rather than reaching for module state.
"""

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Protocol

from ..models import Permission, Role


# Every identity may submit and follow its own requests
_BASE_PERMISSIONS = frozenset({
    Permission.VIEW_OWN_REQUESTS,
    Permission.CREATE_REQUEST,
})

_STAGE_APPROVER = frozenset({
    Permission.APPROVE_STAGE,
    Permission.DECLINE_REQUEST,
})


ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType({
    Role.STAFF: _BASE_PERMISSIONS,
    Role.UPLOADER: _BASE_PERMISSIONS | {Permission.UPLOAD_FILES},
    Role.APPROVER: _BASE_PERMISSIONS,
    Role.VIEWER: _BASE_PERMISSIONS | {Permission.VIEW_ALL_REQUESTS},
    Role.ROM_SUPERVISOR: _BASE_PERMISSIONS | _STAGE_APPROVER,
    Role.SUPERVISOR: _BASE_PERMISSIONS | _STAGE_APPROVER,
    Role.CORPORATE_SERVICES: _BASE_PERMISSIONS | _STAGE_APPROVER,
    Role.REGIONAL_COORDINATOR: _BASE_PERMISSIONS | _STAGE_APPROVER | {
        Permission.VIEW_ALL_REQUESTS,
        Permission.EXPORT_DATA,
    },
    Role.VEHICLE_OFFICER: _BASE_PERMISSIONS | _STAGE_APPROVER | {
        Permission.ASSIGN_RESOURCE,
    },
    Role.ICT_ADMIN: _BASE_PERMISSIONS | {
        Permission.MANAGE_IDENTITIES,
        Permission.VIEW_ACTIVITY_LOG,
        Permission.VIEW_ALL_REQUESTS,
        Permission.EXPORT_DATA,
    },
})


@dataclass(frozen=True)
class PermissionTable:
    """Immutable lookup from role to the actions it may perform."""

    grants: Mapping[Role, frozenset[Permission]]

    def permissions_for(self, role: Role) -> frozenset[Permission]:
        return self.grants.get(role, frozenset())

    def has_permission(self, role: Role, action: Permission) -> bool:
        """Check if the role includes a permission."""
        return action in self.permissions_for(role)

    def roles_with(self, action: Permission) -> frozenset[Role]:
        return frozenset(role for role, granted in self.grants.items() if action in granted)


DEFAULT_PERMISSIONS = PermissionTable(grants=ROLE_PERMISSIONS)


def has_permission(role: Role, action: Permission) -> bool:
    return DEFAULT_PERMISSIONS.has_permission(role, action)


class DelegatingIdentity(Protocol):
    """The identity fields effective-role resolution reads."""

    role: Role
    acting_role: Role | None
    acting_starts_at: datetime | None
    acting_ends_at: datetime | None


def delegation_active(identity: DelegatingIdentity, now: datetime) -> bool:
    """True when the identity's acting window covers ``now`` (bounds inclusive)."""
    if identity.acting_role is None:
        return False
    if identity.acting_starts_at is None or identity.acting_ends_at is None:
        return False
    return identity.acting_starts_at <= now <= identity.acting_ends_at


def effective_role(identity: DelegatingIdentity, now: datetime) -> Role:
    """Role used for every authorization check at ``now``."""
    if delegation_active(identity, now):
        return Role(identity.acting_role)
    return Role(identity.role)
