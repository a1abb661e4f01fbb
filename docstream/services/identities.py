"""Identity lookups, administration, and temporary role delegation ("acting as")."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.permissions import DEFAULT_PERMISSIONS, PermissionTable, effective_role
from ..models import ActivityAction, Identity, Permission, Role, as_utc, utcnow
from .activity_log import ActivityLogger
from .approval_engine import ActivityEvent, Actor
from .errors import AuthorizationError, ValidationError, WorkflowError
from .repository import storage_errors

logger = logging.getLogger(__name__)


class IdentityNotFound(WorkflowError):
    """Identity does not exist."""

    code = "identity_not_found"


@dataclass(frozen=True)
class IdentityRecord:
    """Snapshot of the identity fields authorization reads."""
    id: UUID
    name: str
    role: Role
    is_active: bool = True
    acting_role: Role | None = None
    acting_starts_at: datetime | None = None
    acting_ends_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Identity) -> "IdentityRecord":
        return cls(
            id=row.id,
            name=row.name,
            role=Role(row.role),
            is_active=bool(row.is_active),
            acting_role=Role(row.acting_role) if row.acting_role else None,
            acting_starts_at=as_utc(row.acting_starts_at),
            acting_ends_at=as_utc(row.acting_ends_at),
        )

    def as_actor(self, now: datetime) -> Actor:
        return Actor(id=self.id, name=self.name, role=effective_role(self, now))


class IdentityDirectory(Protocol):
    """Identity/role provider consumed by the workflow service."""

    async def resolve_actor(self, actor_id: UUID, now: datetime) -> Actor: ...


class SqlIdentityDirectory:
    """Resolves identities from the identities table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_identity(self, identity_id: UUID) -> IdentityRecord:
        with storage_errors(f"identity {identity_id}"):
            async with self._session_factory() as session:
                row = await session.get(Identity, identity_id)
                record = IdentityRecord.from_row(row) if row is not None else None

        if record is None or not record.is_active:
            raise AuthorizationError(f"Identity {identity_id} is unknown or inactive")
        return record

    async def effective_role(self, actor_id: UUID, now: datetime) -> Role:
        identity = await self.get_identity(actor_id)
        return effective_role(identity, now)

    async def resolve_actor(self, actor_id: UUID, now: datetime) -> Actor:
        """Resolve the actor's effective role once for a transition."""
        identity = await self.get_identity(actor_id)
        return identity.as_actor(now)


class IdentityService:
    """Identity administration and delegated roles, gated by manage_identities."""

    def __init__(
        self,
        session: AsyncSession,
        activity_logger: ActivityLogger | None = None,
        permissions: PermissionTable = DEFAULT_PERMISSIONS,
    ):
        self.session = session
        self.activity_logger = activity_logger
        self.permissions = permissions

    async def set_acting_role(
        self,
        actor: Actor,
        target_id: UUID,
        role: Role | str,
        starts_at: datetime,
        ends_at: datetime,
    ) -> Identity:
        """Delegate ``role`` to the target identity for [starts_at, ends_at]."""
        self._ensure_can_manage(actor)
        role = Role(role)
        starts_at, ends_at = as_utc(starts_at), as_utc(ends_at)
        if starts_at >= ends_at:
            raise ValidationError("Delegation must start before it ends")

        target = await self._get_target(target_id)
        target.acting_role = role
        target.acting_starts_at = starts_at
        target.acting_ends_at = ends_at
        target.acting_assigned_by = actor.id
        with storage_errors(f"identity {target_id}"):
            await self.session.commit()

        logger.info(f"{actor.name} delegated role {role.value} to {target.name}")
        await self._record(
            actor,
            ActivityAction.ACTING_AS_ROLE,
            f"{target.name} is acting as {role.value}",
            target,
            {
                "acting_role": role.value,
                "starts_at": starts_at.isoformat(),
                "ends_at": ends_at.isoformat(),
            },
        )
        return target

    async def clear_acting_role(self, actor: Actor, target_id: UUID) -> Identity:
        self._ensure_can_manage(actor)
        target = await self._get_target(target_id)
        previous = target.acting_role

        target.acting_role = None
        target.acting_starts_at = None
        target.acting_ends_at = None
        target.acting_assigned_by = None
        with storage_errors(f"identity {target_id}"):
            await self.session.commit()

        await self._record(
            actor,
            ActivityAction.CLEARED_ACTING_ROLE,
            f"Cleared acting role for {target.name}",
            target,
            {"previous_role": previous.value if previous else None},
        )
        return target

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    async def list_identities(
        self,
        actor: Actor,
        role: Role | None = None,
        department: str | None = None,
        is_active: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Identity], int]:
        """List identities by name. Requires manage_identities or view_all_requests."""
        if not (
            self.permissions.has_permission(actor.role, Permission.MANAGE_IDENTITIES)
            or self.permissions.has_permission(actor.role, Permission.VIEW_ALL_REQUESTS)
        ):
            raise AuthorizationError(f"Role '{actor.role.value}' may not list identities")

        query = select(Identity)
        if role:
            query = query.where(Identity.role == role)
        if department:
            query = query.where(Identity.department == department)
        if is_active is not None:
            query = query.where(Identity.is_active == is_active)

        with storage_errors("identities"):
            count_query = select(func.count()).select_from(query.subquery())
            total = (await self.session.execute(count_query)).scalar_one()

            result = await self.session.execute(
                query.order_by(Identity.name).limit(limit).offset(offset)
            )
            return result.scalars().all(), total

    async def update_identity(
        self,
        actor: Actor,
        target_id: UUID,
        name: str | None = None,
        email: str | None = None,
        department: str | None = None,
        role: Role | str | None = None,
        is_active: bool | None = None,
    ) -> Identity:
        """Apply the given fields to an identity. Fields left as None are unchanged."""
        self._ensure_can_manage(actor)
        target = await self._get_target(target_id)

        changes: dict[str, Any] = {}
        if name:
            changes["name"] = name.strip()
        if email:
            changes["email"] = email.strip().lower()
        if department:
            changes["department"] = department.strip()
        if role:
            changes["role"] = Role(role)
        if is_active is not None:
            changes["is_active"] = is_active
        if not changes:
            raise ValidationError("No identity fields to update")
        if changes.get("is_active") is False and target.id == actor.id:
            raise ValidationError("An identity cannot deactivate itself")

        for field_name, value in changes.items():
            setattr(target, field_name, value)
        with storage_errors(f"identity {target_id}"):
            try:
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                raise ValidationError("Email or staff ID is already in use") from e

        logger.info(f"{actor.name} updated identity {target.name}: {sorted(changes)}")
        await self._record(
            actor,
            ActivityAction.EDITED_STAFF,
            f"Updated identity {target.name}",
            target,
            {
                "staff_id": target.staff_id,
                "changes": {
                    k: v.value if isinstance(v, Role) else v for k, v in changes.items()
                },
            },
        )
        return target

    async def deactivate_identity(self, actor: Actor, target_id: UUID) -> Identity:
        """Deactivate an identity; it can no longer authenticate or act."""
        self._ensure_can_manage(actor)
        if target_id == actor.id:
            raise ValidationError("An identity cannot deactivate itself")
        target = await self._get_target(target_id)

        target.is_active = False
        with storage_errors(f"identity {target_id}"):
            await self.session.commit()

        logger.info(f"{actor.name} deactivated identity {target.name}")
        await self._record(
            actor,
            ActivityAction.DEACTIVATED_STAFF,
            f"Deactivated identity {target.name}",
            target,
            {"staff_id": target.staff_id},
        )
        return target

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _ensure_can_manage(self, actor: Actor) -> None:
        if not self.permissions.has_permission(actor.role, Permission.MANAGE_IDENTITIES):
            raise AuthorizationError(f"Role '{actor.role.value}' may not manage identities")

    async def _get_target(self, target_id: UUID) -> Identity:
        with storage_errors(f"identity {target_id}"):
            result = await self.session.execute(
                select(Identity).where(Identity.id == target_id)
            )
        target = result.scalar_one_or_none()
        if not target:
            raise IdentityNotFound(f"Identity {target_id} not found")
        return target

    async def _record(
        self,
        actor: Actor,
        action: ActivityAction,
        description: str,
        target: Identity,
        metadata: dict,
    ) -> None:
        if self.activity_logger is None:
            return
        event = ActivityEvent(
            actor_id=actor.id,
            actor_name=actor.name,
            role=actor.role.value,
            action=action,
            description=description,
            resource_type="identity",
            resource_id=target.id,
            timestamp=utcnow(),
            metadata=metadata,
        )
        try:
            await self.activity_logger.record(event)
        except Exception:
            logger.exception(f"Failed to record {action.value} for identity {target.id}")
