"""FastAPI dependencies for authentication, authorization, and services."""

import logging
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Identity, Permission, Role, utcnow
from ..services import (
    Actor,
    IdentityRecord,
    WorkflowService,
    build_workflow_service,
)
from .config import get_settings
from .database import async_session_factory, get_session
from .permissions import has_permission
from .security import decode_token

logger = logging.getLogger(__name__)
settings = get_settings()

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentActor:
    """Represents the authenticated identity and its effective role."""

    def __init__(self, identity: Identity, actor: Actor):
        self.identity = identity
        self.actor = actor

    @property
    def id(self) -> UUID:
        return self.identity.id

    @property
    def role(self) -> Role:
        return self.actor.role

    def has_permission(self, permission: Permission) -> bool:
        return has_permission(self.role, permission)


async def get_current_actor(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentActor:
    """Dependency to get the current authenticated identity.

    The effective role is resolved once here, at request time.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload or payload.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        identity_id = UUID(payload.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )

    identity = await session.get(Identity, identity_id)
    if not identity or not identity.is_active:
        logger.warning(f"Token presented for unknown or inactive identity {identity_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Identity not found",
        )

    actor = IdentityRecord.from_row(identity).as_actor(utcnow())
    return CurrentActor(identity=identity, actor=actor)


def require_permission(permission: Permission):
    """
    Dependency factory that requires the caller's effective role to hold a permission.

    Usage:
        @router.get("/activity-log")
        async def get_activity_log(
            current: Annotated[CurrentActor, Depends(require_permission(Permission.VIEW_ACTIVITY_LOG))],
        ):
            ...
    """
    async def _check_permission(
        current: Annotated[CurrentActor, Depends(get_current_actor)],
    ) -> CurrentActor:
        if not current.has_permission(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "not_authorized",
                    "message": f"Role '{current.role.value}' lacks '{permission.value}'",
                },
            )
        return current

    return _check_permission


@lru_cache
def get_workflow_service() -> WorkflowService:
    """Process-wide workflow service bound to the application session factory."""
    return build_workflow_service(async_session_factory, settings)


# Type aliases for cleaner dependency injection
CurrentActorDep = Annotated[CurrentActor, Depends(get_current_actor)]
ActivityLogViewerDep = Annotated[
    CurrentActor, Depends(require_permission(Permission.VIEW_ACTIVITY_LOG))
]
IdentityManagerDep = Annotated[
    CurrentActor, Depends(require_permission(Permission.MANAGE_IDENTITIES))
]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
WorkflowServiceDep = Annotated[WorkflowService, Depends(get_workflow_service)]
