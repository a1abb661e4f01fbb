"""API routes for identities: current caller, administration, and delegated roles."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import (
    CurrentActorDep,
    IdentityManagerDep,
    SessionDep,
    WorkflowServiceDep,
)
from ..core.permissions import DEFAULT_PERMISSIONS
from ..models import Role
from ..schemas import (
    ActingRoleBody,
    CurrentIdentityResponse,
    IdentityListResponse,
    IdentityResponse,
    IdentityUpdateBody,
)
from ..services import IdentityService

router = APIRouter(prefix="/users", tags=["users"])


def get_identity_service(
    session: SessionDep,
    workflow: WorkflowServiceDep,
) -> IdentityService:
    return IdentityService(session, activity_logger=workflow.activity_logger)


IdentityServiceDep = Annotated[IdentityService, Depends(get_identity_service)]


@router.get("/me", response_model=CurrentIdentityResponse)
async def get_me(current: CurrentActorDep):
    """The caller's identity and the role used for authorization right now."""
    identity = IdentityResponse.model_validate(current.identity)
    return CurrentIdentityResponse(
        **identity.model_dump(),
        effective_role=current.role,
        permissions=sorted(DEFAULT_PERMISSIONS.permissions_for(current.role)),
    )


@router.put("/{identity_id}/acting-role", response_model=IdentityResponse)
async def set_acting_role(
    identity_id: UUID,
    body: ActingRoleBody,
    current: IdentityManagerDep,
    service: IdentityServiceDep,
):
    """Delegate a role to an identity for a bounded window."""
    identity = await service.set_acting_role(
        actor=current.actor,
        target_id=identity_id,
        role=body.role,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
    )
    return IdentityResponse.model_validate(identity)


@router.delete("/{identity_id}/acting-role", response_model=IdentityResponse)
async def clear_acting_role(
    identity_id: UUID,
    current: IdentityManagerDep,
    service: IdentityServiceDep,
):
    identity = await service.clear_acting_role(actor=current.actor, target_id=identity_id)
    return IdentityResponse.model_validate(identity)


@router.get("", response_model=IdentityListResponse)
async def list_identities(
    current: CurrentActorDep,
    service: IdentityServiceDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Role | None = None,
    department: str | None = None,
    is_active: bool | None = None,
):
    """List identities by name. Requires manage_identities or view_all_requests."""
    identities, total = await service.list_identities(
        actor=current.actor,
        role=role,
        department=department,
        is_active=is_active,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return IdentityListResponse.create(
        items=[IdentityResponse.model_validate(i) for i in identities],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.put("/{identity_id}", response_model=IdentityResponse)
async def update_identity(
    identity_id: UUID,
    body: IdentityUpdateBody,
    current: IdentityManagerDep,
    service: IdentityServiceDep,
):
    identity = await service.update_identity(
        actor=current.actor,
        target_id=identity_id,
        name=body.name,
        email=body.email,
        department=body.department,
        role=body.role,
        is_active=body.is_active,
    )
    return IdentityResponse.model_validate(identity)


@router.put("/{identity_id}/deactivate", response_model=IdentityResponse)
async def deactivate_identity(
    identity_id: UUID,
    current: IdentityManagerDep,
    service: IdentityServiceDep,
):
    """Deactivate an identity. Its tokens stop working immediately."""
    identity = await service.deactivate_identity(actor=current.actor, target_id=identity_id)
    return IdentityResponse.model_validate(identity)
