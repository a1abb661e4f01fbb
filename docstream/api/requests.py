"""
Request API Routes: the workflow command surface.

These endpoints drive a request through approval:
1. POST /requests - Submit a new request
2. PUT /requests/{id}/approve - Approve the current stage
3. PUT /requests/{id}/decline - Decline (terminal)
4. PUT /requests/{id}/assign - Assign resources and dispatch (terminal)

Workflow errors are mapped to HTTP status codes by the application's
exception handler.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core.dependencies import CurrentActorDep, SessionDep, WorkflowServiceDep
from ..models import OverallStatus, RoutingAttribute
from ..schemas import (
    ApproveRequestBody,
    AssignRequestBody,
    DashboardStats,
    DeclineRequestBody,
    RequestListResponse,
    RequestResponse,
    SubmitRequestBody,
)
from ..services import AssignmentInput, RequestQueryService

router = APIRouter(prefix="/requests", tags=["requests"])


def get_query_service(session: SessionDep) -> RequestQueryService:
    return RequestQueryService(session)


QueryServiceDep = Annotated[RequestQueryService, Depends(get_query_service)]


@router.post(
    "",
    response_model=RequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a request",
    description="""
    Create a request at the first stage of the sequence selected by `routing`.

    Every stage record starts `pending`. Routing cannot change afterwards.
    """,
)
async def submit_request(
    body: SubmitRequestBody,
    current: CurrentActorDep,
    workflow: WorkflowServiceDep,
):
    request = await workflow.submit(
        actor_id=current.id,
        routing=body.routing,
        details=body.details,
    )
    return RequestResponse.from_state(request)


@router.get(
    "",
    response_model=RequestListResponse,
    summary="List visible requests",
)
async def list_requests(
    current: CurrentActorDep,
    service: QueryServiceDep,
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    status: OverallStatus | None = Query(default=None, description="Filter by overall status"),
    routing: RoutingAttribute | None = Query(default=None, description="Filter by routing"),
    created_after: datetime | None = None,
    created_before: datetime | None = None,
):
    """List requests the caller may see, newest first."""
    offset = (page - 1) * page_size

    requests, total = await service.list_visible(
        actor=current.actor,
        status=status,
        routing=routing,
        created_after=created_after,
        created_before=created_before,
        limit=page_size,
        offset=offset,
    )

    return RequestListResponse.create(
        items=[RequestResponse.from_state(r) for r in requests],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/stats/dashboard",
    response_model=DashboardStats,
    summary="Request counts for the dashboard",
)
async def dashboard_stats(
    current: CurrentActorDep,
    service: QueryServiceDep,
):
    stats = await service.dashboard_stats(current.actor)
    return DashboardStats(**stats)


@router.get(
    "/{request_id}",
    response_model=RequestResponse,
    summary="Get a request",
)
async def get_request(
    request_id: UUID,
    current: CurrentActorDep,
    workflow: WorkflowServiceDep,
):
    request = await workflow.get(current.id, request_id)
    return RequestResponse.from_state(request)


@router.put(
    "/{request_id}/approve",
    response_model=RequestResponse,
    summary="Approve the current stage",
    description="""
    Approve the request's current stage and advance to the next one.

    The caller's effective role must be authorized for the *current* stage.
    Approving a later stage early, or re-approving, is rejected.
    """,
)
async def approve_request(
    request_id: UUID,
    body: ApproveRequestBody,
    current: CurrentActorDep,
    workflow: WorkflowServiceDep,
):
    request = await workflow.approve(current.id, request_id, comments=body.comments)
    return RequestResponse.from_state(request)


@router.put(
    "/{request_id}/decline",
    response_model=RequestResponse,
    summary="Decline a request",
)
async def decline_request(
    request_id: UUID,
    body: DeclineRequestBody,
    current: CurrentActorDep,
    workflow: WorkflowServiceDep,
):
    """Decline the request. Terminal: no further transitions are accepted."""
    request = await workflow.decline(current.id, request_id, reason=body.reason)
    return RequestResponse.from_state(request)


@router.put(
    "/{request_id}/assign",
    response_model=RequestResponse,
    summary="Assign resources and dispatch",
)
async def assign_request(
    request_id: UUID,
    body: AssignRequestBody,
    current: CurrentActorDep,
    workflow: WorkflowServiceDep,
):
    """Dispatch a fully approved request. `urgent` adds an urgent notification."""
    request = await workflow.assign(
        current.id,
        request_id,
        AssignmentInput(
            operator_name=body.operator_name,
            resource_ref=body.resource_ref,
            operator_id=body.operator_id,
            resource_type=body.resource_type,
            expected_return=body.expected_return,
            urgent=body.urgent,
        ),
    )
    return RequestResponse.from_state(request)
