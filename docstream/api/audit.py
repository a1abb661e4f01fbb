"""API routes for the activity log."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import ActivityLogViewerDep, SessionDep
from ..models import ActivityAction
from ..schemas import ActivityLogEntry, ActivityLogResponse, ChainVerificationResult
from ..services import ActivityLogService

router = APIRouter(prefix="/activity-log", tags=["activity-log"])


def get_activity_log_service(session: SessionDep) -> ActivityLogService:
    return ActivityLogService(session)


ActivityLogServiceDep = Annotated[ActivityLogService, Depends(get_activity_log_service)]


@router.get("", response_model=ActivityLogResponse)
async def get_activity_log(
    current: ActivityLogViewerDep,
    service: ActivityLogServiceDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor_id: UUID | None = None,
    action: ActivityAction | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    """Query the activity log with filters. Requires view_activity_log."""
    offset = (page - 1) * page_size

    entries, total = await service.get_activity_log(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        limit=page_size,
        offset=offset,
    )

    return ActivityLogResponse.create(
        items=[ActivityLogEntry.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/verify-chain", response_model=ChainVerificationResult)
async def verify_chain(
    current: ActivityLogViewerDep,
    service: ActivityLogServiceDep,
):
    """Recompute the activity log hash chain and report the first break."""
    result = await service.verify_chain()
    return ChainVerificationResult(**result)
