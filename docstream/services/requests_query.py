"""Read side for requests: visibility-filtered listing and dashboard statistics."""

from datetime import datetime, time, timezone
from typing import Any, Sequence

from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.permissions import DEFAULT_PERMISSIONS, PermissionTable
from ..models import OverallStatus, Permission, RoutingAttribute, WorkflowRequest, utcnow
from .approval_engine import Actor, RequestState
from .repository import to_request_state
from .stage_graph import DEFAULT_STAGE_GRAPH, StageGraph


class RequestQueryService:
    """Queries over stored requests, scoped to what the actor may see."""

    def __init__(
        self,
        session: AsyncSession,
        stage_graph: StageGraph = DEFAULT_STAGE_GRAPH,
        permissions: PermissionTable = DEFAULT_PERMISSIONS,
    ):
        self.session = session
        self.stage_graph = stage_graph
        self.permissions = permissions

    def visibility_clause(self, actor: Actor) -> ColumnElement[bool] | None:
        """SQL form of ApprovalEngine.can_view; None means unrestricted."""
        if self.permissions.has_permission(actor.role, Permission.VIEW_ALL_REQUESTS):
            return None

        conditions = [
            WorkflowRequest.requester_id == actor.id,
            WorkflowRequest.declined_by == actor.id,
        ]

        stages = self.stage_graph.stages_for_role(actor.role)
        if stages:
            conditions.append(WorkflowRequest.current_stage.in_(sorted(stages)))
        if self.permissions.has_permission(actor.role, Permission.ASSIGN_RESOURCE):
            conditions.append(WorkflowRequest.overall_status == OverallStatus.APPROVED)

        return or_(*conditions)

    async def list_visible(
        self,
        actor: Actor,
        status: OverallStatus | None = None,
        routing: RoutingAttribute | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[RequestState], int]:
        """List requests newest first with the total matching count."""
        query = select(WorkflowRequest)

        visibility = self.visibility_clause(actor)
        if visibility is not None:
            query = query.where(visibility)
        if status:
            query = query.where(WorkflowRequest.overall_status == status)
        if routing:
            query = query.where(WorkflowRequest.routing == routing)
        if created_after:
            query = query.where(WorkflowRequest.created_at >= created_after)
        if created_before:
            query = query.where(WorkflowRequest.created_at <= created_before)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        query = (
            query.options(
                selectinload(WorkflowRequest.approvals),
                selectinload(WorkflowRequest.notifications),
            )
            .order_by(WorkflowRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(query)

        return [to_request_state(row) for row in result.scalars().all()], total

    async def dashboard_stats(
        self,
        actor: Actor,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Counts by status (today and overall) and by routing."""
        now = now or utcnow()
        start_of_day = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        visibility = self.visibility_clause(actor)

        async def counts(column, *filters) -> dict[str, int]:
            query = select(column, func.count()).group_by(column)
            if visibility is not None:
                query = query.where(visibility)
            for condition in filters:
                query = query.where(condition)
            rows = (await self.session.execute(query)).all()
            return {value.value: count for value, count in rows}

        def by_status(found: dict[str, int]) -> dict[str, int]:
            return {s.value: found.get(s.value, 0) for s in OverallStatus}

        today = await counts(
            WorkflowRequest.overall_status, WorkflowRequest.created_at >= start_of_day
        )
        totals = await counts(WorkflowRequest.overall_status)
        routing = await counts(WorkflowRequest.routing)

        return {
            "today": by_status(today),
            "totals": by_status(totals),
            "by_routing": {r.value: routing.get(r.value, 0) for r in RoutingAttribute},
            "total_requests": sum(totals.values()),
            "generated_at": now,
        }
