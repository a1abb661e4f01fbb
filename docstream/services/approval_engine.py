"""
Approval Engine: the request state machine.

This module is pure:
- No I/O, no clock, no session; callers pass ``now`` and the actor
- Every transition returns a new RequestState plus the events it emits
- A failed transition raises and leaves the input untouched

Stage advancement is strictly sequential. ``current_stage`` is always the
first stage whose record is not approved, or None once every stage is.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID, uuid4

from ..core.permissions import DEFAULT_PERMISSIONS, PermissionTable
from ..models import (
    ActivityAction,
    ApprovalStatus,
    NotificationType,
    OverallStatus,
    Permission,
    Role,
    RoutingAttribute,
    Stage,
)
from .errors import (
    AlreadyTerminal,
    AuthorizationError,
    IncompleteApprovals,
    StageMismatch,
    ValidationError,
)
from .stage_graph import DEFAULT_STAGE_GRAPH, StageGraph


TERMINAL_STATUSES = frozenset({OverallStatus.DECLINED, OverallStatus.DISPATCHED})


# =============================================================================
# AGGREGATE
# =============================================================================


@dataclass(frozen=True)
class Actor:
    """An identity resolved to its effective role for one transition."""
    id: UUID
    name: str
    role: Role


@dataclass(frozen=True)
class StageApproval:
    """Approval record for one stage; written once."""
    stage: Stage
    status: ApprovalStatus = ApprovalStatus.PENDING
    approver_id: UUID | None = None
    approved_at: datetime | None = None
    comments: str | None = None


@dataclass(frozen=True)
class DeclineRecord:
    actor_id: UUID
    role: Role
    reason: str
    declined_at: datetime


@dataclass(frozen=True)
class AssignmentInput:
    """Payload for dispatching a fully approved request."""
    operator_name: str
    resource_ref: str
    operator_id: str | None = None
    resource_type: str | None = None
    expected_return: str | None = None
    urgent: bool = False


@dataclass(frozen=True)
class Assignment:
    """Resource/operator details recorded when a request is dispatched."""
    operator_name: str
    resource_ref: str
    assigned_by: UUID
    assigned_at: datetime
    operator_id: str | None = None
    resource_type: str | None = None
    expected_return: str | None = None
    urgent: bool = False

    def to_dict(self) -> dict:
        return {
            "operator_name": self.operator_name,
            "operator_id": self.operator_id,
            "resource_type": self.resource_type,
            "resource_ref": self.resource_ref,
            "expected_return": self.expected_return,
            "urgent": self.urgent,
            "assigned_by": str(self.assigned_by),
            "assigned_at": self.assigned_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Assignment":
        return cls(
            operator_name=data["operator_name"],
            resource_ref=data["resource_ref"],
            assigned_by=UUID(data["assigned_by"]),
            assigned_at=datetime.fromisoformat(data["assigned_at"]),
            operator_id=data.get("operator_id"),
            resource_type=data.get("resource_type"),
            expected_return=data.get("expected_return"),
            urgent=bool(data.get("urgent", False)),
        )


@dataclass(frozen=True)
class Notification:
    """Outbound notice appended to a request."""
    recipient_id: UUID
    message: str
    notification_type: NotificationType
    created_at: datetime


@dataclass(frozen=True)
class RequestState:
    """In-memory aggregate for one request.

    ``version`` is the storage concurrency token; 0 means not yet stored.
    """
    id: UUID
    request_number: str
    requester_id: UUID
    routing: RoutingAttribute
    current_stage: Stage | None
    overall_status: OverallStatus
    approvals: tuple[StageApproval, ...]
    created_at: datetime
    details: Mapping[str, Any] = field(default_factory=dict)
    decline: DeclineRecord | None = None
    assignment: Assignment | None = None
    notifications: tuple[Notification, ...] = ()
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in TERMINAL_STATUSES

    @property
    def all_approved(self) -> bool:
        return all(a.status == ApprovalStatus.APPROVED for a in self.approvals)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(a.stage for a in self.approvals)

    def approval_for(self, stage: Stage) -> StageApproval:
        for approval in self.approvals:
            if approval.stage == stage:
                return approval
        raise KeyError(stage)


def first_pending_stage(approvals: tuple[StageApproval, ...]) -> Stage | None:
    """First stage in sequence order whose record is not approved."""
    for approval in approvals:
        if approval.status != ApprovalStatus.APPROVED:
            return approval.stage
    return None


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class ActivityEvent:
    """Audit log entry emitted by a transition."""
    actor_id: UUID | None
    actor_name: str
    role: str
    action: ActivityAction
    description: str
    resource_id: UUID | None
    timestamp: datetime
    resource_type: str = "request"
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationEvent:
    """Notification handed to the notifier after the state change is saved."""
    request_id: UUID
    recipient_id: UUID
    message: str
    notification_type: NotificationType
    created_at: datetime


@dataclass(frozen=True)
class TransitionResult:
    request: RequestState
    events: tuple[ActivityEvent | NotificationEvent, ...]

    @property
    def activity_events(self) -> tuple[ActivityEvent, ...]:
        return tuple(e for e in self.events if isinstance(e, ActivityEvent))

    @property
    def notification_events(self) -> tuple[NotificationEvent, ...]:
        return tuple(e for e in self.events if isinstance(e, NotificationEvent))


# =============================================================================
# ENGINE
# =============================================================================


class ApprovalEngine:
    """
    Applies submit/approve/decline/assign to a RequestState.

    The stage graph and permission table are immutable and shared; the
    engine holds no other state.
    """

    def __init__(
        self,
        stage_graph: StageGraph = DEFAULT_STAGE_GRAPH,
        permissions: PermissionTable = DEFAULT_PERMISSIONS,
    ):
        self.stage_graph = stage_graph
        self.permissions = permissions

    def submit(
        self,
        actor: Actor,
        routing: RoutingAttribute | str | None,
        details: Mapping[str, Any] | None,
        request_number: str,
        now: datetime,
        request_id: UUID | None = None,
    ) -> TransitionResult:
        """Create a request at its first stage with every record pending."""
        if actor is None or actor.id is None:
            raise ValidationError("A requesting identity is required")
        if not routing:
            raise ValidationError("A routing attribute is required")
        if details is None:
            details = {}
        if not isinstance(details, Mapping):
            raise ValidationError("Request details must be a mapping")
        if not request_number:
            raise ValidationError("A request number is required")

        stages = self.stage_graph.stages_for(routing)
        approvals = tuple(StageApproval(stage=stage) for stage in stages)

        request = RequestState(
            id=request_id or uuid4(),
            request_number=request_number,
            requester_id=actor.id,
            routing=RoutingAttribute(routing),
            current_stage=stages[0],
            overall_status=OverallStatus.PENDING,
            approvals=approvals,
            created_at=now,
            details=dict(details),
        )

        event = self._activity(
            actor,
            ActivityAction.CREATED_REQUEST,
            f"Created request {request_number}",
            request,
            now,
            {"routing": request.routing.value, "stages": [s.value for s in stages]},
        )
        return TransitionResult(request=request, events=(event,))

    def approve(
        self,
        request: RequestState,
        actor: Actor,
        now: datetime,
        comments: str | None = None,
    ) -> TransitionResult:
        """Approve the current stage and advance to the next pending one."""
        self._ensure_not_terminal(request)
        if not self.permissions.has_permission(actor.role, Permission.APPROVE_STAGE):
            raise AuthorizationError(f"Role '{actor.role.value}' may not approve requests")

        stage = request.current_stage
        if stage is None:
            raise StageMismatch(
                f"Request {request.request_number} has no stage awaiting approval"
            )
        self._ensure_stage_role(request, stage, actor.role)

        approvals = tuple(
            replace(
                a,
                status=ApprovalStatus.APPROVED,
                approver_id=actor.id,
                approved_at=now,
                comments=comments,
            )
            if a.stage == stage
            else a
            for a in request.approvals
        )
        next_stage = first_pending_stage(approvals)
        status = OverallStatus.APPROVED if next_stage is None else OverallStatus.PENDING

        notice = Notification(
            recipient_id=request.requester_id,
            message=f"Your request {request.request_number} has been approved by {actor.name}",
            notification_type=NotificationType.APPROVED,
            created_at=now,
        )
        updated = replace(
            request,
            approvals=approvals,
            current_stage=next_stage,
            overall_status=status,
            notifications=request.notifications + (notice,),
        )

        event = self._activity(
            actor,
            ActivityAction.APPROVED_REQUEST,
            f"Approved request {request.request_number} at stage {stage.value}",
            updated,
            now,
            {
                "stage": stage.value,
                "next_stage": next_stage.value if next_stage else None,
                "overall_status": status.value,
            },
        )
        return TransitionResult(
            request=updated,
            events=(event, self._notification_event(updated, notice)),
        )

    def decline(
        self,
        request: RequestState,
        actor: Actor,
        reason: str | None,
        now: datetime,
    ) -> TransitionResult:
        """Decline the request; terminal. The current stage is left as it was."""
        self._ensure_not_terminal(request)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to decline a request")
        if not self.permissions.has_permission(actor.role, Permission.DECLINE_REQUEST):
            raise AuthorizationError(f"Role '{actor.role.value}' may not decline requests")

        stage = request.current_stage
        approvals = tuple(
            replace(
                a,
                status=ApprovalStatus.DECLINED,
                approver_id=actor.id,
                approved_at=now,
                comments=reason,
            )
            if a.stage == stage
            else a
            for a in request.approvals
        )
        notice = Notification(
            recipient_id=request.requester_id,
            message=(
                f"Your request {request.request_number} has been declined. "
                f"Reason: {reason}"
            ),
            notification_type=NotificationType.DECLINED,
            created_at=now,
        )
        updated = replace(
            request,
            approvals=approvals,
            overall_status=OverallStatus.DECLINED,
            decline=DeclineRecord(
                actor_id=actor.id,
                role=actor.role,
                reason=reason,
                declined_at=now,
            ),
            notifications=request.notifications + (notice,),
        )

        event = self._activity(
            actor,
            ActivityAction.DECLINED_REQUEST,
            f"Declined request {request.request_number}",
            updated,
            now,
            {"stage": stage.value if stage else None, "reason": reason},
        )
        return TransitionResult(
            request=updated,
            events=(event, self._notification_event(updated, notice)),
        )

    def assign(
        self,
        request: RequestState,
        actor: Actor,
        payload: AssignmentInput,
        now: datetime,
    ) -> TransitionResult:
        """Record the assignment and dispatch a fully approved request; terminal."""
        self._ensure_not_terminal(request)
        if not self.permissions.has_permission(actor.role, Permission.ASSIGN_RESOURCE):
            raise AuthorizationError(f"Role '{actor.role.value}' may not assign resources")
        if not request.all_approved:
            pending = [a.stage.value for a in request.approvals if a.status != ApprovalStatus.APPROVED]
            raise IncompleteApprovals(
                f"Request {request.request_number} still awaits: {', '.join(pending)}"
            )
        if not (payload.operator_name or "").strip():
            raise ValidationError("An operator name is required")
        if not (payload.resource_ref or "").strip():
            raise ValidationError("A resource reference is required")

        expected_return = payload.expected_return or request.details.get("date_of_return")
        assignment = Assignment(
            operator_name=payload.operator_name.strip(),
            resource_ref=payload.resource_ref.strip(),
            assigned_by=actor.id,
            assigned_at=now,
            operator_id=payload.operator_id,
            resource_type=payload.resource_type,
            expected_return=str(expected_return) if expected_return else None,
            urgent=payload.urgent,
        )

        notices = [
            Notification(
                recipient_id=request.requester_id,
                message=(
                    f"Your request {request.request_number} has been dispatched. "
                    f"Operator: {assignment.operator_name}, resource: {assignment.resource_ref}"
                ),
                notification_type=NotificationType.DISPATCHED,
                created_at=now,
            )
        ]
        if payload.urgent:
            notices.append(
                Notification(
                    recipient_id=request.requester_id,
                    message=(
                        f"URGENT: Your request {request.request_number} is on its way! "
                        f"Operator: {assignment.operator_name}"
                    ),
                    notification_type=NotificationType.URGENT_DISPATCH,
                    created_at=now,
                )
            )

        updated = replace(
            request,
            overall_status=OverallStatus.DISPATCHED,
            assignment=assignment,
            notifications=request.notifications + tuple(notices),
        )

        event = self._activity(
            actor,
            ActivityAction.DISPATCHED_REQUEST,
            f"Dispatched request {request.request_number}",
            updated,
            now,
            assignment.to_dict(),
        )
        return TransitionResult(
            request=updated,
            events=(event, *(self._notification_event(updated, n) for n in notices)),
        )

    def can_view(self, request: RequestState, actor: Actor) -> bool:
        """Read-side visibility for a single request."""
        if self.permissions.has_permission(actor.role, Permission.VIEW_ALL_REQUESTS):
            return True
        if request.requester_id == actor.id:
            return True
        if request.decline is not None and request.decline.actor_id == actor.id:
            return True
        # Declined requests keep their current stage
        if (
            request.current_stage is not None
            and actor.role in self.stage_graph.authorized_roles(request.current_stage)
        ):
            return True
        return (
            request.overall_status == OverallStatus.APPROVED
            and self.permissions.has_permission(actor.role, Permission.ASSIGN_RESOURCE)
        )

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _ensure_not_terminal(self, request: RequestState) -> None:
        if request.is_terminal:
            raise AlreadyTerminal(
                f"Request {request.request_number} is {request.overall_status.value}"
            )

    def _ensure_stage_role(self, request: RequestState, stage: Stage, role: Role) -> None:
        if role in self.stage_graph.authorized_roles(stage):
            return
        # A role that belongs to another stage of this sequence is out of order
        if any(role in self.stage_graph.authorized_roles(s) for s in request.stages):
            raise StageMismatch(
                f"Request {request.request_number} is awaiting {stage.value} approval"
            )
        raise AuthorizationError(
            f"Role '{role.value}' may not approve the {stage.value} stage"
        )

    def _activity(
        self,
        actor: Actor,
        action: ActivityAction,
        description: str,
        request: RequestState,
        now: datetime,
        metadata: Mapping[str, Any],
    ) -> ActivityEvent:
        return ActivityEvent(
            actor_id=actor.id,
            actor_name=actor.name,
            role=actor.role.value,
            action=action,
            description=description,
            resource_id=request.id,
            timestamp=now,
            metadata={"request_number": request.request_number, **metadata},
        )

    def _notification_event(
        self, request: RequestState, notice: Notification
    ) -> NotificationEvent:
        return NotificationEvent(
            request_id=request.id,
            recipient_id=notice.recipient_id,
            message=notice.message,
            notification_type=notice.notification_type,
            created_at=notice.created_at,
        )
