"""
Request storage with optimistic concurrency.

Each call runs in its own short transaction. ``save`` is a compare-and-swap
on the ``version`` column: the row is updated only if its version still
equals the one the caller loaded, so at most one concurrent writer wins.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Protocol
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..models import (
    RequestNotification,
    StageApprovalRecord,
    WorkflowRequest,
    as_utc,
    utcnow,
)
from .approval_engine import (
    Assignment,
    DeclineRecord,
    Notification,
    RequestState,
    StageApproval,
)
from .errors import ConcurrentModification, RequestNotFound, StorageUnavailable

logger = logging.getLogger(__name__)

REQUEST_NUMBER_PREFIX = "REQ"


class RequestStore(Protocol):
    """Storage collaborator consumed by the workflow service."""

    async def next_request_number(self) -> str: ...

    async def insert(self, request: RequestState) -> int: ...

    async def load(self, request_id: UUID) -> tuple[RequestState, int]: ...

    async def save(self, request: RequestState, expected_version: int) -> int: ...


def format_request_number(sequence: int) -> str:
    return f"{REQUEST_NUMBER_PREFIX}-{sequence:04d}"


@contextmanager
def storage_errors(subject: str = "storage") -> Iterator[None]:
    """Translate driver failures into workflow errors."""
    try:
        yield
    except IntegrityError as e:
        logger.warning(f"Integrity conflict on {subject}: {e.orig}")
        raise ConcurrentModification(
            f"Concurrent write conflict on {subject}"
        ) from e
    except (OperationalError, InterfaceError) as e:
        logger.error(f"Storage unavailable while accessing {subject}: {e}")
        raise StorageUnavailable("Storage is unavailable") from e


class SqlRequestStore:
    """RequestStore backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def next_request_number(self) -> str:
        """Next sequential human-readable number (REQ-0001, REQ-0002, ...).

        Two submissions may draw the same number; the unique constraint
        rejects the second insert as a concurrent modification.
        """
        with storage_errors("request numbering"):
            async with self._session_factory() as session:
                count = await session.scalar(
                    select(func.count()).select_from(WorkflowRequest)
                )
        return format_request_number((count or 0) + 1)

    async def insert(self, request: RequestState) -> int:
        """Store a newly submitted request. Returns its first version."""
        version = 1
        with storage_errors(f"request {request.id}"):
            async with self._session_factory() as session:
                async with session.begin():
                    row = WorkflowRequest(
                        id=request.id,
                        request_number=request.request_number,
                        requester_id=request.requester_id,
                        routing=request.routing,
                        current_stage=request.current_stage,
                        overall_status=request.overall_status,
                        details=dict(request.details),
                        created_at=request.created_at,
                        version=version,
                    )
                    row.approvals = [
                        StageApprovalRecord(
                            position=position,
                            stage=approval.stage,
                            status=approval.status,
                            approver_id=approval.approver_id,
                            approved_at=approval.approved_at,
                            comments=approval.comments,
                        )
                        for position, approval in enumerate(request.approvals)
                    ]
                    row.notifications = [
                        self._notification_row(request.id, position, notice)
                        for position, notice in enumerate(request.notifications)
                    ]
                    session.add(row)

        logger.info(f"Stored request {request.request_number} ({request.id})")
        return version

    async def load(self, request_id: UUID) -> tuple[RequestState, int]:
        """Load a request and the version it was read at."""
        with storage_errors(f"request {request_id}"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(WorkflowRequest)
                    .options(
                        selectinload(WorkflowRequest.approvals),
                        selectinload(WorkflowRequest.notifications),
                    )
                    .where(WorkflowRequest.id == request_id)
                )
                row = result.scalar_one_or_none()
                if not row:
                    raise RequestNotFound(f"Request {request_id} not found")
                state = to_request_state(row)

        return state, state.version

    async def save(self, request: RequestState, expected_version: int) -> int:
        """
        Persist a transitioned request if nobody else saved it first.

        The request row, its stage records and any new notifications are
        written in one transaction. Returns the new version.
        """
        with storage_errors(f"request {request.id}"):
            async with self._session_factory() as session:
                async with session.begin():
                    decline = request.decline
                    result = await session.execute(
                        update(WorkflowRequest)
                        .where(
                            WorkflowRequest.id == request.id,
                            WorkflowRequest.version == expected_version,
                        )
                        .values(
                            current_stage=request.current_stage,
                            overall_status=request.overall_status,
                            declined_by=decline.actor_id if decline else None,
                            declined_role=decline.role if decline else None,
                            decline_reason=decline.reason if decline else None,
                            declined_at=decline.declined_at if decline else None,
                            assignment=request.assignment.to_dict() if request.assignment else None,
                            version=WorkflowRequest.version + 1,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )

                    if result.rowcount == 0:
                        exists = await session.scalar(
                            select(WorkflowRequest.id).where(WorkflowRequest.id == request.id)
                        )
                        if exists is None:
                            raise RequestNotFound(f"Request {request.id} not found")
                        raise ConcurrentModification(
                            f"Request {request.request_number} changed since version "
                            f"{expected_version}"
                        )

                    for approval in request.approvals:
                        await session.execute(
                            update(StageApprovalRecord)
                            .where(
                                StageApprovalRecord.request_id == request.id,
                                StageApprovalRecord.stage == approval.stage,
                            )
                            .values(
                                status=approval.status,
                                approver_id=approval.approver_id,
                                approved_at=approval.approved_at,
                                comments=approval.comments,
                            )
                            .execution_options(synchronize_session=False)
                        )

                    # Notifications are append-only; write the ones past the stored tail
                    stored = await session.scalar(
                        select(func.count())
                        .select_from(RequestNotification)
                        .where(RequestNotification.request_id == request.id)
                    ) or 0
                    for position in range(stored, len(request.notifications)):
                        session.add(
                            self._notification_row(
                                request.id, position, request.notifications[position]
                            )
                        )

        new_version = expected_version + 1
        logger.debug(
            f"Saved request {request.request_number} at version {new_version}"
        )
        return new_version

    @staticmethod
    def _notification_row(
        request_id: UUID, position: int, notice: Notification
    ) -> RequestNotification:
        return RequestNotification(
            request_id=request_id,
            position=position,
            recipient_id=notice.recipient_id,
            message=notice.message,
            notification_type=notice.notification_type,
            created_at=notice.created_at,
        )


def to_request_state(row: WorkflowRequest) -> RequestState:
    """Build the engine aggregate from a loaded row (relationships loaded)."""
    decline = None
    if row.declined_at is not None and row.declined_by is not None:
        decline = DeclineRecord(
            actor_id=row.declined_by,
            role=row.declined_role,
            reason=row.decline_reason or "",
            declined_at=as_utc(row.declined_at),
        )

    return RequestState(
        id=row.id,
        request_number=row.request_number,
        requester_id=row.requester_id,
        routing=row.routing,
        current_stage=row.current_stage,
        overall_status=row.overall_status,
        approvals=tuple(
            StageApproval(
                stage=a.stage,
                status=a.status,
                approver_id=a.approver_id,
                approved_at=as_utc(a.approved_at),
                comments=a.comments,
            )
            for a in row.approvals
        ),
        created_at=as_utc(row.created_at),
        details=dict(row.details or {}),
        decline=decline,
        assignment=Assignment.from_dict(row.assignment) if row.assignment else None,
        notifications=tuple(
            Notification(
                recipient_id=n.recipient_id,
                message=n.message,
                notification_type=n.notification_type,
                created_at=as_utc(n.created_at),
            )
            for n in row.notifications
        ),
        version=row.version,
    )
