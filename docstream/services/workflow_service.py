"""
Workflow Service: orchestration around the approval engine.

Each command runs the same attempt:
1. Resolve the actor's effective role (once per attempt)
2. Load the request and the version it was read at
3. Apply the pure engine transition
4. Save with compare-and-swap on that version

Only transient storage failures are retried. Events are forwarded to the
activity logger and notifier after the save succeeds; their failures are
logged and never reach the caller.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..models import Permission, RoutingAttribute, utcnow
from .activity_log import ActivityLogger, SqlActivityLogger
from .approval_engine import (
    ActivityEvent,
    Actor,
    ApprovalEngine,
    AssignmentInput,
    NotificationEvent,
    RequestState,
    TransitionResult,
)
from .errors import AuthorizationError, ConcurrentModification, StorageUnavailable
from .identities import IdentityDirectory, SqlIdentityDirectory
from .notifications import LoggingNotifier, Notifier
from .repository import RequestStore, SqlRequestStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (ConcurrentModification, StorageUnavailable)

Event = ActivityEvent | NotificationEvent


class WorkflowService:
    """Applies submit/approve/decline/assign commands to stored requests."""

    def __init__(
        self,
        store: RequestStore,
        identities: IdentityDirectory,
        activity_logger: ActivityLogger,
        notifier: Notifier,
        engine: ApprovalEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 3,
        retry_delay: float = 0.05,
    ):
        self.store = store
        self.identities = identities
        self.activity_logger = activity_logger
        self.notifier = notifier
        self.engine = engine or ApprovalEngine()
        self.clock = clock
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def submit(
        self,
        actor_id: UUID,
        routing: RoutingAttribute | str,
        details: Mapping[str, Any] | None = None,
    ) -> RequestState:
        """Create a request at its first stage."""

        async def attempt() -> tuple[RequestState, Sequence[Event]]:
            now = self.clock()
            actor = await self.identities.resolve_actor(actor_id, now)
            if not self.engine.permissions.has_permission(actor.role, Permission.CREATE_REQUEST):
                raise AuthorizationError(f"Role '{actor.role.value}' may not create requests")

            number = await self.store.next_request_number()
            result = self.engine.submit(actor, routing, details, number, now)
            version = await self.store.insert(result.request)
            return replace(result.request, version=version), result.events

        request = await self._run("submit", attempt)
        logger.info(f"Submitted request {request.request_number} ({request.routing.value})")
        return request

    async def approve(
        self,
        actor_id: UUID,
        request_id: UUID,
        comments: str | None = None,
    ) -> RequestState:
        """Approve the request's current stage."""
        return await self._transition(
            "approve",
            actor_id,
            request_id,
            lambda request, actor, now: self.engine.approve(request, actor, now, comments),
        )

    async def decline(
        self,
        actor_id: UUID,
        request_id: UUID,
        reason: str,
    ) -> RequestState:
        """Decline the request with a reason."""
        return await self._transition(
            "decline",
            actor_id,
            request_id,
            lambda request, actor, now: self.engine.decline(request, actor, reason, now),
        )

    async def assign(
        self,
        actor_id: UUID,
        request_id: UUID,
        payload: AssignmentInput,
    ) -> RequestState:
        """Assign resources to a fully approved request and dispatch it."""
        return await self._transition(
            "assign",
            actor_id,
            request_id,
            lambda request, actor, now: self.engine.assign(request, actor, payload, now),
        )

    async def get(self, actor_id: UUID, request_id: UUID) -> RequestState:
        """Load a request the actor is allowed to see."""

        async def attempt() -> tuple[RequestState, Sequence[Event]]:
            actor = await self.identities.resolve_actor(actor_id, self.clock())
            request, _ = await self.store.load(request_id)
            if not self.engine.can_view(request, actor):
                raise AuthorizationError(
                    f"Request {request.request_number} is not visible to role '{actor.role.value}'"
                )
            return request, ()

        return await self._run("get", attempt)

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    async def _transition(
        self,
        operation: str,
        actor_id: UUID,
        request_id: UUID,
        apply: Callable[[RequestState, Actor, datetime], TransitionResult],
    ) -> RequestState:
        async def attempt() -> tuple[RequestState, Sequence[Event]]:
            now = self.clock()
            actor = await self.identities.resolve_actor(actor_id, now)
            request, version = await self.store.load(request_id)
            result = apply(request, actor, now)
            new_version = await self.store.save(result.request, expected_version=version)
            return replace(result.request, version=new_version), result.events

        request = await self._run(operation, attempt)
        logger.info(
            f"{operation} on {request.request_number}: "
            f"status={request.overall_status.value}, "
            f"stage={request.current_stage.value if request.current_stage else None}"
        )
        return request

    async def _run(
        self,
        operation: str,
        attempt: Callable[[], Awaitable[tuple[T, Sequence[Event]]]],
    ) -> T:
        """Run ``attempt`` with bounded retries on transient storage errors."""
        number = 0
        while True:
            number += 1
            try:
                result, events = await attempt()
            except RETRYABLE_ERRORS as e:
                if number >= self.max_attempts:
                    logger.warning(
                        f"{operation} failed after {number} attempt(s): {e.code}"
                    )
                    raise
                logger.info(f"{operation} attempt {number} hit {e.code}, retrying")
                await asyncio.sleep(self.retry_delay * number)
                continue

            await self._dispatch(events)
            return result

    async def _dispatch(self, events: Sequence[Event]) -> None:
        for event in events:
            try:
                if isinstance(event, ActivityEvent):
                    await self.activity_logger.record(event)
                else:
                    await self.notifier.enqueue(event)
            except Exception:
                logger.exception(f"Failed to dispatch {type(event).__name__}")


def build_workflow_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> WorkflowService:
    """Wire the SQL-backed collaborators from settings."""
    settings = settings or get_settings()
    return WorkflowService(
        store=SqlRequestStore(session_factory),
        identities=SqlIdentityDirectory(session_factory),
        activity_logger=SqlActivityLogger(
            session_factory, chain_enabled=settings.audit_chain_enabled
        ),
        notifier=LoggingNotifier(),
        max_attempts=settings.workflow_max_attempts,
        retry_delay=settings.workflow_retry_delay_seconds,
    )
