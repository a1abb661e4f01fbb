"""
Tests for the Workflow Service - orchestration, retries and concurrency.

These tests verify:
1. Commands load, transition, save and then dispatch events
2. Concurrent transitions on one request: exactly one write wins
3. Only transient storage errors are retried, and only a bounded number of times
4. Logger and notifier failures never fail the command
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from docstream.models import (
    ActivityAction,
    NotificationType,
    OverallStatus,
    Role,
    RoutingAttribute,
    Stage,
)
from docstream.services import (
    AlreadyTerminal,
    AssignmentInput,
    AuthorizationError,
    ConcurrentModification,
    IdentityRecord,
    RequestNotFound,
    StageMismatch,
    StorageUnavailable,
    ValidationError,
    WorkflowService,
)

from .fakes import (
    FailingActivityLogger,
    FakeIdentityDirectory,
    InMemoryRequestStore,
    RecordingActivityLogger,
    RecordingNotifier,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def people() -> dict[Role, IdentityRecord]:
    return {
        role: IdentityRecord(id=uuid4(), name=f"{role.value} person", role=role)
        for role in Role
    }


@pytest.fixture
def store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


@pytest.fixture
def activity_logger() -> RecordingActivityLogger:
    return RecordingActivityLogger()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def directory(people) -> FakeIdentityDirectory:
    return FakeIdentityDirectory(list(people.values()))


@pytest.fixture
def make_service(store, directory, activity_logger, notifier, clock):
    def _make(**overrides) -> WorkflowService:
        options = dict(
            store=store,
            identities=directory,
            activity_logger=activity_logger,
            notifier=notifier,
            clock=clock,
            max_attempts=3,
            retry_delay=0,
        )
        options.update(overrides)
        return WorkflowService(**options)

    return _make


@pytest.fixture
def service(make_service) -> WorkflowService:
    return make_service()


# =============================================================================
# TEST: COMMANDS
# =============================================================================


class TestCommands:
    async def test_submit_stores_request(self, service, store, people, activity_logger):
        request = await service.submit(
            people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN, {"purpose": "Audit"}
        )

        assert request.request_number == "REQ-0001"
        assert request.version == 1
        assert store.requests[request.id].current_stage == Stage.SUPERVISOR
        assert [e.action for e in activity_logger.events] == [ActivityAction.CREATED_REQUEST]

    async def test_request_numbers_are_sequential(self, service, people):
        first = await service.submit(people[Role.STAFF].id, "within_town")
        second = await service.submit(people[Role.STAFF].id, "out_of_town")

        assert (first.request_number, second.request_number) == ("REQ-0001", "REQ-0002")

    async def test_full_lifecycle(self, service, store, people, activity_logger, notifier):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        request = await service.approve(people[Role.SUPERVISOR].id, request.id, "ok")
        assert request.version == 2
        request = await service.approve(people[Role.VEHICLE_OFFICER].id, request.id)
        assert request.overall_status == OverallStatus.APPROVED

        request = await service.assign(
            people[Role.VEHICLE_OFFICER].id,
            request.id,
            AssignmentInput(operator_name="Kojo", resource_ref="GT-1", urgent=True),
        )

        assert request.overall_status == OverallStatus.DISPATCHED
        assert store.requests[request.id].version == 4
        assert [e.action for e in activity_logger.events] == [
            ActivityAction.CREATED_REQUEST,
            ActivityAction.APPROVED_REQUEST,
            ActivityAction.APPROVED_REQUEST,
            ActivityAction.DISPATCHED_REQUEST,
        ]
        assert [n.notification_type for n in notifier.notifications] == [
            NotificationType.APPROVED,
            NotificationType.APPROVED,
            NotificationType.DISPATCHED,
            NotificationType.URGENT_DISPATCH,
        ]
        assert all(n.recipient_id == people[Role.STAFF].id for n in notifier.notifications)

    async def test_decline_then_approve_is_terminal(self, service, people):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.OUT_OF_TOWN)
        await service.approve(people[Role.SUPERVISOR].id, request.id)
        await service.decline(people[Role.CORPORATE_SERVICES].id, request.id, "no vehicles")

        with pytest.raises(AlreadyTerminal):
            await service.approve(people[Role.CORPORATE_SERVICES].id, request.id)

    async def test_delegated_role_is_used(self, service, directory, people, clock):
        stand_in = directory.add(
            IdentityRecord(
                id=uuid4(),
                name="Stand-in",
                role=Role.STAFF,
                acting_role=Role.SUPERVISOR,
                acting_starts_at=clock.now - timedelta(hours=1),
                acting_ends_at=clock.now + timedelta(hours=1),
            )
        )
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        request = await service.approve(stand_in.id, request.id)

        assert request.current_stage == Stage.VEHICLE_OFFICER

    async def test_expired_delegation_cannot_approve(self, service, directory, people, clock):
        stand_in = directory.add(
            IdentityRecord(
                id=uuid4(),
                name="Stand-in",
                role=Role.STAFF,
                acting_role=Role.SUPERVISOR,
                acting_starts_at=clock.now - timedelta(days=2),
                acting_ends_at=clock.now - timedelta(days=1),
            )
        )
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        with pytest.raises(AuthorizationError):
            await service.approve(stand_in.id, request.id)

    async def test_unknown_actor_is_rejected(self, service, people):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        with pytest.raises(AuthorizationError):
            await service.approve(uuid4(), request.id)

    async def test_unknown_request(self, service, people, store):
        with pytest.raises(RequestNotFound):
            await service.approve(people[Role.SUPERVISOR].id, uuid4())
        assert store.save_calls == 0

    async def test_get_applies_visibility(self, service, people):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        assert (await service.get(people[Role.STAFF].id, request.id)).id == request.id
        assert (await service.get(people[Role.SUPERVISOR].id, request.id)).id == request.id
        with pytest.raises(AuthorizationError):
            await service.get(people[Role.VEHICLE_OFFICER].id, request.id)


# =============================================================================
# TEST: CONCURRENCY
# =============================================================================


class TestConcurrency:
    async def test_one_concurrent_approval_wins(self, make_service, store, people):
        """Two approvals loaded from the same version: one saves, one conflicts."""
        service = make_service(max_attempts=1)
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        store.load_barrier = asyncio.Barrier(2)

        results = await asyncio.gather(
            service.approve(people[Role.SUPERVISOR].id, request.id),
            service.approve(people[Role.ROM_SUPERVISOR].id, request.id),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ConcurrentModification)

        stored = store.requests[request.id]
        assert stored.version == 2
        assert stored.current_stage == Stage.VEHICLE_OFFICER
        assert stored.approval_for(Stage.SUPERVISOR).approver_id == successes[0].approval_for(
            Stage.SUPERVISOR
        ).approver_id

    async def test_retried_loser_sees_new_state(self, make_service, store, people):
        """With retries, the losing approval reloads and the stage is already approved."""
        service = make_service(max_attempts=3)
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        store.load_barrier = asyncio.Barrier(2)

        async def approve(role):
            try:
                return await service.approve(people[role].id, request.id)
            finally:
                store.load_barrier = None

        results = await asyncio.gather(
            approve(Role.SUPERVISOR),
            approve(Role.ROM_SUPERVISOR),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], StageMismatch)
        assert store.requests[request.id].version == 2

    async def test_different_requests_proceed_in_parallel(self, service, store, people):
        first = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        second = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        results = await asyncio.gather(
            service.approve(people[Role.SUPERVISOR].id, first.id),
            service.approve(people[Role.SUPERVISOR].id, second.id),
        )

        assert all(r.current_stage == Stage.VEHICLE_OFFICER for r in results)


# =============================================================================
# TEST: RETRIES
# =============================================================================


class TestRetries:
    async def test_concurrent_modification_is_retried(self, service, store, people, activity_logger):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        store.save_errors = [ConcurrentModification("stale")]

        request = await service.approve(people[Role.SUPERVISOR].id, request.id)

        assert request.current_stage == Stage.VEHICLE_OFFICER
        assert store.save_calls == 2
        # Events are dispatched once, for the attempt that saved
        assert [e.action for e in activity_logger.events].count(ActivityAction.APPROVED_REQUEST) == 1

    async def test_storage_unavailable_is_retried(self, service, store, people):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        store.save_errors = [StorageUnavailable("down"), StorageUnavailable("still down")]

        request = await service.approve(people[Role.SUPERVISOR].id, request.id)

        assert request.version == 2
        assert store.save_calls == 3

    async def test_retries_are_bounded(self, service, store, people, activity_logger):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        store.save_errors = [StorageUnavailable("down")] * 3

        with pytest.raises(StorageUnavailable):
            await service.approve(people[Role.SUPERVISOR].id, request.id)

        assert store.save_calls == 3
        assert store.requests[request.id].version == 1
        assert ActivityAction.APPROVED_REQUEST not in [e.action for e in activity_logger.events]

    async def test_workflow_errors_are_not_retried(self, service, store, people):
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        with pytest.raises(ValidationError):
            await service.decline(people[Role.SUPERVISOR].id, request.id, "  ")
        with pytest.raises(StageMismatch):
            await service.approve(people[Role.VEHICLE_OFFICER].id, request.id)

        assert store.save_calls == 0


# =============================================================================
# TEST: COLLABORATOR FAILURES
# =============================================================================


class TestCollaboratorFailures:
    async def test_logger_failure_does_not_fail_transition(self, make_service, store, people, notifier):
        failing = FailingActivityLogger()
        service = make_service(activity_logger=failing)

        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)
        request = await service.approve(people[Role.SUPERVISOR].id, request.id)

        assert failing.calls == 2
        assert store.requests[request.id].current_stage == Stage.VEHICLE_OFFICER
        # Notifications still go out after the logger failed
        assert len(notifier.notifications) == 1

    async def test_notifier_failure_does_not_fail_transition(self, make_service, store, people):
        class BrokenNotifier:
            async def enqueue(self, notification):
                raise ConnectionError("smtp unreachable")

        service = make_service(notifier=BrokenNotifier())
        request = await service.submit(people[Role.STAFF].id, RoutingAttribute.WITHIN_TOWN)

        request = await service.decline(people[Role.SUPERVISOR].id, request.id, "Not this week")

        assert store.requests[request.id].overall_status == OverallStatus.DECLINED
        # The notice is persisted on the request regardless of delivery
        assert store.requests[request.id].notifications[-1].notification_type == NotificationType.DECLINED
