"""In-memory collaborators for exercising the workflow service without a database."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from uuid import UUID

from docstream.services import (
    ActivityEvent,
    Actor,
    AuthorizationError,
    ConcurrentModification,
    IdentityRecord,
    NotificationEvent,
    RequestNotFound,
    RequestState,
)
from docstream.services.repository import format_request_number


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryRequestStore:
    """RequestStore with the same compare-and-swap contract as the SQL store.

    Every method yields to the event loop so concurrent commands interleave.
    ``load_barrier`` makes concurrent callers all finish loading before any
    of them continues; ``save_errors`` are raised by the next saves, in order.
    """

    def __init__(self):
        self.requests: dict[UUID, RequestState] = {}
        self.counter = 0
        self.save_calls = 0
        self.save_errors: list[Exception] = []
        self.load_barrier: asyncio.Barrier | None = None

    async def next_request_number(self) -> str:
        await asyncio.sleep(0)
        self.counter += 1
        return format_request_number(self.counter)

    async def insert(self, request: RequestState) -> int:
        await asyncio.sleep(0)
        if request.id in self.requests:
            raise ConcurrentModification(f"Request {request.id} already exists")
        self.requests[request.id] = replace(request, version=1)
        return 1

    async def load(self, request_id: UUID) -> tuple[RequestState, int]:
        await asyncio.sleep(0)
        if request_id not in self.requests:
            raise RequestNotFound(f"Request {request_id} not found")
        request = self.requests[request_id]
        if self.load_barrier is not None:
            await self.load_barrier.wait()
        return request, request.version

    async def save(self, request: RequestState, expected_version: int) -> int:
        await asyncio.sleep(0)
        self.save_calls += 1
        if self.save_errors:
            raise self.save_errors.pop(0)
        current = self.requests.get(request.id)
        if current is None:
            raise RequestNotFound(f"Request {request.id} not found")
        if current.version != expected_version:
            raise ConcurrentModification(
                f"Request {request.request_number} changed since version {expected_version}"
            )
        new_version = expected_version + 1
        self.requests[request.id] = replace(request, version=new_version)
        return new_version


class FakeIdentityDirectory:
    def __init__(self, records: list[IdentityRecord] | None = None):
        self.records = {r.id: r for r in records or []}

    def add(self, record: IdentityRecord) -> IdentityRecord:
        self.records[record.id] = record
        return record

    async def resolve_actor(self, actor_id: UUID, now: datetime) -> Actor:
        await asyncio.sleep(0)
        record = self.records.get(actor_id)
        if record is None or not record.is_active:
            raise AuthorizationError(f"Identity {actor_id} is unknown or inactive")
        return record.as_actor(now)


class RecordingActivityLogger:
    def __init__(self):
        self.events: list[ActivityEvent] = []

    async def record(self, event: ActivityEvent) -> None:
        self.events.append(event)


class FailingActivityLogger:
    def __init__(self):
        self.calls = 0

    async def record(self, event: ActivityEvent) -> None:
        self.calls += 1
        raise RuntimeError("activity log is down")


class RecordingNotifier:
    def __init__(self):
        self.notifications: list[NotificationEvent] = []

    async def enqueue(self, notification: NotificationEvent) -> None:
        self.notifications.append(notification)
