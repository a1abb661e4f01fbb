"""Activity log: append-only audit trail with an optional hash chain."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.security import hash_content
from ..models import ActivityAction, ActivityLog, as_utc
from .approval_engine import ActivityEvent

logger = logging.getLogger(__name__)

# Attempts at claiming the next sequence number before giving up
_MAX_APPEND_ATTEMPTS = 3


class ActivityLogger(Protocol):
    """Logger collaborator: fire-and-forget audit events."""

    async def record(self, event: ActivityEvent) -> None: ...


def _json_safe(data: Any) -> dict:
    return json.loads(json.dumps(dict(data or {}), default=str))


def compute_entry_hash(
    previous_hash: str | None,
    *,
    sequence: int,
    actor_id: UUID | None,
    actor_name: str,
    role: str,
    action: str,
    description: str,
    resource_type: str,
    resource_id: UUID | None,
    details: dict,
    created_at: datetime,
) -> str:
    """SHA-256 over the previous hash and the canonical JSON of one entry."""
    canonical = json.dumps(
        {
            "sequence": sequence,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_name": actor_name,
            "role": role,
            "action": action,
            "description": description,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id else None,
            "details": details,
            "created_at": as_utc(created_at).astimezone(timezone.utc).isoformat(),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hash_content(f"{previous_hash or ''}|{canonical}")


def _hash_row(entry: ActivityLog, previous_hash: str | None) -> str:
    return compute_entry_hash(
        previous_hash,
        sequence=entry.sequence,
        actor_id=entry.actor_id,
        actor_name=entry.actor_name,
        role=entry.role,
        action=ActivityAction(entry.action).value,
        description=entry.description,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        details=entry.details or {},
        created_at=entry.created_at,
    )


class SqlActivityLogger:
    """
    Writes activity events to the activity_log table.

    Each event is written in its own session so a logging failure can never
    roll back the workflow state it describes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chain_enabled: bool = True,
    ):
        self._session_factory = session_factory
        self.chain_enabled = chain_enabled

    async def record(self, event: ActivityEvent) -> None:
        for attempt in range(1, _MAX_APPEND_ATTEMPTS + 1):
            try:
                await self._append(event)
                return
            except IntegrityError:
                # Another writer claimed the same sequence number
                if attempt == _MAX_APPEND_ATTEMPTS:
                    raise
                logger.debug(f"Activity log sequence conflict, retrying ({attempt})")

    async def _append(self, event: ActivityEvent) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                last = (
                    await session.execute(
                        select(ActivityLog.sequence, ActivityLog.entry_hash)
                        .order_by(ActivityLog.sequence.desc())
                        .limit(1)
                    )
                ).first()
                sequence = (last.sequence + 1) if last else 1

                entry = ActivityLog(
                    sequence=sequence,
                    actor_id=event.actor_id,
                    actor_name=event.actor_name,
                    role=event.role,
                    action=event.action,
                    description=event.description,
                    resource_type=event.resource_type,
                    resource_id=event.resource_id,
                    details=_json_safe(event.metadata),
                    created_at=event.timestamp,
                )
                if self.chain_enabled:
                    entry.previous_hash = last.entry_hash if last else None
                    entry.entry_hash = _hash_row(entry, entry.previous_hash)
                session.add(entry)

        logger.info(
            f"[ACTIVITY] {event.actor_name} ({event.role}) {event.action.value}: "
            f"{event.description}"
        )


class ActivityLogService:
    """Read side of the activity log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_activity_log(
        self,
        actor_id: UUID | None = None,
        action: ActivityAction | None = None,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[ActivityLog], int]:
        """Query the activity log with filters, newest first."""
        query = select(ActivityLog)

        if actor_id:
            query = query.where(ActivityLog.actor_id == actor_id)
        if action:
            query = query.where(ActivityLog.action == action)
        if resource_type:
            query = query.where(ActivityLog.resource_type == resource_type)
        if resource_id:
            query = query.where(ActivityLog.resource_id == resource_id)
        if start_date:
            query = query.where(ActivityLog.created_at >= start_date)
        if end_date:
            query = query.where(ActivityLog.created_at <= end_date)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        query = query.order_by(ActivityLog.sequence.desc()).limit(limit).offset(offset)
        result = await self.session.execute(query)

        return result.scalars().all(), total

    async def verify_chain(self) -> dict[str, Any]:
        """Recompute every chained entry's hash in sequence order."""
        result = await self.session.execute(
            select(ActivityLog).order_by(ActivityLog.sequence)
        )

        previous_hash: str | None = None
        verified = 0
        for entry in result.scalars():
            if entry.entry_hash is None:
                continue
            if entry.previous_hash != previous_hash or entry.entry_hash != _hash_row(
                entry, previous_hash
            ):
                logger.warning(f"Activity log chain broken at entry {entry.id}")
                return {
                    "is_valid": False,
                    "verified_entries": verified,
                    "broken_at_id": entry.id,
                    "verified_at": datetime.now(timezone.utc),
                }
            previous_hash = entry.entry_hash
            verified += 1

        return {
            "is_valid": True,
            "verified_entries": verified,
            "broken_at_id": None,
            "verified_at": datetime.now(timezone.utc),
        }
