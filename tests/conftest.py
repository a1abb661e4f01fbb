"""Shared fixtures: a throwaway SQLite database per test and demo identities."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from docstream.core.database import build_engine, build_session_factory, init_db
from docstream.models import Identity, Role
from docstream.services import Actor, ApprovalEngine

from .fakes import FixedClock


NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def engine() -> ApprovalEngine:
    return ApprovalEngine()


@pytest.fixture
def actors() -> dict[Role, Actor]:
    """One actor per role, already resolved to its effective role."""
    return {
        role: Actor(id=uuid4(), name=role.value.replace("_", " ").title(), role=role)
        for role in Role
    }


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'docstream.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def identities(session_factory) -> dict[Role, Identity]:
    """One stored identity per role."""
    rows = {}
    async with session_factory() as session:
        for index, role in enumerate(Role, start=1):
            identity = Identity(
                staff_id=f"STF-{index:03d}",
                name=f"{role.value.replace('_', ' ').title()} Person",
                email=f"{role.value}@docstream.org",
                department="Operations",
                role=role,
            )
            session.add(identity)
            rows[role] = identity
        await session.commit()
    return rows
