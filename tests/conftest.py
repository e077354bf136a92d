"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import explorer.db.models  # noqa: F401  (registers tables on Base.metadata)
from explorer.db.base import Base
from explorer.db.models import BehaviourSkill, Classroom, Learner, TableGroup
from explorer.points.hooks import EngineHooks
from explorer.points.skill_library import initialize_school_skills

TENANT = "tenant-1"
SCHOOL = "school-1"


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def classroom(db_session: AsyncSession) -> Classroom:
    room = Classroom(tenant_id=TENANT, school_id=SCHOOL, name="Koala Room", timezone="Australia/Sydney")
    db_session.add(room)
    await db_session.commit()
    return room


@pytest_asyncio.fixture
async def learners(db_session: AsyncSession, classroom: Classroom) -> dict[str, Learner]:
    """Three enrolled learners and one who has left, keyed by first name."""
    rows = {
        "Emma": Learner(tenant_id=TENANT, school_id=SCHOOL, classroom_id=classroom.id, first_name="Emma", last_name="Stone"),
        "Liam": Learner(tenant_id=TENANT, school_id=SCHOOL, classroom_id=classroom.id, first_name="Liam", last_name="Park"),
        "Noah": Learner(tenant_id=TENANT, school_id=SCHOOL, classroom_id=classroom.id, first_name="Noah", last_name="Wills"),
        "Ava": Learner(
            tenant_id=TENANT, school_id=SCHOOL, classroom_id=classroom.id,
            first_name="Ava", last_name="Reid", is_enrolled=False,
        ),
    }
    db_session.add_all(rows.values())
    await db_session.commit()
    return rows


@pytest_asyncio.fixture
async def skills(db_session: AsyncSession) -> dict[str, BehaviourSkill]:
    """The default catalog seeded for the test school, keyed by name."""
    seeded = await initialize_school_skills(db_session, TENANT, SCHOOL)
    return {skill.name: skill for skill in seeded}


@pytest_asyncio.fixture
async def table_group(db_session: AsyncSession, classroom: Classroom, learners: dict[str, Learner]) -> TableGroup:
    group = TableGroup(
        tenant_id=TENANT,
        classroom_id=classroom.id,
        name="Blue Table",
        member_ids=[learners["Emma"].id, learners["Liam"].id],
    )
    db_session.add(group)
    await db_session.commit()
    return group


@pytest.fixture
def hooks() -> EngineHooks:
    """Collaborators replaced by AsyncMocks."""
    return EngineHooks(notifier=AsyncMock(), events=AsyncMock(), cache=AsyncMock())
