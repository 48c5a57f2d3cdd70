"""Shared pytest fixtures for unit and integration tests.

Integration tests run the app in-process against a throwaway SQLite file per
test and an in-memory fakeredis, so no running stack is needed.
"""
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from types import SimpleNamespace

# Settings are read at import time by the db module.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["RESCHEDULE_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["DEV_MODE"] = "false"

import pytest
import pytest_asyncio
from fakeredis import aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shift_reschedule import models  # noqa: F401
from shift_reschedule.db import Base, get_db_session
from shift_reschedule.main import app
from shift_reschedule.models import Branch, Staff, WorkShift
from shift_reschedule.schemas import StaffRole
from shift_reschedule.time_utils import utc_now


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh file-backed database per test; separate sessions see each other's commits."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis(monkeypatch):
    client = aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr("shift_reschedule.services.reschedule_service.redis_client", client)
    monkeypatch.setattr("shift_reschedule.routers.health.redis_client", client)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis) -> AsyncGenerator[AsyncClient, None]:
    """FastAPI client; every request gets its own session, as in production."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _shift_window(days_ahead: int, start_hour: int = 9, hours: int = 8) -> tuple[datetime, datetime]:
    day = (utc_now() + timedelta(days=days_ahead)).replace(hour=start_hour, minute=0, second=0, microsecond=0)
    return day, day + timedelta(hours=hours)


@pytest_asyncio.fixture
async def world(db: AsyncSession) -> SimpleNamespace:
    """One branch with an owner, a manager and three staff, plus a second branch.

    alice works in three days, bob in four days, carol in five days.
    """
    branch = Branch(name="District 1")
    other_branch = Branch(name="District 7")
    db.add_all([branch, other_branch])
    await db.flush()

    owner = Staff(full_name="Olivia Owner", role=StaffRole.owner, branch_id=None)
    manager = Staff(full_name="Minh Manager", role=StaffRole.manager, branch_id=branch.id)
    alice = Staff(full_name="Alice Nguyen", role=StaffRole.staff, branch_id=branch.id)
    bob = Staff(full_name="Bob Tran", role=StaffRole.staff, branch_id=branch.id)
    carol = Staff(full_name="Carol Le", role=StaffRole.staff, branch_id=branch.id)
    outsider = Staff(full_name="Dave Pham", role=StaffRole.staff, branch_id=other_branch.id)
    other_manager = Staff(full_name="Mai Manager", role=StaffRole.manager, branch_id=other_branch.id)
    db.add_all([owner, manager, alice, bob, carol, outsider, other_manager])
    await db.flush()

    def shift_for(staff: Staff, days_ahead: int) -> WorkShift:
        start, end = _shift_window(days_ahead)
        return WorkShift(staff_id=staff.id, branch_id=staff.branch_id, start_time=start, end_time=end)

    alice_shift = shift_for(alice, 3)
    bob_shift = shift_for(bob, 4)
    carol_shift = shift_for(carol, 5)
    db.add_all([alice_shift, bob_shift, carol_shift])
    await db.commit()

    return SimpleNamespace(
        branch=branch,
        other_branch=other_branch,
        owner=owner,
        manager=manager,
        alice=alice,
        bob=bob,
        carol=carol,
        outsider=outsider,
        other_manager=other_manager,
        alice_shift=alice_shift,
        bob_shift=bob_shift,
        carol_shift=carol_shift,
    )


def auth(staff: Staff) -> dict:
    return {"X-Staff-Id": str(staff.id), "Content-Type": "application/json"}


@pytest.fixture
def headers():
    return auth


@pytest.fixture
def shift_window():
    return _shift_window
