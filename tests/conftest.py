from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from service_desk.lifecycle import CallerContext, Role, ServiceRequestRepository, ServiceRequestService
from service_desk.metrics import MetricsRegistry


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'service_desk.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def repository(engine, session_factory):
    repository = ServiceRequestRepository(session_factory, engine=engine)
    await repository.ensure_schema()
    return repository


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def service(repository, clock, metrics):
    return ServiceRequestService(repository, clock=clock, metrics=metrics)


@pytest.fixture
def draft_fields():
    return {
        "title": "Leaking tap in kitchen",
        "description": "Cold water tap on level 3 kitchenette keeps dripping.",
        "site_id": 1,
        "building_id": 2,
        "floor_id": 3,
        "room_id": 4,
        "problem_type_id": 5,
        "priority": "MEDIUM",
    }


@pytest.fixture
def requester():
    return CallerContext("requestor-1", frozenset({Role.REQUESTOR}))


@pytest.fixture
def other_requester():
    return CallerContext("requestor-2", frozenset({Role.REQUESTOR}))


@pytest.fixture
def supervisor():
    return CallerContext("supervisor-1", frozenset({Role.SUPERVISOR}))


@pytest.fixture
def technician():
    return CallerContext("tech-1", frozenset({Role.TECHNICIAN}))


@pytest.fixture
def admin():
    return CallerContext("admin-1", frozenset({Role.ADMIN}))
