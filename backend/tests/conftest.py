from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from workforce.cache import InMemoryCache, get_cache, set_cache
from workforce.db import get_session
from workforce.main import app
from workforce.messaging import InMemoryMessageChannel, get_message_channel, set_message_channel
from workforce.models import Department, Employee, LeaveRequest, LeaveStatus, SQLModel

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Create an in-memory database with all tables for a single test."""
    _engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Yield a database session bound to the per-test in-memory database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache() -> Iterator[InMemoryCache]:
    """Fresh in-memory cache installed as the application cache."""
    _cache = InMemoryCache()
    set_cache(_cache)
    yield _cache
    set_cache(InMemoryCache())


@pytest.fixture
def channel() -> Iterator[InMemoryMessageChannel]:
    """Fresh in-memory message channel installed as the application channel."""
    _channel = InMemoryMessageChannel()
    set_message_channel(_channel)
    yield _channel
    set_message_channel(InMemoryMessageChannel())


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    channel: InMemoryMessageChannel,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with session, cache and channel dependencies overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_message_channel] = lambda: channel
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


async def seed_department(session_factory: async_sessionmaker[AsyncSession], name: str = "Engineering") -> Department:
    async with session_factory() as session:
        department = Department(name=name)
        session.add(department)
        await session.commit()
        return department


async def seed_employee(
    session_factory: async_sessionmaker[AsyncSession],
    department_id: uuid.UUID,
    name: str = "Ada Lovelace",
    email: str | None = None,
) -> Employee:
    async with session_factory() as session:
        employee = Employee(
            name=name,
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            department_id=department_id,
        )
        session.add(employee)
        await session.commit()
        return employee


async def seed_leave_request(
    session_factory: async_sessionmaker[AsyncSession],
    employee_id: uuid.UUID,
    start_date: date = date(2025, 10, 5),
    end_date: date = date(2025, 10, 6),
    status: LeaveStatus = LeaveStatus.PENDING,
) -> LeaveRequest:
    async with session_factory() as session:
        leave = LeaveRequest(employee_id=employee_id, start_date=start_date, end_date=end_date, status=status.value)
        session.add(leave)
        await session.commit()
        return leave


@pytest.fixture
async def department(session_factory: async_sessionmaker[AsyncSession]) -> Department:
    return await seed_department(session_factory)


@pytest.fixture
async def employee(session_factory: async_sessionmaker[AsyncSession], department: Department) -> Employee:
    return await seed_employee(session_factory, department.id)
