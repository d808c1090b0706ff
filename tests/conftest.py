"""
Shared fixtures.

Every test gets its own SQLite database (aiosqlite) and a FakeClock, so
the sweep and grace-period logic can be exercised by moving time instead of
waiting for it. HTTP tests go through httpx's ASGI transport with get_db and
get_clock overridden; startup events (table creation on the app engine,
scheduler) do not run.
"""
import os

# Must be set before tasktracker.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SWEEP_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tasktracker.core.clock import get_clock
from tasktracker.core.security import create_access_token
from tasktracker.database import Base, enable_sqlite_foreign_keys, get_db
from tasktracker.main import app
from tasktracker.models.task import Task
from tasktracker.models.user import User
from tasktracker.utils.password import hash_password

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
PASSWORD = "Secret123!"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now += delta


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine_ = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    enable_sqlite_foreign_keys(engine_)
    async with engine_.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine_
    await engine_.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def reload(session_factory):
    """Read a row through a fresh session (bypasses the test session's identity map)."""

    async def _reload(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _reload


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    async def _make_user(
        name: Optional[str] = None,
        *,
        email: Optional[str] = None,
        deleted_at: Optional[datetime] = None,
    ) -> User:
        counter["n"] += 1
        name = name or f"User{counter['n']}"
        user = User(
            name=name,
            email=email or f"{name.lower()}@example.com",
            hashed_password=hash_password(PASSWORD),
            deleted=deleted_at is not None,
            deleted_at=deleted_at,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture()
def make_task(db):
    async def _make_task(
        user: User,
        *,
        due_date: datetime,
        status: str = "pending",
        title: str = "Write report",
        category: str = "work",
        deleted: bool = False,
    ) -> Task:
        task = Task(
            title=title,
            status=status,
            due_date=due_date,
            category=category,
            assigned_to_id=user.id,
            deleted=deleted,
        )
        db.add(task)
        await db.commit()
        return task

    return _make_task


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture()
def headers():
    return auth_headers


@pytest_asyncio.fixture()
async def client(session_factory, clock):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
