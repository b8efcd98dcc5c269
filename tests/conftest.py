"""Shared pytest fixtures for UniMatch tests.

Service tests run against an in-memory SQLite database (aiosqlite) with a
``StaticPool`` so every session shares the one connection.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import unimatch.models  # noqa: F401  (registers every table on Base.metadata)
from unimatch.database import Base
from unimatch.models.user import User
from unimatch.services.notification_service import InMemoryNotificationBridge
from unimatch.utils.locks import KeyedLock

UNIVERSITY = "uni.edu"
BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def bridge():
    return InMemoryNotificationBridge()


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def make_user(db):
    """Factory for verified, complete profiles at ``uni.edu``.

    Keyword arguments override any column; ``minutes_ago`` sets
    ``last_active`` relative to a fixed base time.
    """

    async def _make(minutes_ago: int = 0, **overrides) -> User:
        fields = dict(
            email=f"{uuid.uuid4().hex[:10]}@{UNIVERSITY}",
            is_email_verified=True,
            first_name="Test",
            last_name="Student",
            age=21,
            gender="female",
            interested_in="male",
            university=UNIVERSITY,
            course="Biology",
            year=2,
            bio="Coffee and climbing.",
            photos=[{"url": f"https://cdn.example/{uuid.uuid4().hex}.jpg", "is_main": True}],
            latitude=0.0,
            longitude=0.0,
            last_active=BASE_TIME - timedelta(minutes=minutes_ago),
        )
        fields.update(overrides)
        user = User(**fields)
        user.refresh_profile_completed()
        db.add(user)
        await db.commit()
        return user

    return _make
