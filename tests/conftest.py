"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pokerdna.config import Settings
from pokerdna.db.base import Base
from pokerdna.db import models  # noqa: F401
from pokerdna.dna.sync import DNASync
from pokerdna.integrity import IntegrityChannel
from pokerdna.store.memory import InMemoryStore
from pokerdna.xp.kernel import XPKernel

T0 = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, log_format="console")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def integrity() -> IntegrityChannel:
    return IntegrityChannel()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def kernel(store: InMemoryStore, settings: Settings, integrity: IntegrityChannel, clock: FakeClock) -> XPKernel:
    return XPKernel(store, settings=settings, integrity=integrity, clock=clock)


@pytest.fixture
def sync(store: InMemoryStore, settings: Settings, integrity: IntegrityChannel, clock: FakeClock) -> DNASync:
    return DNASync(store, settings=settings, integrity=integrity, clock=clock)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite with the ORM schema, shared across sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the database swapped for SQLite."""
    from pokerdna.database import get_session
    from pokerdna.integrity import get_integrity_channel
    from pokerdna.main import create_app

    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    get_integrity_channel().clear()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    get_integrity_channel().clear()
    app.dependency_overrides.clear()
