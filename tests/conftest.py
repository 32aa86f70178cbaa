"""Test fixtures and configuration."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from metricstore.dependencies import get_db, get_session_factory
from metricstore.main import create_app
from metricstore.models import Base, MetricDefinition
from metricstore.services.definitions import SqlDefinitionProvider
from metricstore.services.snapshot_store import SnapshotStore


@pytest_asyncio.fixture
async def db_engine():
    """Create an in-memory SQLite engine for tests."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def store(session_factory) -> SnapshotStore:
    """Snapshot store over the test database."""
    return SnapshotStore(session_factory, SqlDefinitionProvider(session_factory))


@pytest_asyncio.fixture
async def definition(session_factory) -> MetricDefinition:
    """A committed daily metric definition at version 1."""
    return await make_definition(session_factory)


async def make_definition(
    session_factory: async_sessionmaker[AsyncSession], **overrides
) -> MetricDefinition:
    """Insert and commit a metric definition."""
    fields = {
        "code": "beneficios_concedidos",
        "name": "Benefícios concedidos",
        "granularity": "day",
        "version": 1,
        "decimal_places": 2,
    }
    fields.update(overrides)
    async with session_factory() as session:
        definition = MetricDefinition(**fields)
        session.add(definition)
        await session.commit()
        return definition


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a SQLite file, so concurrent sessions use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'metricstore.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_definition(file_session_factory) -> MetricDefinition:
    return await make_definition(file_session_factory)


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with overridden DB dependencies."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def create_definition(session_factory):
    """Return a coroutine function that commits a definition with the given overrides."""

    async def _create(**overrides) -> MetricDefinition:
        return await make_definition(session_factory, **overrides)

    return _create
