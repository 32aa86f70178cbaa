"""FastAPI dependency injection functions."""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from metricstore.db.engine import get_session
from metricstore.db.engine import get_session_factory as _engine_session_factory
from metricstore.services.definitions import SqlDefinitionProvider
from metricstore.services.snapshot_store import SnapshotStore


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async for session in get_session():
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory the snapshot store opens its transactions from."""
    return _engine_session_factory()


def get_snapshot_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SnapshotStore:
    """Build a snapshot store over the application's session factory."""
    return SnapshotStore(session_factory, SqlDefinitionProvider(session_factory))
