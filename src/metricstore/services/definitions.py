"""Metric definition registry with monotonic versions.

Also provides the definition-provider adapter the snapshot store uses to
stamp ``definition_version`` on new snapshots.
"""

import logging
from typing import Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from metricstore.errors import DuplicateDefinitionError, NotFoundError, ValidationError
from metricstore.models.metric_definition import MetricDefinition
from metricstore.models.metric_snapshot import MetricSnapshot
from metricstore.services.granularity import Granularity

logger = logging.getLogger(__name__)


class DefinitionProvider(Protocol):
    """What the snapshot store needs to know about metric definitions."""

    async def get_definition(self, definition_id: str) -> MetricDefinition | None: ...

    async def get_current_version(self, definition_id: str) -> int: ...


def _normalize(data: dict[str, Any]) -> dict[str, Any]:
    data = dict(data)
    if data.get("granularity") is not None:
        data["granularity"] = Granularity(data["granularity"]).value
    return data


async def create_definition(db: AsyncSession, data: dict[str, Any]) -> MetricDefinition:
    """Create a definition at version 1. Raises DuplicateDefinitionError on a taken code."""
    existing = await get_definition_by_code(db, data["code"])
    if existing is not None:
        raise DuplicateDefinitionError(data["code"])

    definition = MetricDefinition(**_normalize(data), version=1)
    db.add(definition)
    await db.flush()

    logger.info("Created metric definition %s (%s)", definition.code, definition.id)
    return definition


async def get_definition(db: AsyncSession, definition_id: str) -> MetricDefinition | None:
    result = await db.execute(
        select(MetricDefinition).where(MetricDefinition.id == definition_id)
    )
    return result.scalar_one_or_none()


async def get_definition_by_code(db: AsyncSession, code: str) -> MetricDefinition | None:
    result = await db.execute(select(MetricDefinition).where(MetricDefinition.code == code))
    return result.scalar_one_or_none()


async def list_definitions(
    db: AsyncSession,
    active: bool | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[MetricDefinition]:
    """List definitions ordered by code."""
    stmt = select(MetricDefinition)
    if active is not None:
        stmt = stmt.where(MetricDefinition.is_active.is_(active))
    stmt = stmt.order_by(MetricDefinition.code).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_definition(
    db: AsyncSession, definition_id: str, changes: dict[str, Any]
) -> MetricDefinition:
    """Apply ``changes`` and advance the version.

    Existing snapshots keep the version they were computed with. Changing the
    granularity of a definition that already has snapshots is refused.
    """
    definition = await get_definition(db, definition_id)
    if definition is None:
        raise NotFoundError("MetricDefinition", definition_id)

    changes = _normalize(changes)
    new_granularity = changes.get("granularity")
    if new_granularity is not None and new_granularity != definition.granularity:
        count = await db.scalar(
            select(func.count())
            .select_from(MetricSnapshot)
            .where(MetricSnapshot.definition_id == definition_id)
        )
        if count:
            raise ValidationError.single(
                "granularity",
                "immutable",
                "granularity cannot change once snapshots have been recorded",
            )

    # One UPDATE, so concurrent updates cannot lose a version increment
    await db.execute(
        update(MetricDefinition)
        .where(MetricDefinition.id == definition_id)
        .values(**changes, version=MetricDefinition.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(definition)

    logger.info(
        "Updated metric definition %s to version %d", definition.code, definition.version
    )
    return definition


async def deactivate_definition(db: AsyncSession, definition_id: str) -> MetricDefinition:
    """Logically delete a definition. Its snapshots are left untouched."""
    definition = await get_definition(db, definition_id)
    if definition is None:
        raise NotFoundError("MetricDefinition", definition_id)

    definition.is_active = False
    await db.flush()
    logger.info("Deactivated metric definition %s", definition.code)
    return definition


class SqlDefinitionProvider:
    """DefinitionProvider backed by the metric_definitions table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_definition(self, definition_id: str) -> MetricDefinition | None:
        async with self._session_factory() as session:
            return await get_definition(session, definition_id)

    async def get_current_version(self, definition_id: str) -> int:
        definition = await self.get_definition(definition_id)
        if definition is None:
            raise NotFoundError("MetricDefinition", definition_id)
        return definition.version
