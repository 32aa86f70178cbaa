"""Retention purge: removes old snapshots per definition policy."""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from metricstore.config import get_settings
from metricstore.models.metric_definition import MetricDefinition
from metricstore.models.metric_snapshot import MetricSnapshot

logger = logging.getLogger(__name__)


async def purge_expired_snapshots(
    db: AsyncSession,
    definition: MetricDefinition,
    now: datetime | None = None,
) -> int:
    """Delete a definition's snapshots that fall outside its retention policy.

    First drops snapshots created more than ``retention_days`` ago, then the
    oldest ones beyond ``max_snapshots``. Returns how many rows were deleted.
    """
    now = now or datetime.now(timezone.utc)
    retention_days = definition.retention_days or get_settings().retention_default_days
    deleted = 0

    if retention_days > 0:
        cutoff = now - timedelta(days=retention_days)
        result = await db.execute(
            delete(MetricSnapshot)
            .where(MetricSnapshot.definition_id == definition.id)
            .where(MetricSnapshot.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        deleted += result.rowcount or 0

    if definition.max_snapshots > 0:
        # Newest first; everything past max_snapshots goes
        stmt = (
            select(MetricSnapshot.id)
            .where(MetricSnapshot.definition_id == definition.id)
            .order_by(MetricSnapshot.created_at.desc(), MetricSnapshot.id.desc())
            .offset(definition.max_snapshots)
        )
        result = await db.execute(stmt)
        excess = list(result.scalars().all())
        if excess:
            result = await db.execute(
                delete(MetricSnapshot)
                .where(MetricSnapshot.id.in_(excess))
                .execution_options(synchronize_session=False)
            )
            deleted += result.rowcount or 0

    if deleted:
        logger.info("Purged %d snapshots of metric %s", deleted, definition.code)
    return deleted


async def purge_all(db: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    """Apply retention to every definition. Returns deleted counts keyed by code."""
    result = await db.execute(select(MetricDefinition).order_by(MetricDefinition.code))
    counts: dict[str, int] = {}
    for definition in result.scalars().all():
        counts[definition.code] = await purge_expired_snapshots(db, definition, now)
    return counts
