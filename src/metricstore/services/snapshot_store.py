"""Identity, uniqueness and supersession of metric snapshots.

A snapshot is identified by (definition_id, period_start, period_end,
dimensions_hash). Recording a value for an identity that already exists
supersedes the stored row in place: the store holds the latest computed value
per identity, never a revision log.

The store keeps no state between calls. Each operation opens its own session
and transaction from the session factory; the unique constraint on the
identity columns is what serializes concurrent writers. A writer whose INSERT
collides with a peer's rolls back and retries the whole read-then-write,
which then finds the row and supersedes it. Supersession is keyed by id only
and bumps ``revision`` in SQL, so writers that meet on an existing row queue
on the row lock instead of conflicting.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from metricstore.config import get_settings
from metricstore.errors import (
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from metricstore.models.metric_definition import MetricDefinition
from metricstore.models.metric_snapshot import MetricSnapshot
from metricstore.schemas.snapshot import Snapshot
from metricstore.services.definitions import DefinitionProvider, SqlDefinitionProvider
from metricstore.services.dimension_hash import check_dimensions, hash_dimensions, matches_filter
from metricstore.services.formatting import format_value
from metricstore.services.granularity import Granularity, as_utc
from metricstore.services.snapshot_validation import (
    CollectionStatus,
    round_value,
    to_decimal,
    validate_snapshot_input,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotStore:
    """Records, supersedes, looks up and range-queries metric snapshots."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        definitions: DefinitionProvider | None = None,
        *,
        max_conflict_retries: int | None = None,
        timeout_seconds: float | None = None,
        conflict_backoff_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._definitions = definitions or SqlDefinitionProvider(session_factory)
        self._max_conflict_retries = max(
            1,
            max_conflict_retries
            if max_conflict_retries is not None
            else settings.snapshot_conflict_max_retries,
        )
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.store_timeout_seconds
        )
        self._conflict_backoff_seconds = (
            conflict_backoff_seconds
            if conflict_backoff_seconds is not None
            else settings.snapshot_conflict_backoff_seconds
        )
        self._query_max_limit = settings.query_max_limit

    async def record_snapshot(
        self,
        definition_id: str,
        period_start: datetime,
        period_end: datetime,
        granularity: Granularity | str,
        dimensions: Mapping[str, Any] | None,
        value: Decimal | int | float | str,
        definition_version: int | None = None,
        collection_status: CollectionStatus | str = CollectionStatus.SUCCESS,
        duration_ms: int = 0,
        status_message: str | None = None,
    ) -> Snapshot:
        """Record a collected value, superseding any snapshot with the same identity.

        ``definition_version`` defaults to the definition's current version and
        may not exceed it. Raises ValidationError for malformed input,
        NotFoundError for an unknown or inactive definition and
        StoreUnavailableError when persistence times out, is unreachable or
        keeps conflicting.
        """
        dimensions = {} if dimensions is None else dimensions
        errors = validate_snapshot_input(
            period_start=period_start,
            period_end=period_end,
            granularity=granularity,
            dimensions=dimensions,
            value=value,
            collection_status=collection_status,
            duration_ms=duration_ms,
            status_message=status_message,
            definition_version=definition_version,
        )
        if errors:
            raise ValidationError(errors)

        definition = await self._guard(self._definitions.get_definition(definition_id))
        if definition is None or not definition.is_active:
            raise NotFoundError("MetricDefinition", definition_id)
        if definition_version is None:
            definition_version = definition.version
        elif definition_version > definition.version:
            raise ValidationError.single(
                "definition_version",
                "not_after_current",
                f"definition_version {definition_version} is ahead of the current "
                f"version {definition.version}",
            )

        number = round_value(to_decimal(value))
        dimensions = dict(dimensions)
        fields = {
            "granularity": Granularity(granularity).value,
            "value": number,
            "formatted_value": format_value(
                number, definition.decimal_places, definition.prefix, definition.suffix
            ),
            "definition_version": definition_version,
            "collection_status": CollectionStatus(collection_status).value,
            "status_message": status_message,
            "duration_ms": duration_ms,
        }
        start, end = as_utc(period_start), as_utc(period_end)
        dimensions_hash = hash_dimensions(dimensions)

        for attempt in range(1, self._max_conflict_retries + 1):
            try:
                return await self._guard(
                    self._write(definition_id, start, end, dimensions, dimensions_hash, fields)
                )
            except ConflictError as exc:
                logger.warning(
                    "Snapshot write conflict for %s [%s, %s) %s (attempt %d/%d): %s",
                    definition_id,
                    start.isoformat(),
                    end.isoformat(),
                    dimensions_hash[:12],
                    attempt,
                    self._max_conflict_retries,
                    exc.message,
                )
                if attempt < self._max_conflict_retries:
                    await asyncio.sleep(
                        self._conflict_backoff_seconds * attempt * random.uniform(0.5, 1.5)
                    )

        logger.error(
            "Giving up on snapshot for %s [%s, %s) after %d conflicting attempts",
            definition_id,
            start.isoformat(),
            end.isoformat(),
            self._max_conflict_retries,
        )
        raise StoreUnavailableError(
            "Snapshot key kept conflicting with concurrent writers",
            {"definition_id": definition_id, "attempts": self._max_conflict_retries},
        )

    async def get_snapshot(
        self,
        definition_id: str,
        period_start: datetime,
        period_end: datetime,
        dimensions: Mapping[str, Any] | None = None,
    ) -> Snapshot | None:
        """Return the snapshot with exactly this identity, or None."""
        dimensions_hash = hash_dimensions(dimensions)
        start, end = as_utc(period_start), as_utc(period_end)

        async def read() -> Snapshot | None:
            async with self._session_factory() as session:
                row = await self._find_existing(session, definition_id, start, end, dimensions_hash)
                return Snapshot.model_validate(row) if row is not None else None

        return await self._guard(read())

    async def mark_validated(self, snapshot_id: str, validated: bool) -> None:
        """Set the validated flag. Idempotent; NotFoundError for an unknown id."""

        async def write() -> None:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(MetricSnapshot, snapshot_id)
                    if row is None:
                        raise NotFoundError("MetricSnapshot", snapshot_id)
                    if row.validated != validated:
                        row.validated = validated
                        logger.info("Snapshot %s marked validated=%s", snapshot_id, validated)

        await self._guard(write())

    async def query_by_period_range(
        self,
        definition_id: str,
        range_start: datetime,
        range_end: datetime,
        dimension_filter: Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Snapshot]:
        """Return snapshots whose period intersects ``[range_start, range_end)``.

        With ``dimension_filter``, only snapshots carrying every filter key with
        an equal value are returned. Ordered by period_start, then
        dimensions_hash.
        """
        if dimension_filter:
            errors = check_dimensions(dimension_filter, field="dimension_filter")
            if errors:
                raise ValidationError(errors)
        start, end = as_utc(range_start), as_utc(range_end)
        if start >= end:
            raise ValidationError.single(
                "range_end", "after_range_start", "range_end must be strictly after range_start"
            )
        if offset < 0:
            raise ValidationError.single("offset", "non_negative", "offset must be >= 0")
        if limit is not None and limit < 1:
            raise ValidationError.single("limit", "positive", "limit must be >= 1")
        limit = min(limit or self._query_max_limit, self._query_max_limit)

        stmt = (
            select(MetricSnapshot)
            .where(MetricSnapshot.definition_id == definition_id)
            .where(MetricSnapshot.period_start < end)
            .where(MetricSnapshot.period_end > start)
            .order_by(MetricSnapshot.period_start, MetricSnapshot.dimensions_hash)
        )
        if not dimension_filter:
            stmt = stmt.offset(offset).limit(limit)

        async def read() -> list[Snapshot]:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
                return [
                    Snapshot.model_validate(row)
                    for row in rows
                    if not dimension_filter or matches_filter(row.dimensions, dimension_filter)
                ]

        snapshots = await self._guard(read())
        if dimension_filter:
            snapshots = snapshots[offset : offset + limit]
        return snapshots

    async def get_definition_for(self, snapshot: Snapshot) -> MetricDefinition | None:
        """Fetch the definition a snapshot belongs to."""
        return await self._guard(self._definitions.get_definition(snapshot.definition_id))

    async def get_snapshot_by_id(self, snapshot_id: str) -> Snapshot | None:
        async def read() -> Snapshot | None:
            async with self._session_factory() as session:
                row = await session.get(MetricSnapshot, snapshot_id)
                return Snapshot.model_validate(row) if row is not None else None

        return await self._guard(read())

    async def history(
        self,
        snapshot: Snapshot,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Snapshot]:
        """Earlier snapshots of the same definition and dimensions, newest first.

        Only periods that ended at or before ``snapshot.period_start`` count;
        with ``since``, periods must also end after it.
        """
        limit = min(limit or self._query_max_limit, self._query_max_limit)
        stmt = (
            select(MetricSnapshot)
            .where(MetricSnapshot.definition_id == snapshot.definition_id)
            .where(MetricSnapshot.dimensions_hash == snapshot.dimensions_hash)
            .where(MetricSnapshot.period_end <= as_utc(snapshot.period_start))
            .where(MetricSnapshot.id != snapshot.id)
            .order_by(MetricSnapshot.period_end.desc())
            .limit(limit)
        )
        if since is not None:
            stmt = stmt.where(MetricSnapshot.period_end > as_utc(since))

        async def read() -> list[Snapshot]:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [Snapshot.model_validate(row) for row in result.scalars().all()]

        return await self._guard(read())

    async def _find_existing(
        self,
        session: AsyncSession,
        definition_id: str,
        period_start: datetime,
        period_end: datetime,
        dimensions_hash: str,
    ) -> MetricSnapshot | None:
        result = await session.execute(
            select(MetricSnapshot)
            .where(MetricSnapshot.definition_id == definition_id)
            .where(MetricSnapshot.period_start == period_start)
            .where(MetricSnapshot.period_end == period_end)
            .where(MetricSnapshot.dimensions_hash == dimensions_hash)
        )
        return result.scalar_one_or_none()

    async def _write(
        self,
        definition_id: str,
        period_start: datetime,
        period_end: datetime,
        dimensions: dict[str, Any],
        dimensions_hash: str,
        fields: dict[str, Any],
    ) -> Snapshot:
        """One read-then-write attempt in a single transaction.

        Raises ConflictError when a concurrent writer inserted the same key
        first, or when the row read was deleted before it could be superseded.
        """
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    existing = await self._find_existing(
                        session, definition_id, period_start, period_end, dimensions_hash
                    )
                    if existing is None:
                        row = MetricSnapshot(
                            definition_id=definition_id,
                            period_start=period_start,
                            period_end=period_end,
                            dimensions=dimensions,
                            dimensions_hash=dimensions_hash,
                            validated=True,
                            revision=1,
                            created_at=now,
                            **fields,
                        )
                        session.add(row)
                        await session.flush()
                        logger.debug(
                            "Recorded snapshot %s for %s [%s, %s)",
                            row.id,
                            definition_id,
                            period_start.isoformat(),
                            period_end.isoformat(),
                        )
                    else:
                        result = await session.execute(
                            update(MetricSnapshot)
                            .where(MetricSnapshot.id == existing.id)
                            .values(
                                **fields,
                                validated=True,
                                created_at=now,
                                revision=MetricSnapshot.revision + 1,
                            )
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            raise ConflictError(
                                f"snapshot {existing.id} was deleted before it could be superseded"
                            )
                        await session.refresh(existing)
                        row = existing
                        logger.info(
                            "Superseded snapshot %s for %s [%s, %s) (revision %d)",
                            row.id,
                            definition_id,
                            period_start.isoformat(),
                            period_end.isoformat(),
                            row.revision,
                        )
                    snapshot = Snapshot.model_validate(row)
            except IntegrityError as exc:
                raise ConflictError("a concurrent writer created the same snapshot key") from exc
        return snapshot

    async def _guard(self, operation: Awaitable[T]) -> T:
        """Bound ``operation`` by the store timeout and map outages to StoreUnavailableError."""
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("Snapshot store operation timed out after %ss", self._timeout_seconds)
            raise StoreUnavailableError(
                f"Snapshot store did not respond within {self._timeout_seconds}s"
            ) from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error("Snapshot store unavailable: %s", exc)
            raise StoreUnavailableError("Snapshot store is unavailable") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                logger.error("Snapshot store connection lost: %s", exc)
                raise StoreUnavailableError("Snapshot store connection was lost") from exc
            raise
