"""One collected value per definition, period and dimension set."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from metricstore.db.types import ExactDecimal, JSONType, UTCDateTime
from metricstore.models.base import Base


class MetricSnapshot(Base):
    __tablename__ = "metric_snapshots"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    definition_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("metric_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    granularity: Mapped[str] = mapped_column(String(16), nullable=False)
    dimensions: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    dimensions_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    formatted_value: Mapped[str | None] = mapped_column(String(64), nullable=True)
    validated: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    definition_version: Mapped[int] = mapped_column(Integer, nullable=False)
    collection_status: Mapped[str] = mapped_column(String(16), nullable=False)
    status_message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # No relationship() to MetricDefinition: the definition is fetched
    # explicitly through SnapshotStore.get_definition_for().
    __table_args__ = (
        UniqueConstraint(
            "definition_id",
            "period_start",
            "period_end",
            "dimensions_hash",
            name="uq_metric_snapshots_identity",
        ),
        CheckConstraint("period_start < period_end", name="ck_metric_snapshots_period_order"),
        CheckConstraint("duration_ms >= 0", name="ck_metric_snapshots_duration"),
        Index("ix_metric_snapshots_definition_period", "definition_id", "period_start"),
    )
