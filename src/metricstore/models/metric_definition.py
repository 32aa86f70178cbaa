"""Metric definition model."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from metricstore.db.types import ExactDecimal, UTCDateTime
from metricstore.models.base import Base


class MetricDefinition(Base):
    __tablename__ = "metric_definitions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    granularity: Mapped[str] = mapped_column(String(16), nullable=False, default="day")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Display rules for formatted_value
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    prefix: Mapped[str | None] = mapped_column(String(16), nullable=True)
    suffix: Mapped[str | None] = mapped_column(String(16), nullable=True)
    decimal_places: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    # Threshold alerting
    alert_threshold: Mapped[Decimal | None] = mapped_column(ExactDecimal, nullable=True)
    critical_threshold: Mapped[Decimal | None] = mapped_column(ExactDecimal, nullable=True)
    alert_min_threshold: Mapped[Decimal | None] = mapped_column(ExactDecimal, nullable=True)
    # Percent change against the previous snapshot of the same dimensions
    alert_change_percent: Mapped[Decimal | None] = mapped_column(ExactDecimal, nullable=True)
    alert_webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    alert_webhook_secret: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Retention policy, 0 means unlimited
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_snapshots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_metric_definitions_active", "is_active"),
    )
