"""Schemas for metric definition endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from metricstore.services.granularity import Granularity


class DefinitionCreate(BaseModel):
    """Request body for creating a metric definition."""

    code: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9_.-]+$")
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    granularity: Granularity = Granularity.DAY
    unit: str | None = Field(default=None, max_length=50)
    prefix: str | None = Field(default=None, max_length=16)
    suffix: str | None = Field(default=None, max_length=16)
    decimal_places: int = Field(default=2, ge=0, le=10)
    alert_threshold: Decimal | None = None
    critical_threshold: Decimal | None = None
    alert_min_threshold: Decimal | None = None
    alert_change_percent: Decimal | None = Field(default=None, gt=0)
    alert_webhook_url: str | None = None
    alert_webhook_secret: str | None = Field(default=None, max_length=128)
    retention_days: int = Field(default=0, ge=0)
    max_snapshots: int = Field(default=0, ge=0)


class DefinitionUpdate(BaseModel):
    """Request body for updating a metric definition. Every update bumps the version.

    Omitted fields are left alone. Nullable fields may be cleared with an
    explicit null; the others may not.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    granularity: Granularity | None = None
    unit: str | None = Field(default=None, max_length=50)
    prefix: str | None = Field(default=None, max_length=16)
    suffix: str | None = Field(default=None, max_length=16)
    decimal_places: int | None = Field(default=None, ge=0, le=10)
    alert_threshold: Decimal | None = None
    critical_threshold: Decimal | None = None
    alert_min_threshold: Decimal | None = None
    alert_change_percent: Decimal | None = Field(default=None, gt=0)
    alert_webhook_url: str | None = None
    alert_webhook_secret: str | None = Field(default=None, max_length=128)
    retention_days: int | None = Field(default=None, ge=0)
    max_snapshots: int | None = Field(default=None, ge=0)
    is_active: bool | None = None

    @field_validator(
        "name",
        "granularity",
        "decimal_places",
        "retention_days",
        "max_snapshots",
        "is_active",
    )
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class DefinitionResponse(BaseModel):
    """Response for a single metric definition. The webhook secret is never echoed."""

    id: str
    code: str
    name: str
    description: str | None
    granularity: Granularity
    version: int
    unit: str | None
    prefix: str | None
    suffix: str | None
    decimal_places: int
    alert_threshold: Decimal | None
    critical_threshold: Decimal | None
    alert_min_threshold: Decimal | None
    alert_change_percent: Decimal | None
    alert_webhook_url: str | None
    retention_days: int
    max_snapshots: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
