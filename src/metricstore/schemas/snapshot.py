"""Schemas for metric snapshots."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer

from metricstore.services.granularity import Granularity
from metricstore.services.snapshot_validation import CollectionStatus

DimensionValue = str | bool | int | float


class Snapshot(BaseModel):
    """A recorded metric snapshot, detached from the ORM session."""

    id: str
    definition_id: str
    period_start: datetime
    period_end: datetime
    granularity: Granularity
    dimensions: dict[str, DimensionValue]
    dimensions_hash: str
    value: Decimal
    formatted_value: str | None = None
    validated: bool
    definition_version: int
    collection_status: CollectionStatus
    status_message: str | None = None
    duration_ms: int
    revision: int
    created_at: datetime

    model_config = {"from_attributes": True, "frozen": True}

    @field_serializer("value")
    def _serialize_value(self, value: Decimal) -> str:
        # Strings keep exact decimal digits across JSON clients
        return format(value, "f")


class SnapshotRecord(BaseModel):
    """Request body for POST /v1/snapshots.

    Only shape is checked here; the store's validation reports
    field-level rule violations.
    """

    definition_id: str = Field(min_length=1, max_length=36)
    period_start: datetime
    period_end: datetime
    granularity: str
    dimensions: dict[str, DimensionValue] = Field(default_factory=dict)
    value: Decimal
    definition_version: int | None = None
    collection_status: str = "success"
    duration_ms: int = 0
    status_message: str | None = None


class ValidationUpdate(BaseModel):
    """Request body for POST /v1/snapshots/{id}/validation."""

    validated: bool


class AnomalyResponse(BaseModel):
    """Response for GET /v1/snapshots/{id}/anomaly."""

    snapshot_id: str
    definition_id: str
    value: Decimal
    confidence: str
    window_days: int
    history_size: int
    mean: float
    std_dev: float
    z_score: float
    is_anomaly: bool

    model_config = {"from_attributes": True}

    @field_serializer("value")
    def _serialize_value(self, value: Decimal) -> str:
        return format(value, "f")
