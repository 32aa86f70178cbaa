"""Snapshot recording, lookup and range-query endpoints."""

import json
import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status

from metricstore.dependencies import get_snapshot_store
from metricstore.errors import MetricStoreError, NotFoundError, StoreUnavailableError, ValidationError
from metricstore.exception_handlers import RETRY_AFTER_SECONDS
from metricstore.schemas.snapshot import AnomalyResponse, Snapshot, SnapshotRecord, ValidationUpdate
from metricstore.services.alerting import alert_if_exceeded, has_thresholds
from metricstore.services.anomaly import DEFAULT_WINDOW_DAYS, Confidence, detect_anomaly
from metricstore.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/snapshots", tags=["snapshots"])


def _to_http(exc: MetricStoreError) -> HTTPException:
    """Translate a store error into the matching HTTP error."""
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "errors": [e.to_dict() for e in exc.errors]},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, StoreUnavailableError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": exc.message, "transient": True},
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    logger.error("Unhandled metric store error: %s", exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


def _parse_dimensions(raw: str | None, field: str = "dimensions") -> dict | None:
    """Decode a JSON object passed as a query parameter."""
    if raw is None or raw == "":
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, dict):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": f"Validation failed for: {field}",
                "errors": [
                    {
                        "field": field,
                        "constraint": "json_object",
                        "message": f"{field} must be a JSON object",
                    }
                ],
            },
        )
    return parsed


@router.post("", response_model=Snapshot, status_code=status.HTTP_201_CREATED)
async def record_snapshot(
    body: SnapshotRecord,
    background_tasks: BackgroundTasks,
    store: SnapshotStore = Depends(get_snapshot_store),
) -> Snapshot:
    """Record a collected value, superseding any snapshot with the same identity."""
    try:
        snapshot = await store.record_snapshot(
            definition_id=body.definition_id,
            period_start=body.period_start,
            period_end=body.period_end,
            granularity=body.granularity,
            dimensions=body.dimensions,
            value=body.value,
            definition_version=body.definition_version,
            collection_status=body.collection_status,
            duration_ms=body.duration_ms,
            status_message=body.status_message,
        )
        definition = await store.get_definition_for(snapshot)
    except MetricStoreError as exc:
        raise _to_http(exc)

    if definition is not None and has_thresholds(definition):
        background_tasks.add_task(alert_if_exceeded, definition, snapshot, store)

    return snapshot


@router.get("/lookup", response_model=Snapshot)
async def lookup_snapshot(
    definition_id: str,
    period_start: datetime,
    period_end: datetime,
    dimensions: str | None = None,
    store: SnapshotStore = Depends(get_snapshot_store),
) -> Snapshot:
    """Return the snapshot with exactly this identity."""
    parsed = _parse_dimensions(dimensions)
    try:
        snapshot = await store.get_snapshot(definition_id, period_start, period_end, parsed)
    except MetricStoreError as exc:
        raise _to_http(exc)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No snapshot recorded for this definition, period and dimensions",
        )
    return snapshot


@router.get("", response_model=list[Snapshot])
async def query_snapshots(
    definition_id: str,
    range_start: datetime,
    range_end: datetime,
    dimensions: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    store: SnapshotStore = Depends(get_snapshot_store),
) -> list[Snapshot]:
    """List snapshots whose period overlaps ``[range_start, range_end)``."""
    dimension_filter = _parse_dimensions(dimensions)
    try:
        return await store.query_by_period_range(
            definition_id,
            range_start,
            range_end,
            dimension_filter=dimension_filter,
            limit=limit,
            offset=offset,
        )
    except MetricStoreError as exc:
        raise _to_http(exc)


@router.post("/{snapshot_id}/validation", status_code=status.HTTP_204_NO_CONTENT)
async def set_validation(
    snapshot_id: str,
    body: ValidationUpdate,
    store: SnapshotStore = Depends(get_snapshot_store),
) -> Response:
    """Flag a snapshot as validated or not. Repeating the same flag is a no-op."""
    try:
        await store.mark_validated(snapshot_id, body.validated)
    except MetricStoreError as exc:
        raise _to_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{snapshot_id}/anomaly", response_model=AnomalyResponse)
async def check_anomaly(
    snapshot_id: str,
    window_days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=366),
    confidence: Confidence = Confidence.MEDIUM,
    store: SnapshotStore = Depends(get_snapshot_store),
) -> AnomalyResponse:
    """Score a snapshot against the history of its definition and dimensions."""
    try:
        result = await detect_anomaly(store, snapshot_id, window_days, confidence)
    except MetricStoreError as exc:
        raise _to_http(exc)
    return AnomalyResponse.model_validate(result)
