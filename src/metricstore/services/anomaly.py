"""Z-score anomaly detection for a snapshot against its own history.

The history is every successful snapshot of the same definition and
dimensions whose period ended within ``window_days`` before the snapshot's
period started. The snapshot is anomalous when its distance from the
history's mean, in population standard deviations, exceeds the limit for the
requested confidence.
"""

import logging
import statistics
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import Enum

from metricstore.errors import NotFoundError, ValidationError
from metricstore.services.snapshot_store import SnapshotStore
from metricstore.services.snapshot_validation import CollectionStatus

logger = logging.getLogger(__name__)


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


Z_SCORE_LIMITS: dict[Confidence, float] = {
    Confidence.LOW: 2.0,
    Confidence.MEDIUM: 2.5,
    Confidence.HIGH: 3.0,
}

# Fewer points than this never flag an anomaly
MIN_HISTORY_POINTS = 5
DEFAULT_WINDOW_DAYS = 30


@dataclass
class AnomalyResult:
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


async def detect_anomaly(
    store: SnapshotStore,
    snapshot_id: str,
    window_days: int = DEFAULT_WINDOW_DAYS,
    confidence: Confidence | str = Confidence.MEDIUM,
) -> AnomalyResult:
    """Score ``snapshot_id`` against its history.

    Raises NotFoundError for an unknown snapshot and ValidationError for a
    non-positive window or an unknown confidence level.
    """
    if window_days < 1:
        raise ValidationError.single("window_days", "positive", "window_days must be >= 1")
    try:
        confidence = Confidence(confidence)
    except ValueError:
        allowed = ", ".join(c.value for c in Confidence)
        raise ValidationError.single(
            "confidence", "enum", f"confidence must be one of: {allowed}"
        )

    snapshot = await store.get_snapshot_by_id(snapshot_id)
    if snapshot is None:
        raise NotFoundError("MetricSnapshot", snapshot_id)

    since = snapshot.period_start - timedelta(days=window_days)
    history = [
        s
        for s in await store.history(snapshot, since=since)
        if s.collection_status == CollectionStatus.SUCCESS
    ]

    result = AnomalyResult(
        snapshot_id=snapshot.id,
        definition_id=snapshot.definition_id,
        value=snapshot.value,
        confidence=confidence.value,
        window_days=window_days,
        history_size=len(history),
        mean=0.0,
        std_dev=0.0,
        z_score=0.0,
        is_anomaly=False,
    )
    if len(history) < MIN_HISTORY_POINTS:
        logger.debug(
            "Snapshot %s has %d history points, need %d for anomaly detection",
            snapshot.id,
            len(history),
            MIN_HISTORY_POINTS,
        )
        return result

    values = [float(s.value) for s in history]
    result.mean = statistics.fmean(values)
    result.std_dev = statistics.pstdev(values, mu=result.mean)
    if result.std_dev > 0:
        result.z_score = abs(float(snapshot.value) - result.mean) / result.std_dev
    result.is_anomaly = result.z_score > Z_SCORE_LIMITS[confidence]

    if result.is_anomaly:
        logger.warning(
            "Anomaly in snapshot %s of %s: value=%s z-score=%.2f (limit %.1f)",
            snapshot.id,
            snapshot.definition_id,
            snapshot.value,
            result.z_score,
            Z_SCORE_LIMITS[confidence],
        )
    return result
