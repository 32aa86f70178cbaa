"""Threshold alerting for recorded snapshots.

Compares a snapshot's value against its definition's thresholds and sends a
webhook to the definition's alert URL. Thresholds come in three kinds: an
upper bound (warning and critical), a lower bound, and a maximum percent
change against the previous snapshot of the same dimensions.
"""

import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

import httpx

from metricstore.config import get_settings
from metricstore.errors import MetricStoreError
from metricstore.models.metric_definition import MetricDefinition
from metricstore.schemas.snapshot import Snapshot
from metricstore.services.snapshot_store import SnapshotStore
from metricstore.services.snapshot_validation import CollectionStatus

logger = logging.getLogger(__name__)

ALERT_EVENT = "metric.threshold_exceeded"


class ThresholdKind(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    CHANGE = "change"


@dataclass
class ThresholdBreach:
    """Which threshold a snapshot crossed."""

    level: str
    kind: ThresholdKind
    threshold: Decimal
    previous_value: Decimal | None = None
    change_percent: Decimal | None = None


@dataclass
class AlertDelivery:
    """Outcome of one webhook delivery attempt."""

    delivery_id: str
    url: str
    success: bool
    status_code: int | None = None
    error: str | None = None


def has_thresholds(definition: MetricDefinition) -> bool:
    return any(
        t is not None
        for t in (
            definition.alert_threshold,
            definition.critical_threshold,
            definition.alert_min_threshold,
            definition.alert_change_percent,
        )
    )


def percent_change(previous: Decimal, current: Decimal) -> Decimal | None:
    """Signed change from ``previous`` to ``current`` in percent. None when previous is zero."""
    if previous == 0:
        return None
    return (current - previous) / abs(previous) * 100


def evaluate_thresholds(
    definition: MetricDefinition,
    snapshot: Snapshot,
    previous: Snapshot | None = None,
) -> ThresholdBreach | None:
    """Return the first threshold ``snapshot`` crosses, or None.

    Only successful collections are alerted on. Checked in order: critical
    upper bound, warning upper bound, lower bound, then percent change
    against ``previous`` (skipped when it is missing, failed or zero).
    """
    if snapshot.collection_status != CollectionStatus.SUCCESS:
        return None
    value = snapshot.value

    if definition.critical_threshold is not None and value > definition.critical_threshold:
        return ThresholdBreach("critical", ThresholdKind.ABOVE, definition.critical_threshold)
    if definition.alert_threshold is not None and value > definition.alert_threshold:
        return ThresholdBreach("warning", ThresholdKind.ABOVE, definition.alert_threshold)
    if definition.alert_min_threshold is not None and value < definition.alert_min_threshold:
        return ThresholdBreach("warning", ThresholdKind.BELOW, definition.alert_min_threshold)

    if (
        definition.alert_change_percent is not None
        and previous is not None
        and previous.collection_status == CollectionStatus.SUCCESS
    ):
        change = percent_change(previous.value, value)
        if change is not None and abs(change) > definition.alert_change_percent:
            return ThresholdBreach(
                "warning",
                ThresholdKind.CHANGE,
                definition.alert_change_percent,
                previous_value=previous.value,
                change_percent=change,
            )
    return None


def sign_payload(payload: dict, secret: str) -> str:
    """Create HMAC-SHA256 signature for a webhook payload."""
    body = json.dumps(payload, sort_keys=True, default=str)
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def build_alert_payload(
    definition: MetricDefinition, snapshot: Snapshot, breach: ThresholdBreach
) -> dict:
    data = {
        "level": breach.level,
        "kind": breach.kind.value,
        "definition_id": definition.id,
        "definition_code": definition.code,
        "definition_version": snapshot.definition_version,
        "snapshot_id": snapshot.id,
        "period_start": snapshot.period_start.isoformat(),
        "period_end": snapshot.period_end.isoformat(),
        "dimensions": snapshot.dimensions,
        "value": format(snapshot.value, "f"),
        "formatted_value": snapshot.formatted_value,
        "threshold": format(breach.threshold, "f"),
    }
    if breach.previous_value is not None:
        data["previous_value"] = format(breach.previous_value, "f")
    if breach.change_percent is not None:
        data["change_percent"] = format(breach.change_percent.quantize(Decimal("0.01")), "f")
    return {
        "event": ALERT_EVENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


async def dispatch_alert(url: str, secret: str | None, payload: dict) -> AlertDelivery:
    """POST an alert payload, signed when ``secret`` is set.

    Delivery failures are logged and reported, not raised.
    """
    settings = get_settings()
    delivery = AlertDelivery(delivery_id=str(uuid.uuid4()), url=url, success=False)

    headers = {
        "Content-Type": "application/json",
        "X-Metricstore-Event": payload.get("event", ALERT_EVENT),
        "X-Metricstore-Delivery": delivery.delivery_id,
    }
    if secret:
        headers["X-Metricstore-Signature"] = sign_payload(payload, secret)

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                url,
                content=json.dumps(payload, sort_keys=True, default=str),
                headers=headers,
                timeout=settings.webhook_timeout_seconds,
            )
            delivery.status_code = response.status_code
            delivery.success = response.status_code < 400

            if not delivery.success:
                logger.warning(
                    "Alert delivery %s to %s returned %d",
                    delivery.delivery_id,
                    url,
                    response.status_code,
                )

    except httpx.TimeoutException:
        logger.error("Alert delivery %s to %s timed out", delivery.delivery_id, url)
        delivery.error = "Request timed out"

    except httpx.RequestError as exc:
        logger.error("Alert delivery %s to %s failed: %s", delivery.delivery_id, url, exc)
        delivery.error = str(exc)

    return delivery


async def _previous_snapshot(store: SnapshotStore, snapshot: Snapshot) -> Snapshot | None:
    try:
        earlier = await store.history(snapshot, limit=1)
    except MetricStoreError as exc:
        logger.warning(
            "Skipping change check for snapshot %s: %s", snapshot.id, exc.message
        )
        return None
    return earlier[0] if earlier else None


async def alert_if_exceeded(
    definition: MetricDefinition,
    snapshot: Snapshot,
    store: SnapshotStore | None = None,
) -> AlertDelivery | None:
    """Evaluate thresholds and dispatch an alert when one is crossed and a URL is set.

    The percent-change check needs ``store`` to find the previous snapshot.
    """
    previous = None
    if definition.alert_change_percent is not None and store is not None:
        previous = await _previous_snapshot(store, snapshot)

    breach = evaluate_thresholds(definition, snapshot, previous)
    if breach is None:
        return None

    logger.warning(
        "Metric %s value %s crossed %s %s threshold %s for [%s, %s)",
        definition.code,
        snapshot.value,
        breach.level,
        breach.kind.value,
        breach.threshold,
        snapshot.period_start.isoformat(),
        snapshot.period_end.isoformat(),
    )
    if not definition.alert_webhook_url:
        return None

    payload = build_alert_payload(definition, snapshot, breach)
    return await dispatch_alert(
        definition.alert_webhook_url, definition.alert_webhook_secret, payload
    )
