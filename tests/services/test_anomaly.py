"""Tests for metricstore.services.anomaly."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from metricstore.errors import NotFoundError, ValidationError
from metricstore.services.anomaly import MIN_HISTORY_POINTS, Confidence, detect_anomaly

MARCH_1 = datetime(2026, 3, 1, tzinfo=timezone.utc)
HISTORY = [100, 102, 98, 101, 99, 100, 103, 97, 100, 100]


async def _record_day(store, definition_id, day, value, dimensions=None, **extra):
    start = MARCH_1 + timedelta(days=day)
    return await store.record_snapshot(
        definition_id,
        start,
        start + timedelta(days=1),
        "day",
        {"uf": "SP"} if dimensions is None else dimensions,
        value,
        **extra,
    )


async def _with_history(store, definition_id, latest):
    for day, value in enumerate(HISTORY):
        await _record_day(store, definition_id, day, value)
    return await _record_day(store, definition_id, len(HISTORY), latest)


class TestDetectAnomaly:
    @pytest.mark.asyncio
    async def test_outlier_is_flagged(self, store, definition):
        snapshot = await _with_history(store, definition.id, 150)

        result = await detect_anomaly(store, snapshot.id, confidence=Confidence.HIGH)

        assert result.is_anomaly is True
        assert result.history_size == len(HISTORY)
        assert result.mean == pytest.approx(100.0)
        assert result.std_dev == pytest.approx(2.8**0.5)
        assert result.z_score > 3.0
        assert result.value == Decimal("150")
        assert result.confidence == "high"

    @pytest.mark.asyncio
    async def test_ordinary_value_is_not_flagged(self, store, definition):
        snapshot = await _with_history(store, definition.id, 102)
        result = await detect_anomaly(store, snapshot.id)
        assert result.is_anomaly is False
        assert result.z_score == pytest.approx(2 / 2.8**0.5)

    @pytest.mark.asyncio
    async def test_confidence_sets_the_limit(self, store, definition):
        # z is about 2.39: above the low limit, below the medium one
        snapshot = await _with_history(store, definition.id, 104)

        assert (await detect_anomaly(store, snapshot.id, confidence="low")).is_anomaly is True
        assert (await detect_anomaly(store, snapshot.id, confidence="medium")).is_anomaly is False

    @pytest.mark.asyncio
    async def test_too_little_history(self, store, definition):
        for day in range(MIN_HISTORY_POINTS - 1):
            await _record_day(store, definition.id, day, 100)
        snapshot = await _record_day(store, definition.id, MIN_HISTORY_POINTS - 1, 10_000)

        result = await detect_anomaly(store, snapshot.id)

        assert result.history_size == MIN_HISTORY_POINTS - 1
        assert result.is_anomaly is False
        assert result.z_score == 0.0

    @pytest.mark.asyncio
    async def test_window_limits_history(self, store, definition):
        snapshot = await _with_history(store, definition.id, 150)
        result = await detect_anomaly(store, snapshot.id, window_days=3)
        assert result.history_size == 3
        assert result.is_anomaly is False

    @pytest.mark.asyncio
    async def test_constant_history_never_flags(self, store, definition):
        for day in range(6):
            await _record_day(store, definition.id, day, 7)
        snapshot = await _record_day(store, definition.id, 6, 700)

        result = await detect_anomaly(store, snapshot.id)
        assert result.std_dev == 0.0
        assert result.is_anomaly is False

    @pytest.mark.asyncio
    async def test_other_dimensions_and_failed_collections_ignored(self, store, definition):
        snapshot = await _with_history(store, definition.id, 150)
        for day in range(len(HISTORY)):
            await _record_day(store, definition.id, day, 150, dimensions={"uf": "RJ"})
        await _record_day(
            store,
            definition.id,
            -1,
            0,
            collection_status="error",
            status_message="source timed out",
        )

        result = await detect_anomaly(store, snapshot.id, window_days=60)
        assert result.history_size == len(HISTORY)
        assert result.is_anomaly is True


class TestDetectAnomalyErrors:
    @pytest.mark.asyncio
    async def test_unknown_snapshot(self, store):
        with pytest.raises(NotFoundError):
            await detect_anomaly(store, "missing")

    @pytest.mark.asyncio
    async def test_non_positive_window(self, store):
        with pytest.raises(ValidationError) as exc_info:
            await detect_anomaly(store, "any", window_days=0)
        assert exc_info.value.errors[0].field == "window_days"

    @pytest.mark.asyncio
    async def test_unknown_confidence(self, store):
        with pytest.raises(ValidationError) as exc_info:
            await detect_anomaly(store, "any", confidence="extreme")
        assert exc_info.value.errors[0].field == "confidence"
