"""Tests for metricstore.services.alerting."""

import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import respx
from httpx import Response, TimeoutException

from metricstore.models.metric_definition import MetricDefinition
from metricstore.schemas.snapshot import Snapshot
from metricstore.services.alerting import (
    ALERT_EVENT,
    ThresholdBreach,
    ThresholdKind,
    alert_if_exceeded,
    build_alert_payload,
    dispatch_alert,
    evaluate_thresholds,
    has_thresholds,
    percent_change,
    sign_payload,
)

HOOK_URL = "https://alerts.example.com/hook"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_definition(**overrides) -> MetricDefinition:
    fields = {
        "id": "def-alert-1",
        "code": "requerimentos_pendentes",
        "name": "Requerimentos pendentes",
        "granularity": "day",
        "version": 2,
        "alert_threshold": Decimal("100"),
        "critical_threshold": Decimal("200"),
        "alert_webhook_url": HOOK_URL,
        "alert_webhook_secret": "hook-secret",
    }
    fields.update(overrides)
    return MetricDefinition(**fields)


def _make_snapshot(value: str, status: str = "success", day: int = 2) -> Snapshot:
    start = datetime(2026, 3, day, tzinfo=timezone.utc)
    return Snapshot(
        id=f"snap-{day}",
        definition_id="def-alert-1",
        period_start=start,
        period_end=start + timedelta(days=1),
        granularity="day",
        dimensions={"uf": "SP"},
        dimensions_hash="0" * 64,
        value=Decimal(value),
        formatted_value=value,
        validated=True,
        definition_version=2,
        collection_status=status,
        status_message=None if status == "success" else "failed",
        duration_ms=10,
        revision=1,
        created_at=start + timedelta(days=1, minutes=5),
    )


# ---------------------------------------------------------------------------
# evaluate_thresholds
# ---------------------------------------------------------------------------


class TestEvaluateThresholds:
    def test_below_thresholds(self):
        assert evaluate_thresholds(_make_definition(), _make_snapshot("100")) is None

    def test_warning(self):
        breach = evaluate_thresholds(_make_definition(), _make_snapshot("100.01"))
        assert breach.level == "warning"
        assert breach.kind == ThresholdKind.ABOVE
        assert breach.threshold == Decimal("100")

    def test_critical_wins(self):
        breach = evaluate_thresholds(_make_definition(), _make_snapshot("250"))
        assert breach.level == "critical"
        assert breach.threshold == Decimal("200")

    def test_no_thresholds(self):
        definition = _make_definition(alert_threshold=None, critical_threshold=None)
        assert evaluate_thresholds(definition, _make_snapshot("1e6")) is None

    def test_failed_collection_never_alerts(self):
        assert evaluate_thresholds(_make_definition(), _make_snapshot("999", "error")) is None

    def test_lower_bound(self):
        definition = _make_definition(alert_min_threshold=Decimal("10"))
        breach = evaluate_thresholds(definition, _make_snapshot("9.5"))
        assert breach.level == "warning"
        assert breach.kind == ThresholdKind.BELOW
        assert evaluate_thresholds(definition, _make_snapshot("10")) is None

    def test_percent_change_up_and_down(self):
        definition = _make_definition(alert_change_percent=Decimal("20"))
        previous = _make_snapshot("50", day=1)

        rise = evaluate_thresholds(definition, _make_snapshot("61"), previous)
        assert rise.kind == ThresholdKind.CHANGE
        assert rise.previous_value == Decimal("50")
        assert rise.change_percent == Decimal("22")

        drop = evaluate_thresholds(definition, _make_snapshot("39"), previous)
        assert drop.change_percent == Decimal("-22")

        assert evaluate_thresholds(definition, _make_snapshot("60"), previous) is None

    def test_percent_change_needs_usable_previous(self):
        definition = _make_definition(alert_change_percent=Decimal("20"))
        assert evaluate_thresholds(definition, _make_snapshot("90")) is None
        assert evaluate_thresholds(definition, _make_snapshot("90"), _make_snapshot("0", day=1)) is None
        failed = _make_snapshot("10", "error", day=1)
        assert evaluate_thresholds(definition, _make_snapshot("90"), failed) is None


def test_percent_change():
    assert percent_change(Decimal("200"), Decimal("150")) == Decimal("-25")
    assert percent_change(Decimal("-100"), Decimal("-50")) == Decimal("50")
    assert percent_change(Decimal("0"), Decimal("5")) is None


def test_has_thresholds():
    assert has_thresholds(_make_definition()) is True
    bare = _make_definition(alert_threshold=None, critical_threshold=None)
    assert has_thresholds(bare) is False
    bare.alert_change_percent = Decimal("10")
    assert has_thresholds(bare) is True


# ---------------------------------------------------------------------------
# sign_payload / build_alert_payload
# ---------------------------------------------------------------------------


class TestSignPayload:
    def test_matches_hmac_over_sorted_json(self):
        payload = {"b": 1, "a": "x"}
        expected = hmac.new(
            b"secret", json.dumps(payload, sort_keys=True).encode(), hashlib.sha256
        ).hexdigest()
        assert sign_payload(payload, "secret") == expected

    def test_different_secrets_differ(self):
        assert sign_payload({"a": 1}, "one") != sign_payload({"a": 1}, "two")


class TestBuildAlertPayload:
    def test_contains_snapshot_and_threshold(self):
        breach = ThresholdBreach("warning", ThresholdKind.ABOVE, Decimal("100"))
        payload = build_alert_payload(_make_definition(), _make_snapshot("150"), breach)
        assert payload["event"] == ALERT_EVENT
        data = payload["data"]
        assert data["level"] == "warning"
        assert data["definition_code"] == "requerimentos_pendentes"
        assert data["definition_version"] == 2
        assert data["value"] == "150"
        assert data["kind"] == "above"
        assert data["threshold"] == "100"
        assert data["dimensions"] == {"uf": "SP"}
        assert "change_percent" not in data

    def test_change_carries_previous_value(self):
        breach = ThresholdBreach(
            "warning",
            ThresholdKind.CHANGE,
            Decimal("20"),
            previous_value=Decimal("30"),
            change_percent=Decimal(200) / Decimal(3),
        )
        data = build_alert_payload(_make_definition(), _make_snapshot("50"), breach)["data"]
        assert data["kind"] == "change"
        assert data["previous_value"] == "30"
        assert data["change_percent"] == "66.67"


# ---------------------------------------------------------------------------
# dispatch_alert
# ---------------------------------------------------------------------------


class TestDispatchAlert:
    @pytest.mark.asyncio
    async def test_successful_delivery_is_signed(self):
        payload = {"event": ALERT_EVENT, "data": {"value": "150"}}

        with respx.mock:
            route = respx.post(HOOK_URL).mock(return_value=Response(200))
            delivery = await dispatch_alert(HOOK_URL, "hook-secret", payload)

        assert delivery.success is True
        assert delivery.status_code == 200
        request = route.calls.last.request
        assert request.headers["X-Metricstore-Signature"] == sign_payload(payload, "hook-secret")
        assert request.headers["X-Metricstore-Event"] == ALERT_EVENT
        assert request.headers["X-Metricstore-Delivery"] == delivery.delivery_id
        assert json.loads(request.content) == payload

    @pytest.mark.asyncio
    async def test_no_secret_means_no_signature(self):
        with respx.mock:
            route = respx.post(HOOK_URL).mock(return_value=Response(200))
            delivery = await dispatch_alert(HOOK_URL, None, {"event": ALERT_EVENT})

        assert delivery.success is True
        assert "X-Metricstore-Signature" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_server_error_reported(self):
        with respx.mock:
            respx.post(HOOK_URL).mock(return_value=Response(500))
            delivery = await dispatch_alert(HOOK_URL, "s", {"event": ALERT_EVENT})

        assert delivery.success is False
        assert delivery.status_code == 500

    @pytest.mark.asyncio
    async def test_timeout_is_not_raised(self):
        with respx.mock:
            respx.post(HOOK_URL).mock(side_effect=TimeoutException("slow"))
            delivery = await dispatch_alert(HOOK_URL, "s", {"event": ALERT_EVENT})

        assert delivery.success is False
        assert delivery.error == "Request timed out"


# ---------------------------------------------------------------------------
# alert_if_exceeded
# ---------------------------------------------------------------------------


class TestAlertIfExceeded:
    @pytest.mark.asyncio
    async def test_sends_when_exceeded(self):
        with respx.mock:
            route = respx.post(HOOK_URL).mock(return_value=Response(204))
            delivery = await alert_if_exceeded(_make_definition(), _make_snapshot("250"))

        assert delivery is not None and delivery.success
        body = json.loads(route.calls.last.request.content)
        assert body["data"]["level"] == "critical"

    @pytest.mark.asyncio
    async def test_nothing_sent_when_within_thresholds(self):
        with respx.mock(assert_all_called=False) as router:
            route = router.post(HOOK_URL).mock(return_value=Response(200))
            assert await alert_if_exceeded(_make_definition(), _make_snapshot("50")) is None

        assert not route.called

    @pytest.mark.asyncio
    async def test_no_url_means_log_only(self):
        definition = _make_definition(alert_webhook_url=None)
        assert await alert_if_exceeded(definition, _make_snapshot("250")) is None

    @pytest.mark.asyncio
    async def test_definition_without_secret_sends_unsigned(self):
        definition = _make_definition(alert_webhook_secret=None)
        with respx.mock:
            route = respx.post(HOOK_URL).mock(return_value=Response(200))
            delivery = await alert_if_exceeded(definition, _make_snapshot("250"))

        assert delivery.success
        assert "X-Metricstore-Signature" not in route.calls.last.request.headers


class TestChangeAlertsWithStore:
    @pytest.mark.asyncio
    async def test_change_against_previous_day(self, store, create_definition):
        definition = await create_definition(
            code="pedidos", alert_change_percent=Decimal("25"), alert_webhook_url=HOOK_URL
        )
        day1 = datetime(2026, 3, 1, tzinfo=timezone.utc)
        day2 = day1 + timedelta(days=1)
        await store.record_snapshot(definition.id, day1, day2, "day", {"uf": "SP"}, 80)
        await store.record_snapshot(definition.id, day1, day2, "day", {"uf": "RJ"}, 1)
        current = await store.record_snapshot(
            definition.id, day2, day2 + timedelta(days=1), "day", {"uf": "SP"}, 120
        )

        with respx.mock:
            route = respx.post(HOOK_URL).mock(return_value=Response(200))
            delivery = await alert_if_exceeded(definition, current, store)

        assert delivery.success
        data = json.loads(route.calls.last.request.content)["data"]
        assert data["kind"] == "change"
        assert data["previous_value"] == "80"
        assert data["change_percent"] == "50.00"

    @pytest.mark.asyncio
    async def test_first_snapshot_has_nothing_to_compare(self, store, create_definition):
        definition = await create_definition(
            code="pedidos", alert_change_percent=Decimal("25"), alert_webhook_url=HOOK_URL
        )
        day1 = datetime(2026, 3, 1, tzinfo=timezone.utc)
        current = await store.record_snapshot(
            definition.id, day1, day1 + timedelta(days=1), "day", {"uf": "SP"}, 120
        )

        with respx.mock(assert_all_called=False) as router:
            route = router.post(HOOK_URL).mock(return_value=Response(200))
            assert await alert_if_exceeded(definition, current, store) is None

        assert not route.called
