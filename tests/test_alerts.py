"""Tests for usage alert evaluation."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from ledgerguard.schemas.usage import UsageAlert
from ledgerguard.store import Collections

from conftest import GIB, NOW

FEB = datetime(2024, 2, 5, tzinfo=timezone.utc)


@pytest.fixture
def make_alert(store):
    def _make(alert_id="al-1", **fields):
        document = {
            "workspace_id": "ws-1",
            "resource_type": "traffic",
            "threshold": 10.0,
            "alert_type": "in_app",
            "webhook_url": None,
            "is_enabled": True,
            "last_triggered_at": None,
        }
        document.update(fields)
        return store.seed(Collections.USAGE_ALERTS, alert_id, document)

    return _make


def _mock_client(response=None, error=None):
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_client.post = AsyncMock(side_effect=error)
    else:
        mock_client.post = AsyncMock(return_value=response)
    return mock_client


def _response(status_code):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    return response


# ─── Usage ───────────────────────────────────────────────────────────────────

class TestCurrentMonthUsage:
    @pytest.mark.asyncio
    async def test_only_current_month_and_resource(self, services, make_alert, make_event):
        alert = UsageAlert.model_validate(make_alert())
        make_event("traffic", 3 * GIB, FEB)
        make_event("traffic", 2 * GIB, NOW)
        make_event("traffic", 50 * GIB, datetime(2024, 1, 31, 23, 59, tzinfo=timezone.utc))
        make_event("storage", 50 * GIB, FEB)
        make_event("traffic", 50 * GIB, FEB, workspace_id="ws-2")

        usage = await services.alerts.get_current_month_usage(alert, NOW)
        assert usage == pytest.approx(5.0)


# ─── Evaluation ──────────────────────────────────────────────────────────────

class TestEvaluateAlert:
    @pytest.mark.asyncio
    async def test_below_threshold(self, services, store, make_alert, make_event):
        alert = UsageAlert.model_validate(make_alert())
        make_event("traffic", 1 * GIB, FEB)

        result = await services.alerts.evaluate_alert(alert)

        assert result.triggered is False
        assert result.notification_sent is False
        assert store.all(Collections.NOTIFICATIONS) == []

    @pytest.mark.asyncio
    async def test_in_app_notification(self, services, store, make_alert, make_event):
        alert = UsageAlert.model_validate(make_alert())
        make_event("traffic", 12 * GIB, FEB)

        result = await services.alerts.evaluate_alert(alert)

        assert result.triggered is True
        assert result.notification_sent is True
        assert result.current_usage == pytest.approx(12.0)

        notifications = store.all(Collections.NOTIFICATIONS)
        assert len(notifications) == 1
        assert notifications[0]["type"] == "USAGE_ALERT"
        assert notifications[0]["user_id"] is None
        assert notifications[0]["workspace_id"] == "ws-1"
        assert (await store.get(Collections.USAGE_ALERTS, "al-1"))["last_triggered_at"] == NOW

    @pytest.mark.asyncio
    async def test_email_falls_back_to_in_app(self, services, store, make_alert, make_event):
        alert = UsageAlert.model_validate(make_alert(alert_type="email"))
        make_event("traffic", 12 * GIB, FEB)

        result = await services.alerts.evaluate_alert(alert)

        assert result.notification_sent is True
        assert len(store.all(Collections.NOTIFICATIONS)) == 1

    @pytest.mark.asyncio
    async def test_suspended_account_is_skipped(
        self, services, store, make_account, make_workspace, make_alert, make_event
    ):
        make_account(billing_status="SUSPENDED", suspended_at=NOW - timedelta(days=1))
        make_workspace("ws-1")
        alert = UsageAlert.model_validate(make_alert())
        make_event("traffic", 12 * GIB, FEB)

        result = await services.alerts.evaluate_alert(alert)

        assert result.triggered is False
        assert result.error == "Account suspended - skipping alert evaluation"
        assert store.all(Collections.NOTIFICATIONS) == []

    @pytest.mark.asyncio
    async def test_compute_uses_weighted_units(self, services, make_alert, make_event):
        alert = UsageAlert.model_validate(make_alert(resource_type="compute", threshold=20))
        make_event("compute", 5, FEB, weighted_units=25.0)

        result = await services.alerts.evaluate_alert(alert)
        assert result.triggered is True
        assert result.current_usage == pytest.approx(25.0)


# ─── Webhooks ────────────────────────────────────────────────────────────────

class TestWebhookAlerts:
    @pytest.fixture
    def webhook_alert(self, make_alert, make_event):
        make_event("traffic", 12 * GIB, FEB)
        return UsageAlert.model_validate(
            make_alert(alert_type="webhook", webhook_url="https://hooks.example.com/usage")
        )

    @pytest.mark.asyncio
    async def test_webhook_success(self, services, store, webhook_alert):
        mock_client = _mock_client(_response(200))

        with patch("ledgerguard.services.alerts.httpx.AsyncClient", return_value=mock_client):
            result = await services.alerts.evaluate_alert(webhook_alert)

        assert result.notification_sent is True
        url = mock_client.post.call_args[0][0]
        payload = mock_client.post.call_args[1]["json"]
        assert url == "https://hooks.example.com/usage"
        assert payload["alertId"] == "al-1"
        assert payload["resourceType"] == "traffic"
        assert payload["currentUsage"] == pytest.approx(12.0)
        assert payload["triggeredAt"] == NOW.isoformat()
        assert (await store.get(Collections.USAGE_ALERTS, "al-1"))["last_triggered_at"] == NOW

    @pytest.mark.asyncio
    async def test_webhook_non_2xx_is_not_sent(self, services, store, webhook_alert):
        mock_client = _mock_client(_response(500))

        with patch("ledgerguard.services.alerts.httpx.AsyncClient", return_value=mock_client):
            result = await services.alerts.evaluate_alert(webhook_alert)

        assert result.triggered is True
        assert result.notification_sent is False
        assert (await store.get(Collections.USAGE_ALERTS, "al-1"))["last_triggered_at"] is None

    @pytest.mark.asyncio
    async def test_webhook_transport_error(self, services, webhook_alert):
        mock_client = _mock_client(error=httpx.ConnectError("refused"))

        with patch("ledgerguard.services.alerts.httpx.AsyncClient", return_value=mock_client):
            result = await services.alerts.evaluate_alert(webhook_alert)

        assert result.notification_sent is False
        assert result.error is None

    @pytest.mark.asyncio
    async def test_webhook_without_url(self, services):
        alert = UsageAlert(
            id="al-2",
            workspace_id="ws-1",
            resource_type="traffic",
            threshold=1,
            alert_type="webhook",
        )
        assert await services.alerts.send_webhook_notification(alert, 5.0, NOW) is False


# ─── Batch ───────────────────────────────────────────────────────────────────

class TestEvaluateAllAlerts:
    @pytest.mark.asyncio
    async def test_cooldown_and_disabled(self, services, make_alert, make_event):
        make_event("traffic", 12 * GIB, FEB)
        make_alert("fresh", last_triggered_at=None)
        make_alert("cooling", last_triggered_at=NOW - timedelta(hours=10))
        make_alert("cooled", last_triggered_at=NOW - timedelta(hours=25))
        make_alert("disabled", is_enabled=False)

        results = await services.alerts.evaluate_all_alerts()

        assert sorted(r.alert_id for r in results) == ["cooled", "fresh"]
        assert all(r.triggered for r in results)

    @pytest.mark.asyncio
    async def test_invalid_alert_is_skipped(self, services, make_alert):
        make_alert("broken", resource_type="bandwidth")
        make_alert("ok")

        results = await services.alerts.evaluate_all_alerts()
        assert [r.alert_id for r in results] == ["ok"]
