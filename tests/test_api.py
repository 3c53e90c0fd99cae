"""API tests against the in-memory store."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from ledgerguard.deps import get_services
from ledgerguard.main import app
from ledgerguard.services import build_services
from ledgerguard.store import Collections

from conftest import NOW


@pytest.fixture
def client(store, settings):
    app.dependency_overrides[get_services] = lambda: build_services(
        store, settings, clock=lambda: NOW
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


# ─── Application ─────────────────────────────────────────────────────────────

class TestApplication:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_routes_registered(self):
        paths = set(app.openapi()["paths"])
        assert "/api/v1/billing/account" in paths
        assert "/api/v1/billing/warning" in paths
        assert "/api/v1/usage/events" in paths
        assert "/api/v1/invariants/critical" in paths
        assert "/api/v1/alerts/evaluate" in paths
        assert "/api/v1/webhooks/stripe" in paths


# ─── Billing ─────────────────────────────────────────────────────────────────

class TestBillingEndpoints:
    def test_account_not_found_is_not_an_error(self, client):
        response = client.get("/api/v1/billing/account", params={"user_id": "u-new"})
        assert response.status_code == 200
        assert response.json() == {"outcome": "NOT_FOUND", "account": None, "error": None}

    def test_account_found(self, client, make_account):
        make_account()
        response = client.get("/api/v1/billing/account", params={"organization_id": "org-1"})
        body = response.json()
        assert body["outcome"] == "FOUND"
        assert body["account"]["id"] == "ba-1"

    def test_warning_for_due_account(self, client, make_account):
        make_account(billing_status="DUE", grace_period_end=NOW + timedelta(hours=10))

        response = client.get("/api/v1/billing/warning", params={"organization_id": "org-1"})
        body = response.json()

        assert response.status_code == 200
        assert body["state"] == "CRITICAL"
        assert body["hours_remaining"] == 10
        assert body["show_global_warning"] is True
        assert body["dismissible"] is False

    def test_warning_without_account(self, client):
        body = client.get("/api/v1/billing/warning", params={"user_id": "u-new"}).json()
        assert body["state"] == "NORMAL"
        assert body["dismissible"] is True

    def test_status_transition(self, client, make_account):
        make_account()
        response = client.post("/api/v1/billing/accounts/ba-1/status", json={"status": "DUE"})

        assert response.status_code == 200
        assert response.json()["billing_status"] == "DUE"

    def test_invalid_status_transition(self, client, make_account):
        make_account()
        response = client.post(
            "/api/v1/billing/accounts/ba-1/status", json={"status": "SUSPENDED"}
        )

        assert response.status_code == 409
        assert response.json()["valid_targets"] == ["DUE"]

    def test_lock_and_unlock(self, client, make_account):
        make_account()

        first = client.post("/api/v1/billing/accounts/ba-1/cycle/lock").json()
        second = client.post("/api/v1/billing/accounts/ba-1/cycle/lock").json()
        assert first["success"] is True
        assert second["already_locked"] is True

        response = client.post("/api/v1/billing/accounts/ba-1/cycle/unlock")
        assert response.json() == {"unlocked": True}

    def test_lock_missing_account(self, client):
        response = client.post("/api/v1/billing/accounts/ba-gone/cycle/lock")
        assert response.status_code == 404
        assert response.json()["code"] == "BILLING_NOT_FOUND"

    def test_advance_rejects_inverted_bounds(self, client, make_account):
        make_account()
        response = client.post(
            "/api/v1/billing/accounts/ba-1/cycle/advance",
            json={
                "billing_cycle_start": "2024-02-01T00:00:00Z",
                "billing_cycle_end": "2024-01-01T00:00:00Z",
            },
        )
        assert response.status_code == 422

    def test_advance_rejects_naive_bounds(self, client, make_account):
        make_account()
        response = client.post(
            "/api/v1/billing/accounts/ba-1/cycle/advance",
            json={
                "billing_cycle_start": "2024-02-01T00:00:00",
                "billing_cycle_end": "2024-03-01T00:00:00",
            },
        )
        assert response.status_code == 422

    def test_close_period(self, client, make_account):
        make_account()
        response = client.post(
            "/api/v1/billing/accounts/ba-1/close-period",
            json={"workspace_id": "ws-1", "period": "2024-01"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["aggregation"]["is_finalized"] is True
        assert body["lock_acquired"] is True


# ─── Usage ───────────────────────────────────────────────────────────────────

class TestUsageEndpoints:
    def _event(self, **fields):
        body = {
            "workspace_id": "ws-1",
            "organization_id": "org-1",
            "resource_type": "traffic",
            "units": 1024,
            "timestamp": NOW.isoformat(),
        }
        body.update(fields)
        return body

    def test_record_event(self, client, store, make_account, make_workspace):
        make_account()
        make_workspace()

        response = client.post("/api/v1/usage/events", json=self._event())

        assert response.status_code == 201
        assert response.json()["event"]["billing_entity_id"] == "org-1"
        assert len(store.all(Collections.USAGE_EVENTS)) == 1

    def test_suspended_account_is_payment_required(self, client, store, make_account, make_workspace):
        make_account(billing_status="SUSPENDED", suspended_at=NOW - timedelta(days=1))
        make_workspace()

        response = client.post("/api/v1/usage/events", json=self._event())

        assert response.status_code == 402
        body = response.json()
        assert body["code"] == "BILLING_SUSPENDED"
        assert body["billing_account_id"] == "ba-1"
        assert body["billing_status"] == "SUSPENDED"
        assert store.all(Collections.USAGE_EVENTS) == []

    def test_locked_cycle_is_conflict(self, client, make_account, make_workspace):
        make_account(is_billing_cycle_locked=True, billing_cycle_locked_at=NOW)
        make_workspace()

        response = client.post("/api/v1/usage/events", json=self._event())

        assert response.status_code == 409
        assert response.json()["code"] == "BILLING_CYCLE_LOCKED"

    def test_unknown_workspace_is_forbidden(self, client):
        response = client.post(
            "/api/v1/usage/events",
            json=self._event(workspace_id="ws-gone", organization_id=None),
        )

        assert response.status_code == 403
        assert response.json()["code"] == "USAGE_WRITE_BLOCKED"

    def test_naive_timestamp_rejected(self, client, store, make_account, make_workspace):
        make_account()
        make_workspace()

        response = client.post(
            "/api/v1/usage/events", json=self._event(timestamp="2024-02-05T00:00:00")
        )

        assert response.status_code == 422
        assert store.all(Collections.USAGE_EVENTS) == []

    def test_negative_units_rejected(self, client):
        response = client.post("/api/v1/usage/events", json=self._event(units=-1))
        assert response.status_code == 422


# ─── Invariants and alerts ───────────────────────────────────────────────────

class TestAuditEndpoints:
    def test_critical_checks(self, client, make_account):
        make_account()
        body = client.get("/api/v1/invariants/critical").json()
        assert body["all_passed"] is True
        assert len(body["results"]) == 3

    def test_reconcile_missing_aggregation(self, client):
        body = client.get("/api/v1/invariants/aggregations/agg-gone/reconcile").json()
        assert body["matches"] is False
        assert body["error"]

    def test_ghost_cleanup_defaults_to_dry_run(self, client, store):
        store.seed(Collections.MEMBERS, "m-1", {"workspace_id": "ws-gone", "user_id": "u-1"})

        body = client.post("/api/v1/invariants/ghost-members/cleanup").json()

        assert body == {"deleted": 1, "errors": []}
        assert len(store.all(Collections.MEMBERS)) == 1

    def test_evaluate_alerts(self, client):
        response = client.post("/api/v1/alerts/evaluate")
        assert response.status_code == 200
        assert response.json() == []


# ─── Webhooks ────────────────────────────────────────────────────────────────

class TestStripeWebhook:
    def test_missing_signature(self, client):
        response = client.post("/api/v1/webhooks/stripe", content=b"{}")
        assert response.status_code == 400

    def test_payment_failed_event(self, client, store, make_account):
        make_account(stripe_customer_id="cus_1")
        event = MagicMock()
        event.type = "invoice.payment_failed"
        event.data.object = {"id": "in_1", "customer": "cus_1"}

        with patch(
            "ledgerguard.api.v1.webhooks.stripe.Webhook.construct_event", return_value=event
        ):
            response = client.post(
                "/api/v1/webhooks/stripe",
                content=b"{}",
                headers={"stripe-signature": "t=1,v1=abc"},
            )

        assert response.json() == {"status": "ok"}
        account = store.all(Collections.BILLING_ACCOUNTS)[0]
        assert account["billing_status"] == "DUE"
