"""Tests for billing period close and Stripe payment handling."""

from datetime import datetime, timedelta, timezone

import pytest

from ledgerguard.core.errors import BillingError, BillingErrorCode
from ledgerguard.core.invariants import InvariantViolationError
from ledgerguard.store import Collections, StoreUnavailableError

from conftest import GIB, NOW

JAN = datetime(2024, 1, 20, tzinfo=timezone.utc)


# ─── Period close ────────────────────────────────────────────────────────────

class TestClosePeriod:
    @pytest.mark.asyncio
    async def test_close_builds_finalized_snapshot_and_invoice(
        self, services, store, make_account, make_event
    ):
        make_account()
        make_event("traffic", 4 * GIB, JAN)
        make_event("compute", 3, JAN, weighted_units=6.0)
        make_event("traffic", 100 * GIB, datetime(2024, 2, 2, tzinfo=timezone.utc))

        result = await services.period_close.close_period("ba-1", "ws-1")

        assert result.period == "2024-01"
        assert result.lock_acquired is True
        assert result.locked_at == NOW
        assert result.aggregation.is_finalized is True
        assert result.aggregation.finalized_at == NOW
        assert result.aggregation.traffic_total_gb == pytest.approx(4.0)
        assert result.aggregation.compute_total_units == pytest.approx(6.0)

        invoice = await store.get(Collections.INVOICES, result.invoice_id)
        assert invoice["aggregation_snapshot_id"] == result.aggregation.id
        assert invoice["status"] == "DRAFT"
        assert (await store.get(Collections.BILLING_ACCOUNTS, "ba-1"))["is_billing_cycle_locked"] is True

    @pytest.mark.asyncio
    async def test_close_is_repeatable(self, services, store, make_account, make_event):
        make_account()
        make_event("traffic", 4 * GIB, JAN)

        first = await services.period_close.close_period("ba-1", "ws-1")
        make_event("traffic", 4 * GIB, JAN)
        second = await services.period_close.close_period("ba-1", "ws-1")

        assert second.lock_acquired is False
        assert second.locked_at == first.locked_at
        assert second.invoice_id == first.invoice_id
        assert second.aggregation == first.aggregation
        assert len(store.all(Collections.INVOICES)) == 1
        assert len(store.all(Collections.USAGE_AGGREGATIONS)) == 1

    @pytest.mark.asyncio
    async def test_finalized_period_cannot_be_rebuilt(self, services, make_account, make_event):
        make_account()
        make_event("traffic", 4 * GIB, JAN)
        await services.period_close.close_period("ba-1", "ws-1", "2024-01")

        with pytest.raises(InvariantViolationError) as exc_info:
            await services.period_close.rebuild_aggregation("ws-1", "2024-01")
        assert exc_info.value.invariant == "FINALIZED_AGGREGATION_MODIFICATION"

    @pytest.mark.asyncio
    async def test_open_aggregation_is_rebuilt_in_place(self, services, store, make_event):
        make_event("traffic", 1 * GIB, JAN)
        first = await services.period_close.rebuild_aggregation("ws-1", "2024-01")

        make_event("traffic", 1 * GIB, JAN)
        second = await services.period_close.rebuild_aggregation("ws-1", "2024-01")

        assert second.id == first.id
        assert second.traffic_total_gb == pytest.approx(2.0)
        assert second.is_finalized is False

    @pytest.mark.asyncio
    async def test_finalize_keeps_first_timestamp(self, services, make_event):
        aggregation = await services.period_close.rebuild_aggregation("ws-1", "2024-01")

        first = await services.period_close.finalize_aggregation(aggregation.id, NOW)
        again = await services.period_close.finalize_aggregation(
            aggregation.id, NOW + timedelta(days=1)
        )
        assert again.finalized_at == first.finalized_at == NOW

    @pytest.mark.asyncio
    async def test_unknown_account(self, services):
        with pytest.raises(BillingError) as exc_info:
            await services.period_close.close_period("ba-gone", "ws-1")
        assert exc_info.value.code == BillingErrorCode.BILLING_NOT_FOUND

    @pytest.mark.asyncio
    async def test_lock_failure_aborts_close(self, services, store, make_account, monkeypatch):
        make_account()

        async def failing_update(collection, document_id, fields):
            raise StoreUnavailableError("write timeout")

        monkeypatch.setattr(store, "update", failing_update)

        with pytest.raises(StoreUnavailableError):
            await services.period_close.close_period("ba-1", "ws-1")
        assert store.all(Collections.INVOICES) == []


# ─── Stripe ──────────────────────────────────────────────────────────────────

class TestStripeEvents:
    @pytest.fixture
    def closed_invoice(self, store):
        store.seed(
            Collections.USAGE_AGGREGATIONS,
            "agg-1",
            {"workspace_id": "ws-1", "period": "2024-01", "is_finalized": True, "finalized_at": NOW},
        )
        store.seed(
            Collections.INVOICES,
            "inv-1",
            {
                "billing_account_id": "ba-1",
                "aggregation_snapshot_id": "agg-1",
                "status": "OPEN",
                "stripe_invoice_id": "in_123",
                "paid_at": None,
            },
        )

    @pytest.mark.asyncio
    async def test_payment_failed_opens_grace_period(self, services, store, make_account):
        make_account(stripe_customer_id="cus_1")

        await services.stripe.handle_payment_failed({"id": "in_123", "customer": "cus_1"})

        account = await store.get(Collections.BILLING_ACCOUNTS, "ba-1")
        assert account["billing_status"] == "DUE"
        assert account["grace_period_end"] == NOW + timedelta(hours=72)

    @pytest.mark.asyncio
    async def test_payment_failed_keeps_existing_grace(self, services, store, make_account):
        grace_end = NOW + timedelta(hours=5)
        make_account(stripe_customer_id="cus_1", billing_status="DUE", grace_period_end=grace_end)

        await services.stripe.handle_payment_failed({"id": "in_123", "customer": "cus_1"})

        account = await store.get(Collections.BILLING_ACCOUNTS, "ba-1")
        assert account["grace_period_end"] == grace_end

    @pytest.mark.asyncio
    async def test_unknown_customer_is_ignored(self, services, store, make_account):
        make_account(stripe_customer_id="cus_1")

        await services.stripe.handle_payment_failed({"id": "in_123", "customer": "cus_other"})

        assert (await store.get(Collections.BILLING_ACCOUNTS, "ba-1"))["billing_status"] == "ACTIVE"

    @pytest.mark.asyncio
    async def test_invoice_paid_restores_account(self, services, store, make_account, closed_invoice):
        make_account(
            stripe_customer_id="cus_1",
            billing_status="SUSPENDED",
            suspended_at=NOW - timedelta(days=1),
        )

        await services.stripe.handle_invoice_paid({"id": "in_123", "customer": "cus_1"})

        invoice = await store.get(Collections.INVOICES, "inv-1")
        account = await store.get(Collections.BILLING_ACCOUNTS, "ba-1")
        assert invoice["status"] == "PAID"
        assert invoice["paid_at"] == NOW
        assert account["billing_status"] == "ACTIVE"
        assert account["suspended_at"] is None
        assert account["grace_period_end"] is None

    @pytest.mark.asyncio
    async def test_invoice_paid_by_metadata(self, services, store, make_account, closed_invoice):
        make_account(stripe_customer_id="cus_1", billing_status="DUE", grace_period_end=NOW)

        await services.stripe.handle_invoice_paid(
            {"id": "in_new", "customer": "cus_1", "metadata": {"invoice_id": "inv-1"}}
        )

        invoice = await store.get(Collections.INVOICES, "inv-1")
        assert invoice["status"] == "PAID"
        assert invoice["stripe_invoice_id"] == "in_new"

    @pytest.mark.asyncio
    async def test_invoice_paid_on_mutable_usage_raises(self, services, store, make_account, closed_invoice):
        make_account(stripe_customer_id="cus_1", billing_status="DUE", grace_period_end=NOW)
        await store.update(Collections.USAGE_AGGREGATIONS, "agg-1", {"is_finalized": False})

        with pytest.raises(InvariantViolationError):
            await services.stripe.handle_invoice_paid({"id": "in_123", "customer": "cus_1"})

        assert (await store.get(Collections.INVOICES, "inv-1"))["status"] == "OPEN"
        assert (await store.get(Collections.BILLING_ACCOUNTS, "ba-1"))["billing_status"] == "DUE"
