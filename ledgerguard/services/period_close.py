"""Billing period close: lock, aggregate, finalize, invoice."""

import logging
from datetime import datetime
from uuid import uuid4

from ledgerguard.config import Settings, get_settings
from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.models.invoice import InvoiceStatus
from ledgerguard.schemas.usage import PeriodCloseResult, UsageAggregation
from ledgerguard.services.aggregation import (
    current_period,
    list_period_events,
    period_bounds,
    summarize_usage,
)
from ledgerguard.services.billing_accounts import BillingAccountResolver
from ledgerguard.services.billing_cycle import BillingCycleLock
from ledgerguard.services.billing_invariants import BillingInvariants
from ledgerguard.store import Collections, DocumentStore, Query, StoreUnavailableError

logger = logging.getLogger(__name__)


class PeriodCloseService:
    """Closes a workspace's usage period into an invoice snapshot."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: BillingAccountResolver,
        cycle_lock: BillingCycleLock,
        invariants: BillingInvariants,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.cycle_lock = cycle_lock
        self.invariants = invariants
        self.settings = settings or get_settings()
        self.clock = clock

    async def _find_aggregation(self, workspace_id: str, period: str) -> dict | None:
        aggregations = await self.store.list(
            Collections.USAGE_AGGREGATIONS,
            [
                Query.equal("workspace_id", workspace_id),
                Query.equal("period", period),
            ],
            limit=1,
        )
        return aggregations.documents[0] if aggregations.documents else None

    async def rebuild_aggregation(self, workspace_id: str, period: str) -> UsageAggregation:
        """Recompute a workspace's period totals from its usage events.

        Raises:
            InvariantViolationError: if the period is already finalized.
        """
        start, end = period_bounds(period)
        existing = await self._find_aggregation(workspace_id, period)
        if existing is not None:
            await self.invariants.assert_aggregation_not_finalized(existing["id"])

        events = await list_period_events(
            self.store,
            workspace_id,
            start,
            end,
            limit=self.settings.usage_query_limit,
        )
        totals = summarize_usage(events)
        fields = {
            "workspace_id": workspace_id,
            "period": period,
            "traffic_total_gb": totals.traffic_gb,
            "storage_avg_gb": totals.storage_gb,
            "compute_total_units": totals.compute_units,
            "is_finalized": False,
            "finalized_at": None,
        }

        if existing is None:
            document = await self.store.create(Collections.USAGE_AGGREGATIONS, str(uuid4()), fields)
        else:
            document = await self.store.update(Collections.USAGE_AGGREGATIONS, existing["id"], fields)

        logger.info(
            "Rebuilt usage aggregation %s for workspace %s period %s from %d events",
            document["id"],
            workspace_id,
            period,
            len(events),
        )
        return UsageAggregation.model_validate(document)

    async def finalize_aggregation(
        self,
        aggregation_id: str,
        now: datetime | None = None,
    ) -> UsageAggregation:
        """Freeze an aggregation. Finalizing twice keeps the first timestamp."""
        document = await self.store.get(Collections.USAGE_AGGREGATIONS, aggregation_id)
        if document.get("is_finalized"):
            return UsageAggregation.model_validate(document)

        document = await self.store.update(
            Collections.USAGE_AGGREGATIONS,
            aggregation_id,
            {"is_finalized": True, "finalized_at": now or self.clock()},
        )
        logger.info("Finalized usage aggregation %s", aggregation_id)
        return UsageAggregation.model_validate(document)

    async def _draft_invoice(self, billing_account_id: str, aggregation_id: str) -> str:
        invoices = await self.store.list(
            Collections.INVOICES,
            [Query.equal("aggregation_snapshot_id", aggregation_id)],
            limit=1,
        )
        if invoices.documents:
            return invoices.documents[0]["id"]

        invoice = await self.store.create(
            Collections.INVOICES,
            str(uuid4()),
            {
                "billing_account_id": billing_account_id,
                "aggregation_snapshot_id": aggregation_id,
                "status": InvoiceStatus.DRAFT.value,
                "stripe_invoice_id": None,
                "paid_at": None,
            },
        )
        return invoice["id"]

    async def close_period(
        self,
        billing_account_id: str,
        workspace_id: str,
        period: str | None = None,
    ) -> PeriodCloseResult:
        """Close a period and return the invoice referencing its snapshot.

        The cycle stays locked afterwards; ``advance_cycle`` releases it.
        Re-running on a closed period returns the existing snapshot and
        invoice.

        Raises:
            BillingError: BILLING_NOT_FOUND.
            StoreUnavailableError: if the cycle could not be locked.
        """
        account = await self.resolver.get_by_id(billing_account_id)
        period = period or current_period(account.billing_cycle_start)

        lock = await self.cycle_lock.lock(account.id)
        if lock.error:
            raise StoreUnavailableError(f"Could not lock billing cycle: {lock.error}")

        now = self.clock()
        existing = await self._find_aggregation(workspace_id, period)
        if existing is not None and existing.get("is_finalized"):
            aggregation = UsageAggregation.model_validate(existing)
        else:
            rebuilt = await self.rebuild_aggregation(workspace_id, period)
            aggregation = await self.finalize_aggregation(rebuilt.id, now)

        invoice_id = await self._draft_invoice(account.id, aggregation.id)
        await self.invariants.assert_invoice_usage_immutable(invoice_id)

        logger.info(
            "Closed period %s for workspace %s (billing account %s, invoice %s)",
            period,
            workspace_id,
            account.id,
            invoice_id,
        )
        return PeriodCloseResult(
            billing_account_id=account.id,
            workspace_id=workspace_id,
            period=period,
            locked_at=lock.locked_at,
            lock_acquired=lock.success,
            aggregation=aggregation,
            invoice_id=invoice_id,
        )
