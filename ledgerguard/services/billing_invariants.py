"""Billing invariants.

1. Invoices reference finalized, immutable usage snapshots.
2. Billing status transitions follow the state machine.
3. Suspended accounts cannot mutate data.
4. No usage is recorded while an account is suspended.
5. Finalized aggregation periods are never modified.

The ``assert_*`` methods raise ``InvariantViolationError``; the ``run_*``
methods collect results for audits and never raise for a violation.
"""

import logging
from datetime import datetime, timedelta

from pydantic import ValidationError

from ledgerguard.config import Settings, get_settings
from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.core.errors import BillingError, InvalidStatusTransitionError
from ledgerguard.core.invariants import InvariantViolationError
from ledgerguard.models.billing_account import BillingStatus
from ledgerguard.models.invoice import InvoiceStatus
from ledgerguard.schemas.billing import BillingAccount, BillingLookup
from ledgerguard.schemas.invariants import (
    CriticalCheckResult,
    CriticalReport,
    InvariantReport,
    ViolationRead,
)
from ledgerguard.schemas.usage import ReconciliationResult, UsageAggregation
from ledgerguard.services.aggregation import list_period_events, period_bounds, summarize_usage
from ledgerguard.services.billing_accounts import BillingAccountResolver
from ledgerguard.services.billing_status import assert_valid_status_transition
from ledgerguard.store import Collections, DocumentNotFoundError, DocumentStore, Query, StoreError

logger = logging.getLogger(__name__)

SUSPENSION_SAMPLE_SIZE = 5


class BillingInvariants:
    """Runtime assertions and audits for billing correctness."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: BillingAccountResolver,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.settings = settings or get_settings()
        self.clock = clock

    # Invoices

    async def assert_invoice_usage_immutable(self, invoice_id: str) -> None:
        """Assert the invoice is linked to a finalized aggregation.

        Raises:
            InvariantViolationError: INVOICE_USAGE_LINK, INVOICE_USAGE_IMMUTABLE
                or INVOICE_USAGE_CHECK_FAILED when the check itself fails.
        """
        try:
            invoice = await self.store.get(Collections.INVOICES, invoice_id)
            snapshot_id = invoice.get("aggregation_snapshot_id")

            if not snapshot_id:
                raise InvariantViolationError(
                    "INVOICE_USAGE_LINK",
                    "Invoice does not reference an aggregation snapshot",
                    {"invoice_id": invoice_id},
                )

            aggregation = await self.store.get(Collections.USAGE_AGGREGATIONS, snapshot_id)
            is_paid = invoice.get("status") == InvoiceStatus.PAID.value

            if not aggregation.get("is_finalized"):
                context = {
                    "invoice_id": invoice_id,
                    "aggregation_snapshot_id": snapshot_id,
                    "is_finalized": False,
                }
                if is_paid:
                    context["severity"] = "critical"
                raise InvariantViolationError(
                    "INVOICE_USAGE_IMMUTABLE",
                    "Invoice references non-finalized aggregation - usage may change",
                    context,
                )

            if is_paid and not aggregation.get("finalized_at"):
                logger.warning(
                    "Paid invoice %s references aggregation %s without finalized_at",
                    invoice_id,
                    snapshot_id,
                )
        except InvariantViolationError:
            raise
        except StoreError as e:
            raise InvariantViolationError(
                "INVOICE_USAGE_CHECK_FAILED",
                "Unable to verify invoice-usage immutability",
                {"invoice_id": invoice_id, "error": str(e)},
            ) from e

    # Billing status

    def assert_status_transition(
        self,
        billing_account_id: str,
        from_status: BillingStatus,
        to_status: BillingStatus,
    ) -> None:
        try:
            assert_valid_status_transition(from_status, to_status)
        except InvalidStatusTransitionError as e:
            raise InvariantViolationError(
                "STATUS_TRANSITION",
                str(e),
                {
                    "billing_account_id": billing_account_id,
                    "from": from_status.value,
                    "to": to_status.value,
                },
            ) from e

    # Suspension

    async def _events_for_entity(
        self,
        entity_id: str,
        start: datetime,
        end: datetime,
    ) -> tuple[int, list[str]]:
        window = [
            Query.greater_than_equal("timestamp", start),
            Query.less_than_equal("timestamp", end),
        ]
        events = await self.store.list(
            Collections.USAGE_EVENTS,
            [Query.equal("billing_entity_id", entity_id), *window],
            limit=10,
        )
        count = events.total
        sample_ids = [e["id"] for e in events.documents]

        if self.settings.legacy_metadata_correlation:
            # Events written before billing_entity_id existed only carry the
            # entity inside their metadata blob.
            legacy = await self.store.list(
                Collections.USAGE_EVENTS,
                [
                    Query.equal("billing_entity_id", None),
                    Query.contains("meta", entity_id),
                    *window,
                ],
                limit=10,
            )
            count += legacy.total
            sample_ids.extend(e["id"] for e in legacy.documents)

        return count, sample_ids

    async def assert_no_usage_during_suspension(
        self,
        billing_account_id: str,
        suspended_at: datetime,
        restored_at: datetime | None = None,
    ) -> None:
        """Assert no usage events fall inside a suspension window.

        Failures to run the check are logged, not raised.

        Raises:
            InvariantViolationError: USAGE_DURING_SUSPENSION.
        """
        end = restored_at or self.clock()
        try:
            account = await self.store.get(Collections.BILLING_ACCOUNTS, billing_account_id)
            entity_id = account.get("organization_id") or account.get("user_id")
            if not entity_id:
                return

            count, sample_ids = await self._events_for_entity(entity_id, suspended_at, end)
        except StoreError as e:
            logger.warning(
                "Suspension usage check failed for %s: %s", billing_account_id, e
            )
            return

        if count > 0:
            raise InvariantViolationError(
                "USAGE_DURING_SUSPENSION",
                f"Found {count} usage events during suspension period",
                {
                    "billing_account_id": billing_account_id,
                    "suspended_at": suspended_at.isoformat(),
                    "restored_at": end.isoformat(),
                    "event_count": count,
                    "sample_event_ids": sample_ids[:SUSPENSION_SAMPLE_SIZE],
                },
            )

    async def assert_suspended_cannot_mutate(self, lookup: BillingLookup) -> None:
        """Raises ``SUSPENDED_MUTATION`` for a suspended account."""
        account = await self.resolver.get_billing_account(lookup)

        if account and account.billing_status == BillingStatus.SUSPENDED:
            raise InvariantViolationError(
                "SUSPENDED_MUTATION",
                "Suspended accounts cannot mutate data. Please pay your invoice to restore access.",
                {
                    "billing_account_id": account.id,
                    "billing_status": account.billing_status.value,
                },
            )

    # Aggregations

    async def assert_aggregation_not_finalized(self, aggregation_id: str) -> None:
        """Assert an aggregation may still be modified.

        A missing aggregation passes: it has not been created yet.

        Raises:
            InvariantViolationError: FINALIZED_AGGREGATION_MODIFICATION.
        """
        try:
            aggregation = await self.store.get(Collections.USAGE_AGGREGATIONS, aggregation_id)
        except DocumentNotFoundError:
            return
        except StoreError as e:
            logger.error("Could not check aggregation %s: %s", aggregation_id, e)
            return

        if aggregation.get("is_finalized"):
            finalized_at = aggregation.get("finalized_at")
            raise InvariantViolationError(
                "FINALIZED_AGGREGATION_MODIFICATION",
                "Cannot modify finalized aggregation - this period has been invoiced",
                {
                    "aggregation_id": aggregation_id,
                    "period": aggregation.get("period"),
                    "finalized_at": finalized_at.isoformat() if finalized_at else None,
                },
            )

    async def assert_aggregation_matches_events(
        self,
        aggregation_id: str,
        tolerance: float | None = None,
    ) -> ReconciliationResult:
        """Recompute an aggregation from its events and compare.

        Each metric may differ by ``tolerance`` relative to the stored value
        (relative to 1 when the stored value is zero).
        """
        if tolerance is None:
            tolerance = self.settings.reconciliation_tolerance

        try:
            aggregation = UsageAggregation.model_validate(
                await self.store.get(Collections.USAGE_AGGREGATIONS, aggregation_id)
            )
            start, end = period_bounds(aggregation.period)
            events = await list_period_events(
                self.store,
                aggregation.workspace_id,
                start,
                end,
                limit=self.settings.usage_query_limit,
            )
        except (StoreError, ValidationError, ValueError) as e:
            logger.warning("Reconciliation of aggregation %s failed: %s", aggregation_id, e)
            return ReconciliationResult(matches=False, error=str(e))

        expected = summarize_usage(events)
        stored = {
            "traffic_gb": aggregation.traffic_total_gb,
            "storage_gb": aggregation.storage_avg_gb,
            "compute_units": aggregation.compute_total_units,
        }
        recomputed = {
            "traffic_gb": expected.traffic_gb,
            "storage_gb": expected.storage_gb,
            "compute_units": expected.compute_units,
        }

        diff = {key: abs(stored[key] - recomputed[key]) for key in stored}
        matches = all(diff[key] <= (stored[key] or 1) * tolerance for key in stored)

        if not matches:
            logger.warning(
                "Aggregation %s does not match its events: diff=%s", aggregation_id, diff
            )

        return ReconciliationResult(matches=matches, diff=diff)

    # Audits

    async def run_billing_invariant_checks(self, billing_account_id: str) -> InvariantReport:
        """Check every invoice of an account, and its current suspension."""
        violations: list[InvariantViolationError] = []

        try:
            invoices = await self.store.list(
                Collections.INVOICES,
                [Query.equal("billing_account_id", billing_account_id)],
                limit=100,
            )
            for invoice in invoices.documents:
                if not invoice.get("aggregation_snapshot_id"):
                    continue
                try:
                    await self.assert_invoice_usage_immutable(invoice["id"])
                except InvariantViolationError as e:
                    violations.append(e)
        except StoreError as e:
            logger.warning("Invoice audit failed for %s: %s", billing_account_id, e)

        try:
            account = await self.resolver.get_by_id(billing_account_id)
        except (BillingError, StoreError, ValidationError) as e:
            logger.warning("Suspension audit skipped for %s: %s", billing_account_id, e)
            account = None

        if account is not None and account.suspended_at is not None:
            try:
                await self.assert_no_usage_during_suspension(account.id, account.suspended_at)
            except InvariantViolationError as e:
                violations.append(e)

        return InvariantReport(
            passed=not violations,
            violations=[ViolationRead.model_validate(v.to_dict()) for v in violations],
        )

    async def _check_no_usage_during_suspension(self, now: datetime) -> CriticalCheckResult:
        accounts = await self.store.list(
            Collections.BILLING_ACCOUNTS,
            [Query.equal("billing_status", BillingStatus.SUSPENDED.value)],
            limit=100,
        )

        violation_count = 0
        for document in accounts.documents:
            account = BillingAccount.model_validate(document)
            if account.suspended_at is None:
                continue
            count, _ = await self._events_for_entity(
                account.billing_entity_id, account.suspended_at, now
            )
            if count > 0:
                violation_count += 1

        return CriticalCheckResult(
            check="NO_USAGE_DURING_SUSPENSION",
            passed=violation_count == 0,
            message=(
                f"Checked {accounts.total} suspended accounts"
                if violation_count == 0
                else f"Found {violation_count} accounts with usage during suspension"
            ),
        )

    async def _check_paid_invoices_finalized(self) -> CriticalCheckResult:
        invoices = await self.store.list(
            Collections.INVOICES,
            [Query.equal("status", InvoiceStatus.PAID.value)],
            limit=50,
        )

        violation_count = 0
        for invoice in invoices.documents:
            snapshot_id = invoice.get("aggregation_snapshot_id")
            if not snapshot_id:
                continue
            try:
                aggregation = await self.store.get(Collections.USAGE_AGGREGATIONS, snapshot_id)
            except DocumentNotFoundError:
                violation_count += 1
                continue
            if not aggregation.get("is_finalized"):
                violation_count += 1

        return CriticalCheckResult(
            check="PAID_INVOICES_FINALIZED",
            passed=violation_count == 0,
            message=(
                f"Checked {invoices.total} paid invoices"
                if violation_count == 0
                else f"Found {violation_count} paid invoices with non-finalized aggregations"
            ),
        )

    async def _check_no_stale_cycle_locks(self, now: datetime) -> CriticalCheckResult:
        accounts = await self.store.list(
            Collections.BILLING_ACCOUNTS,
            [Query.equal("is_billing_cycle_locked", True)],
            limit=50,
        )

        stale_after = timedelta(minutes=self.settings.stale_lock_minutes)
        stale_count = sum(
            1
            for account in accounts.documents
            if account.get("billing_cycle_locked_at")
            and now - account["billing_cycle_locked_at"] > stale_after
        )

        return CriticalCheckResult(
            check="NO_STALE_CYCLE_LOCKS",
            passed=stale_count == 0,
            message=(
                f"Checked {accounts.total} locked accounts"
                if stale_count == 0
                else (
                    f"Found {stale_count} accounts with stale locks "
                    f"(>{self.settings.stale_lock_minutes}min)"
                )
            ),
        )

    async def run_critical_invariant_checks(self, now: datetime | None = None) -> CriticalReport:
        """System-wide checks for startup, cron and health monitoring.

        A check that cannot run is reported as passed with its error, so a
        store outage does not page as a billing bug.
        """
        now = now or self.clock()
        checks = [
            (
                "NO_USAGE_DURING_SUSPENSION",
                lambda: self._check_no_usage_during_suspension(now),
            ),
            ("PAID_INVOICES_FINALIZED", self._check_paid_invoices_finalized),
            ("NO_STALE_CYCLE_LOCKS", lambda: self._check_no_stale_cycle_locks(now)),
        ]

        results: list[CriticalCheckResult] = []
        for name, check in checks:
            try:
                results.append(await check())
            except (StoreError, ValidationError) as e:
                logger.error("Critical invariant check %s failed to run: %s", name, e)
                results.append(CriticalCheckResult(check=name, passed=True, error=str(e)))

        all_passed = all(r.passed for r in results)
        if not all_passed:
            logger.error(
                "Critical invariant checks failed: %s",
                [r.check for r in results if not r.passed],
            )
        return CriticalReport(all_passed=all_passed, results=results)
