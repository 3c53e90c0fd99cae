"""Stripe payment event handling."""

import logging
from typing import Any

from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.core.errors import InvalidStatusTransitionError
from ledgerguard.models.billing_account import BillingStatus
from ledgerguard.models.invoice import InvoiceStatus
from ledgerguard.services.billing_accounts import BillingAccountResolver
from ledgerguard.services.billing_invariants import BillingInvariants
from ledgerguard.services.billing_status import BillingStatusGuard
from ledgerguard.store import Collections, DocumentStore, Query

logger = logging.getLogger(__name__)


class StripeService:
    """Applies Stripe invoice events to billing accounts and invoices."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: BillingAccountResolver,
        status_guard: BillingStatusGuard,
        invariants: BillingInvariants,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.status_guard = status_guard
        self.invariants = invariants
        self.clock = clock

    async def _local_invoice_id(self, stripe_invoice: Any) -> str | None:
        metadata = stripe_invoice.get("metadata") or {}
        if metadata.get("invoice_id"):
            return metadata["invoice_id"]

        invoices = await self.store.list(
            Collections.INVOICES,
            [Query.equal("stripe_invoice_id", stripe_invoice.get("id"))],
            limit=1,
        )
        if invoices.documents:
            return invoices.documents[0]["id"]
        return None

    async def _transition(self, billing_account_id: str, to_status: BillingStatus) -> None:
        try:
            await self.status_guard.transition_status(billing_account_id, to_status)
        except InvalidStatusTransitionError as e:
            logger.warning("Ignoring Stripe-driven transition for %s: %s", billing_account_id, e)

    async def handle_payment_failed(self, stripe_invoice: Any) -> None:
        """Handle invoice.payment_failed: an ACTIVE account becomes DUE.

        Accounts already DUE or SUSPENDED keep their status and grace period.
        """
        customer_id = stripe_invoice.get("customer")
        account = await self.resolver.get_by_stripe_customer(customer_id) if customer_id else None
        if account is None:
            logger.warning("Payment failed for unknown Stripe customer %s", customer_id)
            return

        if account.billing_status != BillingStatus.ACTIVE:
            logger.info(
                "Payment failed for %s, already %s", account.id, account.billing_status.value
            )
            return

        await self._transition(account.id, BillingStatus.DUE)

    async def handle_invoice_paid(self, stripe_invoice: Any) -> None:
        """Handle invoice.paid: mark the local invoice PAID and restore the account.

        The invoice's usage snapshot is verified immutable before it is marked
        paid.

        Raises:
            InvariantViolationError: if the invoice references mutable usage.
        """
        customer_id = stripe_invoice.get("customer")
        account = await self.resolver.get_by_stripe_customer(customer_id) if customer_id else None
        if account is None:
            logger.warning("Invoice paid for unknown Stripe customer %s", customer_id)
            return

        invoice_id = await self._local_invoice_id(stripe_invoice)
        if invoice_id is not None:
            await self.invariants.assert_invoice_usage_immutable(invoice_id)
            await self.store.update(
                Collections.INVOICES,
                invoice_id,
                {
                    "status": InvoiceStatus.PAID.value,
                    "stripe_invoice_id": stripe_invoice.get("id"),
                    "paid_at": self.clock(),
                },
            )
            logger.info("Invoice %s marked paid", invoice_id)
        else:
            logger.warning(
                "No local invoice for Stripe invoice %s (account %s)",
                stripe_invoice.get("id"),
                account.id,
            )

        if account.billing_status != BillingStatus.ACTIVE:
            await self._transition(account.id, BillingStatus.ACTIVE)
