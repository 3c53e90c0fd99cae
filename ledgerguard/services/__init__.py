"""Billing services.

``build_services`` wires every service around one document store, so a
request, a worker job or a test shares one consistent view.
"""

from dataclasses import dataclass

from ledgerguard.config import Settings, get_settings
from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.core.invariants import InvariantChecker
from ledgerguard.services.alerts import AlertEvaluationJob
from ledgerguard.services.billing_accounts import BillingAccountResolver
from ledgerguard.services.billing_cycle import BillingCycleLock
from ledgerguard.services.billing_invariants import BillingInvariants
from ledgerguard.services.billing_status import BillingStatusGuard
from ledgerguard.services.org_invariants import OrgInvariants
from ledgerguard.services.period_close import PeriodCloseService
from ledgerguard.services.stripe_service import StripeService
from ledgerguard.services.usage_guard import UsageWriteGuard
from ledgerguard.store import DocumentStore


@dataclass
class Services:
    """Billing services bound to one store."""

    store: DocumentStore
    settings: Settings
    checker: InvariantChecker
    resolver: BillingAccountResolver
    status_guard: BillingStatusGuard
    cycle_lock: BillingCycleLock
    usage_guard: UsageWriteGuard
    invariants: BillingInvariants
    org_invariants: OrgInvariants
    alerts: AlertEvaluationJob
    period_close: PeriodCloseService
    stripe: StripeService


def build_services(
    store: DocumentStore,
    settings: Settings | None = None,
    checker: InvariantChecker | None = None,
    clock: Clock = utcnow,
) -> Services:
    settings = settings or get_settings()
    checker = checker or InvariantChecker()

    resolver = BillingAccountResolver(store)
    status_guard = BillingStatusGuard(store, resolver, settings, clock)
    cycle_lock = BillingCycleLock(store, clock)
    invariants = BillingInvariants(store, resolver, settings, clock)

    return Services(
        store=store,
        settings=settings,
        checker=checker,
        resolver=resolver,
        status_guard=status_guard,
        cycle_lock=cycle_lock,
        usage_guard=UsageWriteGuard(store, status_guard, cycle_lock, clock),
        invariants=invariants,
        org_invariants=OrgInvariants(store, checker),
        alerts=AlertEvaluationJob(store, resolver, settings, clock),
        period_close=PeriodCloseService(store, resolver, cycle_lock, invariants, settings, clock),
        stripe=StripeService(store, resolver, status_guard, invariants, clock),
    )


__all__ = [
    "AlertEvaluationJob",
    "BillingAccountResolver",
    "BillingCycleLock",
    "BillingInvariants",
    "BillingStatusGuard",
    "OrgInvariants",
    "PeriodCloseService",
    "Services",
    "StripeService",
    "UsageWriteGuard",
    "build_services",
]
