"""Usage write guard.

Every usage write goes through ``assert_can_write_usage``: suspended accounts
and locked billing cycles reject writes. Events that arrive late for an
already-locked cycle are reclassified into a live cycle rather than mutating
a closed period, and events dated after the cycle end are clamped to now.
"""

import logging
from datetime import datetime
from uuid import uuid4

from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.core.errors import BillingError, BillingErrorCode
from ledgerguard.schemas.billing import BillingAccount, BillingLookup
from ledgerguard.schemas.usage import (
    AdjustedTimestamp,
    RecordedUsageEvent,
    UsageEventCreate,
    UsageEventRead,
    UsageWriteDecision,
)
from ledgerguard.services.billing_cycle import BillingCycleLock
from ledgerguard.services.billing_status import BillingStatusGuard
from ledgerguard.store import Collections, DocumentNotFoundError, DocumentStore

logger = logging.getLogger(__name__)


def adjust_event_for_locked_cycle(
    event_timestamp: datetime,
    account: BillingAccount | None,
    now: datetime | None = None,
) -> AdjustedTimestamp:
    """Normalize an event timestamp against the account's billing cycle.

    Never raises. Without an account the timestamp is returned unchanged.
    Events before the start of a locked cycle move to the cycle start; events
    after the cycle end, locked or not, are clamped to ``now``.
    """
    if account is None:
        return AdjustedTimestamp(timestamp=event_timestamp, was_adjusted=False)

    if account.is_billing_cycle_locked and event_timestamp < account.billing_cycle_start:
        return AdjustedTimestamp(
            timestamp=account.billing_cycle_start,
            was_adjusted=True,
            adjust_reason=(
                f"Event timestamp {event_timestamp.isoformat()} precedes locked cycle; "
                f"moved to cycle start {account.billing_cycle_start.isoformat()}"
            ),
        )

    if event_timestamp > account.billing_cycle_end:
        now = now or utcnow()
        return AdjustedTimestamp(
            timestamp=now,
            was_adjusted=True,
            adjust_reason=(
                f"Event timestamp {event_timestamp.isoformat()} is after cycle end; "
                f"moved to {now.isoformat()}"
            ),
        )

    return AdjustedTimestamp(timestamp=event_timestamp, was_adjusted=False)


class UsageWriteGuard:
    """Gatekeeper for usage event writes."""

    def __init__(
        self,
        store: DocumentStore,
        status_guard: BillingStatusGuard,
        cycle_lock: BillingCycleLock,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.status_guard = status_guard
        self.cycle_lock = cycle_lock
        self.clock = clock

    async def assert_can_write_usage(self, lookup: BillingLookup) -> UsageWriteDecision:
        """Check that usage may be written for the lookup.

        Raises:
            BillingError: BILLING_SUSPENDED or BILLING_CYCLE_LOCKED.
        """
        account = await self.status_guard.assert_billing_not_suspended(lookup)
        if account is None:
            return UsageWriteDecision(account=None, allowed=True)

        if await self.cycle_lock.is_locked(account.id):
            raise BillingError(
                BillingErrorCode.BILLING_CYCLE_LOCKED,
                "Billing cycle is locked for invoicing. Usage cannot be recorded "
                "against this cycle.",
                billing_account_id=account.id,
                billing_status=account.billing_status,
            )

        return UsageWriteDecision(account=account, allowed=True)

    async def _billing_entity_id(
        self,
        account: BillingAccount | None,
        workspace_id: str,
    ) -> str | None:
        if account is not None:
            return account.billing_entity_id

        try:
            workspace = await self.store.get(Collections.WORKSPACES, workspace_id)
        except DocumentNotFoundError:
            raise BillingError(
                BillingErrorCode.USAGE_WRITE_BLOCKED,
                f"Workspace {workspace_id} not found. Usage cannot be recorded.",
            ) from None
        return workspace.get("organization_id") or workspace.get("user_id")

    async def record_usage_event(
        self,
        lookup: BillingLookup,
        event: UsageEventCreate,
    ) -> RecordedUsageEvent:
        """Guard, reclassify and persist a usage event.

        Usage events are write-once; nothing in the service updates them.
        """
        decision = await self.assert_can_write_usage(lookup)
        adjusted = adjust_event_for_locked_cycle(event.timestamp, decision.account, self.clock())
        billing_entity_id = await self._billing_entity_id(decision.account, event.workspace_id)

        document = await self.store.create(
            Collections.USAGE_EVENTS,
            str(uuid4()),
            {
                "workspace_id": event.workspace_id,
                "billing_entity_id": billing_entity_id,
                "resource_type": event.resource_type.value,
                "units": event.units,
                "weighted_units": event.weighted_units,
                "timestamp": adjusted.timestamp,
                "meta": event.meta,
            },
        )

        if adjusted.was_adjusted:
            logger.info("Usage event %s reclassified: %s", document["id"], adjusted.adjust_reason)

        return RecordedUsageEvent(
            event=UsageEventRead.model_validate(document),
            was_adjusted=adjusted.was_adjusted,
            adjust_reason=adjusted.adjust_reason,
        )
