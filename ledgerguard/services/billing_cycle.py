"""Billing cycle lock.

The store has no atomic compare-and-set, so locking is a write followed by a
verifying read. Each attempt writes its own timestamp; whoever's timestamp
survives the re-read owns the lock. Two writers racing for the same account
both write, and the later write wins for both of them on re-read.

Lock before reading usage for invoicing; only ``advance_cycle`` unlocks.
"""

import logging
import time
from datetime import datetime

from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.schemas.billing import BillingAccount, LockResult
from ledgerguard.store import Collections, DocumentStore, StoreError

logger = logging.getLogger(__name__)


class BillingCycleLock:
    """Locks and unlocks billing cycles on billing account documents."""

    def __init__(self, store: DocumentStore, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def lock(self, billing_account_id: str) -> LockResult:
        """Lock the account's current billing cycle.

        Idempotent: locking a locked cycle reports ``already_locked`` with the
        original timestamp. Store failures are returned in ``error``.
        """
        started = time.perf_counter()
        try:
            account = await self.store.get(Collections.BILLING_ACCOUNTS, billing_account_id)

            if account.get("is_billing_cycle_locked"):
                logger.debug(
                    "Billing cycle for %s already locked (%.1fms)",
                    billing_account_id,
                    (time.perf_counter() - started) * 1000,
                )
                return LockResult(
                    success=False,
                    already_locked=True,
                    locked_at=account.get("billing_cycle_locked_at"),
                )

            locked_at = self.clock()
            await self.store.update(
                Collections.BILLING_ACCOUNTS,
                billing_account_id,
                {
                    "is_billing_cycle_locked": True,
                    "billing_cycle_locked_at": locked_at,
                },
            )

            verified = await self.store.get(Collections.BILLING_ACCOUNTS, billing_account_id)
        except StoreError as e:
            logger.error("Failed to lock billing cycle for %s: %s", billing_account_id, e)
            return LockResult(success=False, already_locked=False, error=str(e))

        stored_at = verified.get("billing_cycle_locked_at")
        elapsed_ms = (time.perf_counter() - started) * 1000

        if stored_at != locked_at:
            logger.info(
                "Lost billing cycle lock race for %s (winner locked at %s, %.1fms)",
                billing_account_id,
                stored_at,
                elapsed_ms,
            )
            return LockResult(success=False, already_locked=True, locked_at=stored_at)

        logger.debug("Locked billing cycle for %s (%.1fms)", billing_account_id, elapsed_ms)
        return LockResult(success=True, already_locked=False, locked_at=locked_at)

    async def unlock(self, billing_account_id: str) -> bool:
        """Clear the lock fields. Unlocking an unlocked cycle succeeds."""
        try:
            await self.store.update(
                Collections.BILLING_ACCOUNTS,
                billing_account_id,
                {
                    "is_billing_cycle_locked": False,
                    "billing_cycle_locked_at": None,
                },
            )
        except StoreError as e:
            logger.error("Failed to unlock billing cycle for %s: %s", billing_account_id, e)
            return False
        return True

    async def is_locked(self, billing_account_id: str) -> bool:
        """Whether the cycle is locked. Read failures count as unlocked."""
        try:
            account = await self.store.get(Collections.BILLING_ACCOUNTS, billing_account_id)
        except StoreError as e:
            logger.warning("Could not read lock state for %s: %s", billing_account_id, e)
            return False
        return bool(account.get("is_billing_cycle_locked"))

    async def advance_cycle(
        self,
        billing_account_id: str,
        billing_cycle_start: datetime,
        billing_cycle_end: datetime,
    ) -> BillingAccount:
        """Move the account to its next cycle and release the lock."""
        document = await self.store.update(
            Collections.BILLING_ACCOUNTS,
            billing_account_id,
            {
                "billing_cycle_start": billing_cycle_start,
                "billing_cycle_end": billing_cycle_end,
                "is_billing_cycle_locked": False,
                "billing_cycle_locked_at": None,
            },
        )
        logger.info(
            "Advanced billing cycle for %s to %s - %s",
            billing_account_id,
            billing_cycle_start.isoformat(),
            billing_cycle_end.isoformat(),
        )
        return BillingAccount.model_validate(document)
