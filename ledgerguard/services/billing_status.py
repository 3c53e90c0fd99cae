"""Billing status guard and state machine.

Resource-creating operations use ``assert_billing_active`` (no unpaid state
tolerated). Most reads and mutations use ``assert_billing_not_suspended``,
which keeps DUE accounts working through their grace period. A missing
account always passes: billing must never block onboarding.

Status transitions:
    ACTIVE    -> DUE        payment failed
    DUE       -> ACTIVE     payment received
    DUE       -> SUSPENDED  grace period expired
    SUSPENDED -> ACTIVE     payment received

ACTIVE -> SUSPENDED would skip the grace period and SUSPENDED -> DUE would
regress suspension, so both are rejected.
"""

import logging
import math
from datetime import datetime, timedelta

from ledgerguard.config import Settings, get_settings
from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.core.errors import BillingError, BillingErrorCode, InvalidStatusTransitionError
from ledgerguard.models.billing_account import BillingStatus
from ledgerguard.schemas.billing import (
    AccountWarningState,
    BillingAccount,
    BillingLookup,
    WarningState,
)
from ledgerguard.services.billing_accounts import BillingAccountResolver
from ledgerguard.store import Collections, DocumentStore, Query, StoreError

logger = logging.getLogger(__name__)

VALID_STATUS_TRANSITIONS: dict[BillingStatus, list[BillingStatus]] = {
    BillingStatus.ACTIVE: [BillingStatus.DUE],
    BillingStatus.DUE: [BillingStatus.ACTIVE, BillingStatus.SUSPENDED],
    BillingStatus.SUSPENDED: [BillingStatus.ACTIVE],
}

NEAR_SUSPENSION_THRESHOLD_HOURS = 48
CRITICAL_THRESHOLD_HOURS = 12

SUSPENDED_MESSAGE = (
    "Your account has been suspended due to an unpaid invoice. "
    "Please update your payment method to restore access."
)
DUE_MESSAGE = "Your account has an unpaid invoice. Please pay to avoid service interruption."


def assert_valid_status_transition(from_status: BillingStatus, to_status: BillingStatus) -> None:
    """Validate a billing status transition.

    Raises:
        InvalidStatusTransitionError: if the state machine forbids it.
    """
    if from_status == to_status:
        return

    valid_targets = VALID_STATUS_TRANSITIONS.get(from_status, [])
    if to_status not in valid_targets:
        raise InvalidStatusTransitionError(from_status, to_status, valid_targets)


def get_account_warning_state(
    account: BillingAccount | None,
    now: datetime | None = None,
) -> AccountWarningState:
    """Derive the banner state for an account.

    WARNING, CRITICAL and SUSPENDED are shown to every organization member.
    A DUE account without a grace period end is reported as WARNING with no
    hours remaining, not NORMAL: an unpaid account always shows the banner.
    """
    if account is None:
        return AccountWarningState(state=WarningState.NORMAL)

    if account.billing_status == BillingStatus.SUSPENDED:
        return AccountWarningState(state=WarningState.SUSPENDED, message=SUSPENDED_MESSAGE)

    if account.billing_status != BillingStatus.DUE:
        return AccountWarningState(state=WarningState.NORMAL)

    if account.grace_period_end is None:
        return AccountWarningState(state=WarningState.WARNING, message=DUE_MESSAGE)

    now = now or utcnow()
    seconds_left = (account.grace_period_end - now).total_seconds()
    hours_remaining = max(0.0, seconds_left / 3600)

    if hours_remaining <= 0:
        # Should already be suspended; the transition job has not run yet.
        return AccountWarningState(
            state=WarningState.CRITICAL,
            hours_remaining=0,
            grace_period_end=account.grace_period_end,
            message="Your grace period has expired. Your account will be suspended shortly.",
        )

    hours = math.ceil(hours_remaining)

    if hours_remaining <= CRITICAL_THRESHOLD_HOURS:
        return AccountWarningState(
            state=WarningState.CRITICAL,
            hours_remaining=hours,
            grace_period_end=account.grace_period_end,
            message=(
                f"URGENT: Your account will be suspended in {hours} hours. "
                "Please pay your invoice immediately."
            ),
        )

    if hours_remaining <= NEAR_SUSPENSION_THRESHOLD_HOURS:
        return AccountWarningState(
            state=WarningState.WARNING,
            hours_remaining=hours,
            grace_period_end=account.grace_period_end,
            message=(
                f"Your account has an unpaid invoice. "
                f"You have {hours} hours before suspension."
            ),
        )

    return AccountWarningState(
        state=WarningState.WARNING,
        hours_remaining=hours,
        grace_period_end=account.grace_period_end,
        message=DUE_MESSAGE,
    )


def should_show_global_warning(state: AccountWarningState) -> bool:
    """Whether the banner goes to all members. These are never dismissible."""
    return state.state in (WarningState.WARNING, WarningState.CRITICAL, WarningState.SUSPENDED)


class BillingStatusGuard:
    """Billing status assertions and transitions."""

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

    async def assert_billing_active(self, lookup: BillingLookup) -> BillingAccount | None:
        """Require an ACTIVE account (or no account at all).

        Raises:
            BillingError: BILLING_SUSPENDED or BILLING_DUE.
        """
        account = await self.resolver.get_billing_account(lookup)
        if account is None:
            return None

        if account.billing_status == BillingStatus.SUSPENDED:
            raise BillingError(
                BillingErrorCode.BILLING_SUSPENDED,
                SUSPENDED_MESSAGE,
                billing_account_id=account.id,
                billing_status=account.billing_status,
            )

        if account.billing_status == BillingStatus.DUE:
            raise BillingError(
                BillingErrorCode.BILLING_DUE,
                DUE_MESSAGE,
                billing_account_id=account.id,
                billing_status=account.billing_status,
            )

        return account

    async def assert_billing_not_suspended(self, lookup: BillingLookup) -> BillingAccount | None:
        """Allow ACTIVE and DUE accounts (or no account).

        Raises:
            BillingError: BILLING_SUSPENDED.
        """
        account = await self.resolver.get_billing_account(lookup)
        if account is None:
            return None

        if account.billing_status == BillingStatus.SUSPENDED:
            raise BillingError(
                BillingErrorCode.BILLING_SUSPENDED,
                SUSPENDED_MESSAGE,
                billing_account_id=account.id,
                billing_status=account.billing_status,
            )

        return account

    async def get_warning_state(self, lookup: BillingLookup) -> AccountWarningState:
        """Warning state for whichever account the lookup resolves to."""
        account = await self.resolver.get_billing_account(lookup)
        return get_account_warning_state(account, self.clock())

    async def transition_status(
        self,
        billing_account_id: str,
        to_status: BillingStatus,
        now: datetime | None = None,
    ) -> BillingAccount:
        """Move an account to a new status.

        Read, validate against the state machine, write, then re-read to
        verify. Entering DUE opens a grace period; entering SUSPENDED stamps
        ``suspended_at``.

        Raises:
            BillingError: BILLING_NOT_FOUND.
            InvalidStatusTransitionError: for a forbidden transition.
        """
        account = await self.resolver.get_by_id(billing_account_id)
        from_status = account.billing_status
        assert_valid_status_transition(from_status, to_status)

        if from_status == to_status:
            return account

        now = now or self.clock()
        fields: dict = {"billing_status": to_status.value}

        if to_status == BillingStatus.DUE:
            fields["grace_period_end"] = now + timedelta(hours=self.settings.grace_period_hours)
        else:
            fields["grace_period_end"] = None

        if to_status == BillingStatus.SUSPENDED:
            fields["suspended_at"] = now
        elif from_status == BillingStatus.SUSPENDED:
            fields["suspended_at"] = None

        await self.store.update(Collections.BILLING_ACCOUNTS, billing_account_id, fields)
        verified = await self.resolver.get_by_id(billing_account_id)

        if verified.billing_status != to_status:
            logger.warning(
                "Billing status transition %s -> %s on %s was overwritten concurrently (now %s)",
                from_status.value,
                to_status.value,
                billing_account_id,
                verified.billing_status.value,
            )
        else:
            logger.info(
                "Billing account %s transitioned %s -> %s",
                billing_account_id,
                from_status.value,
                to_status.value,
            )

        return verified

    async def suspend_expired_grace_periods(
        self,
        now: datetime | None = None,
        limit: int = 100,
    ) -> list[str]:
        """Suspend DUE accounts whose grace period has ended.

        Returns:
            Ids of the accounts suspended in this pass.
        """
        now = now or self.clock()
        accounts = await self.store.list(
            Collections.BILLING_ACCOUNTS,
            [
                Query.equal("billing_status", BillingStatus.DUE.value),
                Query.less_than("grace_period_end", now),
            ],
            limit=limit,
        )

        suspended: list[str] = []
        for document in accounts.documents:
            try:
                account = await self.transition_status(
                    document["id"], BillingStatus.SUSPENDED, now
                )
            except (StoreError, BillingError) as e:
                logger.error("Failed to suspend billing account %s: %s", document["id"], e)
                continue
            if account.billing_status == BillingStatus.SUSPENDED:
                suspended.append(account.id)

        if suspended:
            logger.info("Suspended %d billing accounts after grace period", len(suspended))
        return suspended
