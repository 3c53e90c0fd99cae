"""Billing guard errors."""

from enum import Enum

from ledgerguard.models.billing_account import BillingStatus


class BillingErrorCode(str, Enum):
    """Machine-readable billing error codes."""

    BILLING_SUSPENDED = "BILLING_SUSPENDED"
    BILLING_DUE = "BILLING_DUE"
    BILLING_NOT_FOUND = "BILLING_NOT_FOUND"
    BILLING_CYCLE_LOCKED = "BILLING_CYCLE_LOCKED"
    USAGE_WRITE_BLOCKED = "USAGE_WRITE_BLOCKED"


class BillingError(Exception):
    """Raised when billing state forbids an operation.

    Carries the account id and status so callers can branch, e.g. redirect
    to the payment page for ``BILLING_DUE``.
    """

    def __init__(
        self,
        code: BillingErrorCode,
        message: str,
        billing_account_id: str | None = None,
        billing_status: BillingStatus | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.billing_account_id = billing_account_id
        self.billing_status = billing_status


class InvalidStatusTransitionError(ValueError):
    """Raised for a billing status change the state machine forbids."""

    def __init__(
        self,
        from_status: BillingStatus,
        to_status: BillingStatus,
        valid_targets: list[BillingStatus],
    ) -> None:
        targets = ", ".join(t.value for t in valid_targets) or "none"
        super().__init__(
            f"Invalid billing status transition: {from_status.value} -> {to_status.value}. "
            f"Valid transitions from {from_status.value}: {targets}"
        )
        self.from_status = from_status
        self.to_status = to_status
        self.valid_targets = valid_targets
