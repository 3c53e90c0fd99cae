"""Billing schemas."""

from datetime import datetime
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, model_validator

from ledgerguard.models.billing_account import BillingAccountType, BillingStatus


class BillingLookup(BaseModel):
    """Identifiers a billing account can be resolved from."""

    user_id: str | None = None
    organization_id: str | None = None
    workspace_id: str | None = None


class BillingAccount(BaseModel):
    """Billing account document."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    type: BillingAccountType
    user_id: str | None = None
    organization_id: str | None = None
    billing_status: BillingStatus = BillingStatus.ACTIVE
    billing_cycle_start: datetime
    billing_cycle_end: datetime
    is_billing_cycle_locked: bool = False
    billing_cycle_locked_at: datetime | None = None
    grace_period_end: datetime | None = None
    suspended_at: datetime | None = None
    stripe_customer_id: str | None = None

    @model_validator(mode="after")
    def check_owner(self) -> "BillingAccount":
        if self.type == BillingAccountType.ORG:
            if not self.organization_id or self.user_id:
                raise ValueError("ORG billing account must reference only an organization")
        elif not self.user_id or self.organization_id:
            raise ValueError("PERSONAL billing account must reference only a user")
        return self

    @property
    def billing_entity_id(self) -> str:
        """Id of the organization or user this account bills."""
        return self.organization_id or self.user_id  # type: ignore[return-value]


class ResolutionOutcome(str, Enum):
    """Outcome of a billing account lookup."""

    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"


class Resolution(BaseModel):
    """Account lookup result that keeps "no account" and "store down" apart."""

    outcome: ResolutionOutcome
    account: BillingAccount | None = None
    error: str | None = None


class StatusTransitionRequest(BaseModel):
    """Request body for a billing status change."""

    status: BillingStatus


class LockResult(BaseModel):
    """Result of a billing cycle lock attempt."""

    success: bool
    already_locked: bool
    locked_at: datetime | None = None
    error: str | None = None


class AdvanceCycleRequest(BaseModel):
    """New billing cycle bounds."""

    billing_cycle_start: AwareDatetime
    billing_cycle_end: AwareDatetime

    @model_validator(mode="after")
    def check_bounds(self) -> "AdvanceCycleRequest":
        if self.billing_cycle_end <= self.billing_cycle_start:
            raise ValueError("billing_cycle_end must be after billing_cycle_start")
        return self


class WarningState(str, Enum):
    """Banner levels."""

    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    SUSPENDED = "SUSPENDED"


class AccountWarningState(BaseModel):
    """Warning state with context for the global banner."""

    state: WarningState
    hours_remaining: int | None = None
    grace_period_end: datetime | None = None
    message: str | None = None


class WarningResponse(AccountWarningState):
    """Warning state plus whether every member must see it."""

    show_global_warning: bool
    dismissible: bool


class Invoice(BaseModel):
    """Invoice document."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    billing_account_id: str
    aggregation_snapshot_id: str | None = None
    status: str
    stripe_invoice_id: str | None = None
    paid_at: datetime | None = None
