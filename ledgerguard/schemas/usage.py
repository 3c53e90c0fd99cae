"""Usage schemas."""

from datetime import datetime
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from ledgerguard.models.usage import ResourceType
from ledgerguard.models.usage_alert import AlertType
from ledgerguard.schemas.billing import BillingAccount, BillingLookup


class UsageEventCreate(BaseModel):
    """Schema for recording a usage event."""

    workspace_id: str
    resource_type: ResourceType
    units: float = Field(ge=0)
    weighted_units: float | None = Field(default=None, ge=0)
    timestamp: AwareDatetime
    meta: dict[str, Any] | None = None


class RecordUsageRequest(UsageEventCreate):
    """Usage event plus the billing lookup used to guard the write."""

    user_id: str | None = None
    organization_id: str | None = None

    def lookup(self) -> BillingLookup:
        return BillingLookup(
            user_id=self.user_id,
            organization_id=self.organization_id,
            workspace_id=self.workspace_id,
        )

    def event(self) -> UsageEventCreate:
        return UsageEventCreate.model_validate(self.model_dump(include=set(UsageEventCreate.model_fields)))


class UsageEventRead(BaseModel):
    """Stored usage event."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    workspace_id: str
    billing_entity_id: str | None = None
    resource_type: ResourceType
    units: float
    weighted_units: float | None = None
    timestamp: datetime
    meta: dict[str, Any] | None = None


class RecordedUsageEvent(BaseModel):
    """Result of a guarded usage write."""

    event: UsageEventRead
    was_adjusted: bool
    adjust_reason: str | None = None


class UsageWriteDecision(BaseModel):
    """Outcome of the usage write guard."""

    account: BillingAccount | None = None
    allowed: bool


class AdjustedTimestamp(BaseModel):
    """Event timestamp after late-event reclassification."""

    timestamp: datetime
    was_adjusted: bool
    adjust_reason: str | None = None


class UsageAggregation(BaseModel):
    """Monthly usage rollup document."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    workspace_id: str
    period: str
    traffic_total_gb: float = 0.0
    storage_avg_gb: float = 0.0
    compute_total_units: float = 0.0
    is_finalized: bool = False
    finalized_at: datetime | None = None


class UsageAlert(BaseModel):
    """Usage alert document."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    workspace_id: str
    resource_type: ResourceType
    threshold: float
    alert_type: AlertType = AlertType.IN_APP
    webhook_url: str | None = None
    is_enabled: bool = True
    last_triggered_at: datetime | None = None


class AlertEvaluationResult(BaseModel):
    """Outcome of evaluating one alert."""

    alert_id: str
    workspace_id: str
    resource_type: ResourceType
    threshold: float
    current_usage: float = 0.0
    triggered: bool = False
    notification_sent: bool = False
    error: str | None = None


class ReconciliationResult(BaseModel):
    """Stored aggregation compared against totals recomputed from events."""

    matches: bool
    diff: dict[str, float] | None = None
    error: str | None = None


class PeriodCloseResult(BaseModel):
    """Outcome of closing a billing period for one workspace."""

    billing_account_id: str
    workspace_id: str
    period: str
    locked_at: datetime | None = None
    lock_acquired: bool
    aggregation: UsageAggregation
    invoice_id: str


class ClosePeriodRequest(BaseModel):
    """Request body for closing a billing period."""

    workspace_id: str
    period: str | None = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
