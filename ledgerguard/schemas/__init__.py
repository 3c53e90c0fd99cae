"""Pydantic schemas for documents and API request/response validation."""

from ledgerguard.schemas.billing import (
    AccountWarningState,
    AdvanceCycleRequest,
    BillingAccount,
    BillingLookup,
    Invoice,
    LockResult,
    Resolution,
    ResolutionOutcome,
    StatusTransitionRequest,
    WarningResponse,
    WarningState,
)
from ledgerguard.schemas.invariants import (
    CleanupResult,
    CriticalCheckResult,
    CriticalReport,
    GhostMember,
    InvariantReport,
    ViolationRead,
)
from ledgerguard.schemas.usage import (
    AdjustedTimestamp,
    AlertEvaluationResult,
    ClosePeriodRequest,
    PeriodCloseResult,
    ReconciliationResult,
    RecordedUsageEvent,
    RecordUsageRequest,
    UsageAggregation,
    UsageAlert,
    UsageEventCreate,
    UsageEventRead,
    UsageWriteDecision,
)

__all__ = [
    "AccountWarningState",
    "AdvanceCycleRequest",
    "BillingAccount",
    "BillingLookup",
    "Invoice",
    "LockResult",
    "Resolution",
    "ResolutionOutcome",
    "StatusTransitionRequest",
    "WarningResponse",
    "WarningState",
    "CleanupResult",
    "CriticalCheckResult",
    "CriticalReport",
    "GhostMember",
    "InvariantReport",
    "ViolationRead",
    "AdjustedTimestamp",
    "AlertEvaluationResult",
    "ClosePeriodRequest",
    "PeriodCloseResult",
    "ReconciliationResult",
    "RecordedUsageEvent",
    "RecordUsageRequest",
    "UsageAggregation",
    "UsageAlert",
    "UsageEventCreate",
    "UsageEventRead",
    "UsageWriteDecision",
]
