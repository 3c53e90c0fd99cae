"""Billing account endpoints."""

from fastapi import APIRouter, status

from ledgerguard.deps import BillingServices, Lookup
from ledgerguard.schemas.billing import (
    AdvanceCycleRequest,
    BillingAccount,
    LockResult,
    Resolution,
    StatusTransitionRequest,
    WarningResponse,
)
from ledgerguard.schemas.usage import ClosePeriodRequest, PeriodCloseResult
from ledgerguard.services.billing_status import should_show_global_warning

router = APIRouter()


@router.get("/account", response_model=Resolution)
async def get_billing_account(lookup: Lookup, services: BillingServices) -> Resolution:
    """Resolve the billing account for a user, organization or workspace.

    ``outcome`` tells a missing account apart from an unavailable store.
    """
    return await services.resolver.resolve(lookup)


@router.get("/warning", response_model=WarningResponse)
async def get_billing_warning(lookup: Lookup, services: BillingServices) -> WarningResponse:
    """Banner state for the global billing warning."""
    state = await services.status_guard.get_warning_state(lookup)
    show = should_show_global_warning(state)
    return WarningResponse(
        **state.model_dump(),
        show_global_warning=show,
        dismissible=not show,
    )


@router.post("/accounts/{billing_account_id}/status", response_model=BillingAccount)
async def transition_billing_status(
    billing_account_id: str,
    request: StatusTransitionRequest,
    services: BillingServices,
) -> BillingAccount:
    """Move an account through the billing status state machine."""
    return await services.status_guard.transition_status(billing_account_id, request.status)


@router.post("/accounts/{billing_account_id}/cycle/lock", response_model=LockResult)
async def lock_billing_cycle(billing_account_id: str, services: BillingServices) -> LockResult:
    """Lock the current cycle before invoicing."""
    await services.resolver.get_by_id(billing_account_id)
    return await services.cycle_lock.lock(billing_account_id)


@router.post("/accounts/{billing_account_id}/cycle/unlock")
async def unlock_billing_cycle(billing_account_id: str, services: BillingServices) -> dict:
    await services.resolver.get_by_id(billing_account_id)
    unlocked = await services.cycle_lock.unlock(billing_account_id)
    return {"unlocked": unlocked}


@router.post("/accounts/{billing_account_id}/cycle/advance", response_model=BillingAccount)
async def advance_billing_cycle(
    billing_account_id: str,
    request: AdvanceCycleRequest,
    services: BillingServices,
) -> BillingAccount:
    """Start the next cycle and release the lock."""
    await services.resolver.get_by_id(billing_account_id)
    return await services.cycle_lock.advance_cycle(
        billing_account_id,
        request.billing_cycle_start,
        request.billing_cycle_end,
    )


@router.post(
    "/accounts/{billing_account_id}/close-period",
    response_model=PeriodCloseResult,
    status_code=status.HTTP_201_CREATED,
)
async def close_billing_period(
    billing_account_id: str,
    request: ClosePeriodRequest,
    services: BillingServices,
) -> PeriodCloseResult:
    """Lock, aggregate and finalize a period, then draft its invoice."""
    return await services.period_close.close_period(
        billing_account_id,
        request.workspace_id,
        request.period,
    )
