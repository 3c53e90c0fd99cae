"""Usage endpoints."""

from fastapi import APIRouter, status

from ledgerguard.deps import BillingServices
from ledgerguard.schemas.usage import RecordedUsageEvent, RecordUsageRequest

router = APIRouter()


@router.post("/events", response_model=RecordedUsageEvent, status_code=status.HTTP_201_CREATED)
async def record_usage_event(
    request: RecordUsageRequest,
    services: BillingServices,
) -> RecordedUsageEvent:
    """Record a usage event through the billing guards.

    Rejected with 402 for suspended accounts and 409 while the billing cycle
    is locked.
    """
    return await services.usage_guard.record_usage_event(request.lookup(), request.event())
