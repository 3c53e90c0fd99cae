"""Usage alert endpoints."""

from fastapi import APIRouter

from ledgerguard.deps import BillingServices
from ledgerguard.schemas.usage import AlertEvaluationResult

router = APIRouter()


@router.post("/evaluate", response_model=list[AlertEvaluationResult])
async def evaluate_alerts(services: BillingServices) -> list[AlertEvaluationResult]:
    """Run the alert evaluation job now."""
    return await services.alerts.evaluate_all_alerts()
