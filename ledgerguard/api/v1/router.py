"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from ledgerguard.api.v1 import alerts, billing, invariants, usage, webhooks

api_router = APIRouter()

api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
api_router.include_router(invariants.router, prefix="/invariants", tags=["invariants"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
