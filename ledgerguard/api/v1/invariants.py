"""Invariant audit endpoints."""

from fastapi import APIRouter, Query

from ledgerguard.deps import BillingServices
from ledgerguard.schemas.invariants import (
    CleanupResult,
    CriticalReport,
    GhostMember,
    InvariantReport,
)
from ledgerguard.schemas.usage import ReconciliationResult

router = APIRouter()


@router.get("/critical", response_model=CriticalReport)
async def run_critical_checks(services: BillingServices) -> CriticalReport:
    """System-wide billing checks, for monitoring."""
    return await services.invariants.run_critical_invariant_checks()


@router.get("/accounts/{billing_account_id}", response_model=InvariantReport)
async def audit_billing_account(
    billing_account_id: str,
    services: BillingServices,
) -> InvariantReport:
    return await services.invariants.run_billing_invariant_checks(billing_account_id)


@router.get("/organizations/{organization_id}", response_model=InvariantReport)
async def audit_organization(organization_id: str, services: BillingServices) -> InvariantReport:
    return await services.org_invariants.run_org_invariant_self_checks(organization_id)


@router.get("/aggregations/{aggregation_id}/reconcile", response_model=ReconciliationResult)
async def reconcile_aggregation(
    aggregation_id: str,
    services: BillingServices,
    tolerance: float | None = Query(default=None, gt=0, le=1),
) -> ReconciliationResult:
    """Compare a stored aggregation with totals recomputed from its events."""
    return await services.invariants.assert_aggregation_matches_events(aggregation_id, tolerance)


@router.get("/ghost-members", response_model=list[GhostMember])
async def list_ghost_members(services: BillingServices) -> list[GhostMember]:
    return await services.org_invariants.find_ghost_workspace_members()


@router.post("/ghost-members/cleanup", response_model=CleanupResult)
async def cleanup_ghost_members(
    services: BillingServices,
    dry_run: bool = True,
) -> CleanupResult:
    """Delete ghost memberships. Defaults to a dry run."""
    ghosts = await services.org_invariants.find_ghost_workspace_members()
    return await services.org_invariants.cleanup_ghost_members(ghosts, dry_run=dry_run)
