"""Arq task definitions for billing enforcement jobs."""

import logging

from arq import cron
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ledgerguard.config import get_settings
from ledgerguard.services import Services, build_services
from ledgerguard.store.sql import SqlDocumentStore
from ledgerguard.workers.settings import redis_settings

settings = get_settings()
logger = logging.getLogger(__name__)


# Create engine for worker (separate from web app)
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def evaluate_usage_alerts(ctx: dict) -> dict:
    """Evaluate every enabled usage alert outside its cooldown."""
    async with async_session_maker() as db:
        services = build_services(SqlDocumentStore(db), settings)
        results = await services.alerts.evaluate_all_alerts()

    return {
        "evaluated": len(results),
        "triggered": sum(1 for r in results if r.triggered),
        "notified": sum(1 for r in results if r.notification_sent),
        "errors": sum(1 for r in results if r.error),
    }


async def suspend_overdue_accounts(ctx: dict) -> dict:
    """Suspend DUE accounts whose grace period has run out."""
    async with async_session_maker() as db:
        services = build_services(SqlDocumentStore(db), settings)
        suspended = await services.status_guard.suspend_expired_grace_periods()

    return {"suspended": suspended}


async def run_invariant_audit(ctx: dict) -> dict:
    """Run the system-wide billing invariant checks."""
    async with async_session_maker() as db:
        services = build_services(SqlDocumentStore(db), settings)
        report = await services.invariants.run_critical_invariant_checks()

    for result in report.results:
        if result.error:
            logger.warning(f"Invariant check {result.check} could not run: {result.error}")
        elif not result.passed:
            logger.error(f"Invariant check {result.check} failed: {result.message}")

    return report.model_dump()


async def close_billing_period(
    ctx: dict,
    billing_account_id: str,
    workspace_id: str,
    period: str | None = None,
) -> dict:
    """Close a billing period for one workspace.

    Args:
        ctx: Arq context
        billing_account_id: Account being invoiced
        workspace_id: Workspace whose usage is aggregated
        period: YYYY-MM, defaults to the account's current cycle

    Returns:
        The period close result
    """
    async with async_session_maker() as db:
        services: Services = build_services(SqlDocumentStore(db), settings)
        result = await services.period_close.close_period(
            billing_account_id, workspace_id, period
        )

    logger.info(f"Closed period {result.period} for {billing_account_id}: invoice {result.invoice_id}")
    return result.model_dump(mode="json")


async def startup(ctx: dict) -> None:
    """Worker startup hook."""
    logger.info("Worker starting up...")


async def shutdown(ctx: dict) -> None:
    """Worker shutdown hook."""
    logger.info("Worker shutting down...")
    await engine.dispose()


class WorkerSettings:
    """Arq worker settings."""

    functions = [close_billing_period]
    cron_jobs = [
        cron(evaluate_usage_alerts, minute=0),
        cron(suspend_overdue_accounts, minute={0, 15, 30, 45}),
        cron(run_invariant_audit, hour={0, 6, 12, 18}, minute=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
    max_jobs = 10
    job_timeout = 600  # 10 minutes max per job
    keep_result = 3600  # Keep results for 1 hour
