"""Usage alert evaluation job.

Compares the current month's usage against configured thresholds and
notifies the workspace. Alerts are warnings only: they never throttle or
block usage.
"""

import logging
from datetime import datetime, timedelta
from uuid import uuid4

import httpx
from pydantic import ValidationError

from ledgerguard.config import Settings, get_settings
from ledgerguard.core.clock import Clock, utcnow
from ledgerguard.models.billing_account import BillingStatus
from ledgerguard.models.usage_alert import AlertType
from ledgerguard.schemas.billing import BillingLookup
from ledgerguard.schemas.usage import AlertEvaluationResult, UsageAlert
from ledgerguard.services.aggregation import (
    current_period,
    list_period_events,
    period_bounds,
    summarize_usage,
)
from ledgerguard.services.billing_accounts import BillingAccountResolver
from ledgerguard.store import Collections, DocumentStore, Query, StoreError

logger = logging.getLogger(__name__)


class AlertEvaluationJob:
    """Evaluates usage alerts and dispatches notifications."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: BillingAccountResolver,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.settings = settings or get_settings()
        self.clock = clock

    async def get_current_month_usage(self, alert: UsageAlert, now: datetime) -> float:
        """Usage of the alert's resource in the current UTC month."""
        start, end = period_bounds(current_period(now))
        events = await list_period_events(
            self.store,
            alert.workspace_id,
            start,
            end,
            limit=self.settings.usage_query_limit,
            resource_type=alert.resource_type,
        )
        return summarize_usage(events).for_resource(alert.resource_type)

    def _message(self, alert: UsageAlert, current_usage: float) -> str:
        return (
            f"Your {alert.resource_type.value} usage ({current_usage:.2f}) has exceeded "
            f"the configured threshold ({alert.threshold})."
        )

    async def send_in_app_notification(
        self,
        alert: UsageAlert,
        current_usage: float,
        now: datetime,
    ) -> bool:
        """Create a workspace-wide notification."""
        try:
            await self.store.create(
                Collections.NOTIFICATIONS,
                str(uuid4()),
                {
                    "workspace_id": alert.workspace_id,
                    "user_id": None,
                    "type": "USAGE_ALERT",
                    "title": f"Usage Alert: {alert.resource_type.value} threshold exceeded",
                    "message": self._message(alert, current_usage),
                    "is_read": False,
                    "created_at": now,
                },
            )
        except StoreError as e:
            logger.error("Failed to create usage alert notification for %s: %s", alert.id, e)
            return False
        return True

    async def send_webhook_notification(
        self,
        alert: UsageAlert,
        current_usage: float,
        now: datetime,
    ) -> bool:
        """POST the alert to its webhook. Only a 2xx response counts as sent."""
        if not alert.webhook_url:
            return False

        payload = {
            "alertId": alert.id,
            "workspaceId": alert.workspace_id,
            "resourceType": alert.resource_type.value,
            "threshold": alert.threshold,
            "currentUsage": current_usage,
            "triggeredAt": now.isoformat(),
            "message": (
                f"Usage alert: {alert.resource_type.value} usage ({current_usage:.2f}) "
                f"exceeded threshold ({alert.threshold})"
            ),
        }

        try:
            async with httpx.AsyncClient(timeout=self.settings.webhook_timeout_seconds) as client:
                response = await client.post(alert.webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Usage alert webhook for %s failed: %s", alert.id, e)
            return False

        if not response.is_success:
            logger.warning(
                "Usage alert webhook for %s returned %s", alert.id, response.status_code
            )
        return response.is_success

    async def dispatch(self, alert: UsageAlert, current_usage: float, now: datetime) -> bool:
        match alert.alert_type:
            case AlertType.WEBHOOK:
                return await self.send_webhook_notification(alert, current_usage, now)
            case AlertType.EMAIL:
                # No mail transport here, email alerts land in-app.
                return await self.send_in_app_notification(alert, current_usage, now)
            case _:
                return await self.send_in_app_notification(alert, current_usage, now)

    async def evaluate_alert(
        self,
        alert: UsageAlert,
        now: datetime | None = None,
    ) -> AlertEvaluationResult:
        """Evaluate one alert. Failures end up in ``error``, never raised.

        Suspended accounts are skipped: they cannot act on an alert.
        """
        now = now or self.clock()
        result = AlertEvaluationResult(
            alert_id=alert.id,
            workspace_id=alert.workspace_id,
            resource_type=alert.resource_type,
            threshold=alert.threshold,
        )

        try:
            account = await self.resolver.get_billing_account(
                BillingLookup(workspace_id=alert.workspace_id)
            )
            if account is not None and account.billing_status == BillingStatus.SUSPENDED:
                result.error = "Account suspended - skipping alert evaluation"
                return result

            result.current_usage = await self.get_current_month_usage(alert, now)

            if result.current_usage >= alert.threshold:
                result.triggered = True
                result.notification_sent = await self.dispatch(alert, result.current_usage, now)

                if result.notification_sent:
                    await self.store.update(
                        Collections.USAGE_ALERTS,
                        alert.id,
                        {"last_triggered_at": now},
                    )
        except Exception as e:
            logger.exception("Usage alert %s evaluation failed", alert.id)
            result.error = str(e)

        return result

    async def evaluate_all_alerts(self, now: datetime | None = None) -> list[AlertEvaluationResult]:
        """Evaluate every enabled alert outside its cooldown."""
        now = now or self.clock()
        cooldown = timedelta(hours=self.settings.alert_cooldown_hours)

        alerts = await self.store.list(
            Collections.USAGE_ALERTS,
            [Query.equal("is_enabled", True)],
            limit=self.settings.alert_batch_limit,
        )

        results: list[AlertEvaluationResult] = []
        for document in alerts.documents:
            try:
                alert = UsageAlert.model_validate(document)
            except ValidationError as e:
                logger.warning("Skipping invalid usage alert %s: %s", document.get("id"), e)
                continue

            if alert.last_triggered_at and now - alert.last_triggered_at < cooldown:
                continue

            results.append(await self.evaluate_alert(alert, now))

        triggered = sum(1 for r in results if r.triggered)
        logger.info(
            "Evaluated %d usage alerts, %d triggered (%d skipped in cooldown or invalid)",
            len(results),
            triggered,
            len(alerts.documents) - len(results),
        )
        return results
