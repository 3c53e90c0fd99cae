"""Usage rollup helpers shared by aggregation, reconciliation and alerts."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from ledgerguard.models.usage import ResourceType
from ledgerguard.store import Collections, DocumentStore, Query

logger = logging.getLogger(__name__)

BYTES_PER_GIB = 1024 * 1024 * 1024


def period_bounds(period: str) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` of a ``YYYY-MM`` period."""
    try:
        year, month = (int(part) for part in period.split("-"))
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"Invalid period {period!r}, expected YYYY-MM") from None

    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def current_period(now: datetime) -> str:
    """``YYYY-MM`` of a timestamp, in UTC."""
    return now.astimezone(timezone.utc).strftime("%Y-%m")


@dataclass
class UsageTotals:
    """Usage totals for a set of events."""

    traffic_gb: float = 0.0
    storage_gb: float = 0.0
    compute_units: float = 0.0

    def for_resource(self, resource_type: ResourceType) -> float:
        match resource_type:
            case ResourceType.TRAFFIC:
                return self.traffic_gb
            case ResourceType.STORAGE:
                return self.storage_gb
            case ResourceType.COMPUTE:
                return self.compute_units
        raise ValueError(f"Unknown resource type: {resource_type}")


def summarize_usage(events: list[dict]) -> UsageTotals:
    """Sum events into totals.

    Traffic and storage units are bytes and come out in GiB. Compute bills
    ``weighted_units`` when present.
    """
    traffic_bytes = 0.0
    storage_bytes = 0.0
    compute_units = 0.0

    for event in events:
        match event.get("resource_type"):
            case ResourceType.TRAFFIC.value:
                traffic_bytes += event.get("units") or 0
            case ResourceType.STORAGE.value:
                storage_bytes += event.get("units") or 0
            case ResourceType.COMPUTE.value:
                compute_units += event.get("weighted_units") or event.get("units") or 0

    return UsageTotals(
        traffic_gb=traffic_bytes / BYTES_PER_GIB,
        storage_gb=storage_bytes / BYTES_PER_GIB,
        compute_units=compute_units,
    )


async def list_period_events(
    store: DocumentStore,
    workspace_id: str,
    start: datetime,
    end: datetime,
    limit: int,
    resource_type: ResourceType | None = None,
) -> list[dict]:
    """Usage events of a workspace with ``start <= timestamp < end``."""
    predicates = [
        Query.equal("workspace_id", workspace_id),
        Query.greater_than_equal("timestamp", start),
        Query.less_than("timestamp", end),
    ]
    if resource_type is not None:
        predicates.append(Query.equal("resource_type", resource_type.value))

    events = await store.list(Collections.USAGE_EVENTS, predicates, limit=limit)
    if events.total > len(events.documents):
        logger.warning(
            "Usage for workspace %s between %s and %s truncated: %d of %d events",
            workspace_id,
            start.isoformat(),
            end.isoformat(),
            len(events.documents),
            events.total,
        )
    return events.documents
