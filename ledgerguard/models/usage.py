"""Usage event and aggregation models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ledgerguard.database import Base


class ResourceType(str, Enum):
    """Metered resource types."""

    TRAFFIC = "traffic"
    STORAGE = "storage"
    COMPUTE = "compute"


class UsageEvent(Base):
    """UsageEvent is an immutable metering fact."""

    __tablename__ = "usage_events"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    billing_entity_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    units: Mapped[float] = mapped_column(Float, nullable=False)
    weighted_units: Mapped[float | None] = mapped_column(Float, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class UsageAggregation(Base):
    """Monthly usage rollup per workspace."""

    __tablename__ = "usage_aggregations"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    period: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    traffic_total_gb: Mapped[float] = mapped_column(Float, default=0.0)
    storage_avg_gb: Mapped[float] = mapped_column(Float, default=0.0)
    compute_total_units: Mapped[float] = mapped_column(Float, default=0.0)
    is_finalized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    finalized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "period", name="uq_usage_aggregation_workspace_period"),
    )
