"""Billing accounts, invoices, usage ledger, alerts and notifications.

Revision ID: 002
Revises: 001
Create Date: 2026-09-14 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create billing_accounts table
    op.create_table(
        "billing_accounts",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("organization_id", sa.String(64), nullable=True),
        sa.Column("billing_status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("billing_cycle_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billing_cycle_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "is_billing_cycle_locked",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.Column("billing_cycle_locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_customer_id"),
        sa.CheckConstraint(
            "(type = 'ORG' AND organization_id IS NOT NULL AND user_id IS NULL) OR "
            "(type = 'PERSONAL' AND user_id IS NOT NULL AND organization_id IS NULL)",
            name="ck_billing_accounts_owner",
        ),
    )
    op.create_index("ix_billing_accounts_user_id", "billing_accounts", ["user_id"])
    op.create_index("ix_billing_accounts_organization_id", "billing_accounts", ["organization_id"])
    op.create_index("ix_billing_accounts_billing_status", "billing_accounts", ["billing_status"])
    op.create_index(
        "ix_billing_accounts_is_billing_cycle_locked",
        "billing_accounts",
        ["is_billing_cycle_locked"],
    )

    # Create usage_events table
    op.create_table(
        "usage_events",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("billing_entity_id", sa.String(64), nullable=True),
        sa.Column("resource_type", sa.String(20), nullable=False),
        sa.Column("units", sa.Float(), nullable=False),
        sa.Column("weighted_units", sa.Float(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_events_workspace_id", "usage_events", ["workspace_id"])
    op.create_index("ix_usage_events_billing_entity_id", "usage_events", ["billing_entity_id"])
    op.create_index("ix_usage_events_resource_type", "usage_events", ["resource_type"])
    op.create_index("ix_usage_events_timestamp", "usage_events", ["timestamp"])

    # Create usage_aggregations table
    op.create_table(
        "usage_aggregations",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("traffic_total_gb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("storage_avg_gb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("compute_total_units", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_finalized", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id", "period", name="uq_usage_aggregation_workspace_period"
        ),
    )
    op.create_index("ix_usage_aggregations_workspace_id", "usage_aggregations", ["workspace_id"])

    # Create invoices table
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("billing_account_id", sa.String(64), nullable=False),
        sa.Column("aggregation_snapshot_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("stripe_invoice_id", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["billing_account_id"],
            ["billing_accounts.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_invoice_id"),
    )
    op.create_index("ix_invoices_billing_account_id", "invoices", ["billing_account_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    # Create usage_alerts table
    op.create_table(
        "usage_alerts",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(20), nullable=False),
        sa.Column("threshold", sa.Float(), nullable=False),
        sa.Column("alert_type", sa.String(20), nullable=False, server_default="in_app"),
        sa.Column("webhook_url", sa.Text(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_alerts_workspace_id", "usage_alerts", ["workspace_id"])
    op.create_index("ix_usage_alerts_is_enabled", "usage_alerts", ["is_enabled"])

    # Create notifications table
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_workspace_id", "notifications", ["workspace_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_workspace_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_usage_alerts_is_enabled", table_name="usage_alerts")
    op.drop_index("ix_usage_alerts_workspace_id", table_name="usage_alerts")
    op.drop_table("usage_alerts")
    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_index("ix_invoices_billing_account_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_usage_aggregations_workspace_id", table_name="usage_aggregations")
    op.drop_table("usage_aggregations")
    op.drop_index("ix_usage_events_timestamp", table_name="usage_events")
    op.drop_index("ix_usage_events_resource_type", table_name="usage_events")
    op.drop_index("ix_usage_events_billing_entity_id", table_name="usage_events")
    op.drop_index("ix_usage_events_workspace_id", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_index("ix_billing_accounts_is_billing_cycle_locked", table_name="billing_accounts")
    op.drop_index("ix_billing_accounts_billing_status", table_name="billing_accounts")
    op.drop_index("ix_billing_accounts_organization_id", table_name="billing_accounts")
    op.drop_index("ix_billing_accounts_user_id", table_name="billing_accounts")
    op.drop_table("billing_accounts")
