"""SQLAlchemy models package."""

from ledgerguard.models.billing_account import BillingAccount, BillingAccountType, BillingStatus
from ledgerguard.models.invoice import Invoice, InvoiceStatus
from ledgerguard.models.notification import Notification
from ledgerguard.models.organization import OrganizationMember, OrganizationRole
from ledgerguard.models.project import Project, ProjectMember, ProjectTeam
from ledgerguard.models.usage import ResourceType, UsageAggregation, UsageEvent
from ledgerguard.models.usage_alert import AlertType, UsageAlert
from ledgerguard.models.workspace import Member, Workspace

__all__ = [
    "BillingAccount",
    "BillingAccountType",
    "BillingStatus",
    "Invoice",
    "InvoiceStatus",
    "Notification",
    "OrganizationMember",
    "OrganizationRole",
    "Project",
    "ProjectMember",
    "ProjectTeam",
    "ResourceType",
    "UsageAggregation",
    "UsageEvent",
    "AlertType",
    "UsageAlert",
    "Member",
    "Workspace",
]
