"""Billing account resolution.

Resolution order, first match wins:
1. organization_id: the organization's ORG account
2. workspace_id: derive the owner from the workspace (ORG account for
   organization workspaces, PERSONAL account otherwise)
3. user_id: the user's PERSONAL account

Missing accounts are not errors. New users have no billing account until
their first billable activity and must never be blocked for it.
"""

import logging

from pydantic import ValidationError

from ledgerguard.core.errors import BillingError, BillingErrorCode
from ledgerguard.models.billing_account import BillingAccountType
from ledgerguard.schemas.billing import (
    BillingAccount,
    BillingLookup,
    Resolution,
    ResolutionOutcome,
)
from ledgerguard.store import Collections, DocumentNotFoundError, DocumentStore, Query, StoreError

logger = logging.getLogger(__name__)


class BillingAccountResolver:
    """Resolves the billing account owning a user, organization or workspace."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def _find_one(
        self,
        field: str,
        value: str,
        account_type: BillingAccountType,
    ) -> BillingAccount | None:
        accounts = await self.store.list(
            Collections.BILLING_ACCOUNTS,
            [
                Query.equal(field, value),
                Query.equal("type", account_type.value),
            ],
            limit=1,
        )
        if accounts.total > 0:
            return BillingAccount.model_validate(accounts.documents[0])
        return None

    async def _resolve(self, lookup: BillingLookup) -> BillingAccount | None:
        if lookup.organization_id:
            account = await self._find_one(
                "organization_id", lookup.organization_id, BillingAccountType.ORG
            )
            if account:
                return account

        if lookup.workspace_id:
            try:
                workspace = await self.store.get(Collections.WORKSPACES, lookup.workspace_id)
            except DocumentNotFoundError:
                workspace = None

            if workspace and workspace.get("organization_id"):
                account = await self._find_one(
                    "organization_id", workspace["organization_id"], BillingAccountType.ORG
                )
                if account:
                    return account
            elif workspace and workspace.get("user_id"):
                account = await self._find_one(
                    "user_id", workspace["user_id"], BillingAccountType.PERSONAL
                )
                if account:
                    return account

        if lookup.user_id:
            return await self._find_one("user_id", lookup.user_id, BillingAccountType.PERSONAL)

        return None

    async def resolve(self, lookup: BillingLookup) -> Resolution:
        """Resolve an account, telling "no account" and "store failure" apart."""
        try:
            account = await self._resolve(lookup)
        except (StoreError, ValidationError) as e:
            logger.warning(
                "Billing account lookup failed for %s: %s",
                lookup.model_dump(exclude_none=True),
                e,
            )
            return Resolution(outcome=ResolutionOutcome.UNAVAILABLE, error=str(e))

        if account is None:
            return Resolution(outcome=ResolutionOutcome.NOT_FOUND)
        return Resolution(outcome=ResolutionOutcome.FOUND, account=account)

    async def get_billing_account(self, lookup: BillingLookup) -> BillingAccount | None:
        """Resolve an account, failing open.

        Store failures are indistinguishable from a missing account here; use
        ``resolve`` when the difference matters.
        """
        resolution = await self.resolve(lookup)
        return resolution.account

    async def get_by_id(self, billing_account_id: str) -> BillingAccount:
        """Load an account by id.

        Raises:
            BillingError: BILLING_NOT_FOUND when the id does not exist.
        """
        try:
            document = await self.store.get(Collections.BILLING_ACCOUNTS, billing_account_id)
        except DocumentNotFoundError:
            raise BillingError(
                BillingErrorCode.BILLING_NOT_FOUND,
                f"Billing account {billing_account_id} not found",
                billing_account_id=billing_account_id,
            ) from None
        return BillingAccount.model_validate(document)

    async def get_by_stripe_customer(self, customer_id: str) -> BillingAccount | None:
        """Find the account linked to a Stripe customer."""
        accounts = await self.store.list(
            Collections.BILLING_ACCOUNTS,
            [Query.equal("stripe_customer_id", customer_id)],
            limit=1,
        )
        if accounts.total == 0:
            return None
        return BillingAccount.model_validate(accounts.documents[0])
