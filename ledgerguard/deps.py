"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerguard.database import get_db
from ledgerguard.schemas.billing import BillingLookup
from ledgerguard.services import Services, build_services
from ledgerguard.store import DocumentStore
from ledgerguard.store.sql import SqlDocumentStore


async def get_store(db: Annotated[AsyncSession, Depends(get_db)]) -> DocumentStore:
    """Document store bound to the request's database session."""
    return SqlDocumentStore(db)


async def get_services(
    store: Annotated[DocumentStore, Depends(get_store)],
) -> Services:
    """Billing services sharing the request's store."""
    return build_services(store)


async def get_billing_lookup(
    user_id: str | None = None,
    organization_id: str | None = None,
    workspace_id: str | None = None,
) -> BillingLookup:
    """Billing lookup from query parameters."""
    return BillingLookup(
        user_id=user_id,
        organization_id=organization_id,
        workspace_id=workspace_id,
    )


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
Store = Annotated[DocumentStore, Depends(get_store)]
BillingServices = Annotated[Services, Depends(get_services)]
Lookup = Annotated[BillingLookup, Depends(get_billing_lookup)]
