"""SQLAlchemy-backed document store.

Each collection maps to one ORM model; documents are the model's column
attributes as a dict.
"""

import logging

from sqlalchemy import Text, cast, func, inspect as sa_inspect, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerguard.database import Base
from ledgerguard.models import (
    BillingAccount,
    Invoice,
    Member,
    Notification,
    OrganizationMember,
    Project,
    ProjectMember,
    ProjectTeam,
    UsageAggregation,
    UsageAlert,
    UsageEvent,
    Workspace,
)
from ledgerguard.store.base import (
    Collections,
    DocumentList,
    DocumentNotFoundError,
    DocumentStore,
    Operator,
    Predicate,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

COLLECTION_MODELS: dict[str, type[Base]] = {
    Collections.BILLING_ACCOUNTS: BillingAccount,
    Collections.INVOICES: Invoice,
    Collections.USAGE_EVENTS: UsageEvent,
    Collections.USAGE_AGGREGATIONS: UsageAggregation,
    Collections.USAGE_ALERTS: UsageAlert,
    Collections.NOTIFICATIONS: Notification,
    Collections.WORKSPACES: Workspace,
    Collections.MEMBERS: Member,
    Collections.ORGANIZATION_MEMBERS: OrganizationMember,
    Collections.PROJECTS: Project,
    Collections.PROJECT_MEMBERS: ProjectMember,
    Collections.PROJECT_TEAMS: ProjectTeam,
}


def _to_document(row: Base) -> dict:
    mapper = sa_inspect(row).mapper
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


class SqlDocumentStore(DocumentStore):
    """Document store over an async SQLAlchemy session."""

    def __init__(
        self,
        session: AsyncSession,
        models: dict[str, type[Base]] | None = None,
    ) -> None:
        self.session = session
        self.models = models or COLLECTION_MODELS

    def _model(self, collection: str) -> type[Base]:
        try:
            return self.models[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    @staticmethod
    def _clause(model: type[Base], predicate: Predicate):
        column = getattr(model, predicate.field, None)
        if column is None:
            raise ValueError(f"Unknown field {predicate.field} on {model.__tablename__}")

        match predicate.operator:
            case Operator.EQUAL:
                if predicate.value is None:
                    return column.is_(None)
                return column == predicate.value
            case Operator.GREATER_THAN_EQUAL:
                return column >= predicate.value
            case Operator.LESS_THAN_EQUAL:
                return column <= predicate.value
            case Operator.LESS_THAN:
                return column < predicate.value
            case Operator.CONTAINS:
                if isinstance(column.type, JSONB):
                    return cast(column, Text).contains(str(predicate.value))
                return column.contains(str(predicate.value))

        raise ValueError(f"Unsupported operator: {predicate.operator}")

    async def _load(self, collection: str, document_id: str) -> Base:
        model = self._model(collection)
        try:
            row = await self.session.get(model, document_id)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to read {collection}/{document_id}: {e}") from e
        if row is None:
            raise DocumentNotFoundError(collection, document_id)
        return row

    async def _commit(self, row: Base | None = None) -> None:
        try:
            await self.session.commit()
            if row is not None:
                await self.session.refresh(row)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Store write failed: %s", e)
            raise StoreUnavailableError(f"Write failed: {e}") from e

    async def get(self, collection: str, document_id: str) -> dict:
        return _to_document(await self._load(collection, document_id))

    async def list(
        self,
        collection: str,
        predicates: list[Predicate] | None = None,
        limit: int = 25,
    ) -> DocumentList:
        model = self._model(collection)
        clauses = [self._clause(model, p) for p in predicates or []]

        try:
            total = await self.session.scalar(
                select(func.count()).select_from(model).where(*clauses)
            )
            result = await self.session.execute(select(model).where(*clauses).limit(limit))
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to list {collection}: {e}") from e

        return DocumentList(
            total=total or 0,
            documents=[_to_document(row) for row in result.scalars().all()],
        )

    async def create(self, collection: str, document_id: str, fields: dict) -> dict:
        model = self._model(collection)
        row = model(id=document_id, **fields)
        self.session.add(row)
        await self._commit(row)
        return _to_document(row)

    async def update(self, collection: str, document_id: str, fields: dict) -> dict:
        row = await self._load(collection, document_id)
        for key, value in fields.items():
            setattr(row, key, value)
        await self._commit(row)
        return _to_document(row)

    async def delete(self, collection: str, document_id: str) -> None:
        row = await self._load(collection, document_id)
        await self.session.delete(row)
        await self._commit()
