"""Document store interface consumed by the billing guards.

The guards only rely on single-document CRUD and filtered listing. There are
no multi-document transactions, so every consistency guarantee built on top
of this interface is read-verify based.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    """Raised when a document id does not exist in a collection."""

    def __init__(self, collection: str, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found in {collection}")
        self.collection = collection
        self.document_id = document_id


class StoreUnavailableError(StoreError):
    """Raised when the backing store cannot serve a request."""


class Collections:
    """Collection names."""

    BILLING_ACCOUNTS = "billing_accounts"
    INVOICES = "invoices"
    USAGE_EVENTS = "usage_events"
    USAGE_AGGREGATIONS = "usage_aggregations"
    USAGE_ALERTS = "usage_alerts"
    NOTIFICATIONS = "notifications"
    WORKSPACES = "workspaces"
    MEMBERS = "members"
    ORGANIZATION_MEMBERS = "organization_members"
    PROJECTS = "projects"
    PROJECT_MEMBERS = "project_members"
    PROJECT_TEAMS = "project_teams"


class Operator(str, Enum):
    """Supported predicate operators."""

    EQUAL = "equal"
    GREATER_THAN_EQUAL = "greater_than_equal"
    LESS_THAN_EQUAL = "less_than_equal"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


@dataclass(frozen=True)
class Predicate:
    """A single filter on a document field."""

    field: str
    operator: Operator
    value: Any

    def matches(self, document: dict) -> bool:
        """Evaluate the predicate against a document held in memory."""
        current = document.get(self.field)

        match self.operator:
            case Operator.EQUAL:
                return current == self.value
            case Operator.CONTAINS:
                if current is None:
                    return False
                if not isinstance(current, str):
                    current = json.dumps(current, default=str)
                return str(self.value) in current

        if current is None:
            return False

        match self.operator:
            case Operator.GREATER_THAN_EQUAL:
                return current >= self.value
            case Operator.LESS_THAN_EQUAL:
                return current <= self.value
            case Operator.LESS_THAN:
                return current < self.value

        raise ValueError(f"Unsupported operator: {self.operator}")


class Query:
    """Predicate builders."""

    @staticmethod
    def equal(field: str, value: Any) -> Predicate:
        return Predicate(field, Operator.EQUAL, value)

    @staticmethod
    def greater_than_equal(field: str, value: Any) -> Predicate:
        return Predicate(field, Operator.GREATER_THAN_EQUAL, value)

    @staticmethod
    def less_than_equal(field: str, value: Any) -> Predicate:
        return Predicate(field, Operator.LESS_THAN_EQUAL, value)

    @staticmethod
    def less_than(field: str, value: Any) -> Predicate:
        return Predicate(field, Operator.LESS_THAN, value)

    @staticmethod
    def contains(field: str, value: str) -> Predicate:
        return Predicate(field, Operator.CONTAINS, value)


@dataclass
class DocumentList:
    """Result of a filtered listing.

    ``total`` counts every matching document, ignoring the limit.
    """

    total: int
    documents: list[dict] = field(default_factory=list)


class DocumentStore(ABC):
    """CRUD and filtered-query interface over named collections."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> dict:
        """Return one document or raise ``DocumentNotFoundError``."""

    @abstractmethod
    async def list(
        self,
        collection: str,
        predicates: list[Predicate] | None = None,
        limit: int = 25,
    ) -> DocumentList:
        """Return documents matching every predicate."""

    @abstractmethod
    async def create(self, collection: str, document_id: str, fields: dict) -> dict:
        """Create a document and return it."""

    @abstractmethod
    async def update(self, collection: str, document_id: str, fields: dict) -> dict:
        """Apply a partial update and return the stored document."""

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        """Delete a document."""
