"""Document store abstraction and implementations."""

from ledgerguard.store.base import (
    Collections,
    DocumentList,
    DocumentNotFoundError,
    DocumentStore,
    Operator,
    Predicate,
    Query,
    StoreError,
    StoreUnavailableError,
)
from ledgerguard.store.memory import InMemoryDocumentStore

__all__ = [
    "Collections",
    "DocumentList",
    "DocumentNotFoundError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Operator",
    "Predicate",
    "Query",
    "StoreError",
    "StoreUnavailableError",
]
