"""In-memory document store used by tests and local tooling."""

import asyncio
import copy
from collections import defaultdict

from ledgerguard.store.base import (
    DocumentList,
    DocumentNotFoundError,
    DocumentStore,
    Predicate,
    StoreError,
)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store.

    Every operation yields to the event loop once before touching data, the
    way a network round-trip would, so concurrent callers interleave. Reads
    and writes copy documents so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict]] = defaultdict(dict)

    def seed(self, collection: str, document_id: str, fields: dict) -> dict:
        """Insert a document synchronously (fixtures)."""
        document = {**copy.deepcopy(fields), "id": document_id}
        self._collections[collection][document_id] = document
        return copy.deepcopy(document)

    def all(self, collection: str) -> list[dict]:
        """Return every document of a collection."""
        return [copy.deepcopy(d) for d in self._collections[collection].values()]

    async def get(self, collection: str, document_id: str) -> dict:
        await asyncio.sleep(0)
        document = self._collections[collection].get(document_id)
        if document is None:
            raise DocumentNotFoundError(collection, document_id)
        return copy.deepcopy(document)

    async def list(
        self,
        collection: str,
        predicates: list[Predicate] | None = None,
        limit: int = 25,
    ) -> DocumentList:
        await asyncio.sleep(0)
        predicates = predicates or []
        matches = [
            document
            for document in self._collections[collection].values()
            if all(p.matches(document) for p in predicates)
        ]
        return DocumentList(
            total=len(matches),
            documents=[copy.deepcopy(d) for d in matches[:limit]],
        )

    async def create(self, collection: str, document_id: str, fields: dict) -> dict:
        await asyncio.sleep(0)
        if document_id in self._collections[collection]:
            raise StoreError(f"Document {document_id} already exists in {collection}")
        document = {**copy.deepcopy(fields), "id": document_id}
        self._collections[collection][document_id] = document
        return copy.deepcopy(document)

    async def update(self, collection: str, document_id: str, fields: dict) -> dict:
        await asyncio.sleep(0)
        document = self._collections[collection].get(document_id)
        if document is None:
            raise DocumentNotFoundError(collection, document_id)
        document.update(copy.deepcopy(fields))
        return copy.deepcopy(document)

    async def delete(self, collection: str, document_id: str) -> None:
        await asyncio.sleep(0)
        if self._collections[collection].pop(document_id, None) is None:
            raise DocumentNotFoundError(collection, document_id)
