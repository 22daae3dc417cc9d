"""In-process document store used for local development and tests."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from cafe_cards.domain.scan_history import format_timestamp
from cafe_cards.services.store.client import (
    STATUS_INVALID_DOCUMENT,
    STATUS_NOT_FOUND,
    QueryFilter,
    StoreError,
)


class InMemoryDocumentStore:
    """Dictionary-backed store honouring ``equal``/``orderDesc``/``limit`` filters.

    Permissions are recorded on each document but not enforced.
    """

    def __init__(self, collections: Sequence[str] | None = None) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {
            name: {} for name in (collections or ())
        }
        self.writes: list[tuple[str, str, str]] = []

    def add_collection(self, name: str) -> None:
        self._collections.setdefault(name, {})

    def seed(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a raw document without recording a write."""

        self.add_collection(collection)
        document = self._stamp_metadata(collection, document_id, dict(fields), permissions=[])
        self._collections[collection][document_id] = document
        return copy.deepcopy(document)

    def documents(self, collection: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._collection(collection).values()]

    async def list(self, collection: str, filters: Sequence[QueryFilter] = ()) -> list[dict[str, Any]]:
        documents = list(self._collection(collection).values())
        limit: int | None = None
        for clause in filters:
            if clause.method == "equal":
                documents = [
                    doc for doc in documents if doc.get(clause.attribute) in clause.values
                ]
            elif clause.method == "orderDesc":
                attribute = clause.attribute
                documents.sort(key=lambda doc: (doc.get(attribute) is not None, doc.get(attribute) or ""), reverse=True)
            elif clause.method == "limit":
                limit = int(clause.values[0])
            else:
                raise StoreError(f"Unsupported query method: {clause.method}", code=STATUS_INVALID_DOCUMENT)
        if limit is not None:
            documents = documents[:limit]
        return [copy.deepcopy(doc) for doc in documents]

    async def get(self, collection: str, document_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._document(collection, document_id))

    async def create(
        self,
        collection: str,
        document_id: str,
        fields: Mapping[str, Any],
        permissions: Sequence[str] = (),
    ) -> dict[str, Any]:
        documents = self._collection(collection)
        if document_id in documents:
            raise StoreError("Document with the requested ID already exists.", code=409)
        document = self._stamp_metadata(collection, document_id, dict(fields), permissions=list(permissions))
        documents[document_id] = document
        self.writes.append(("create", collection, document_id))
        return copy.deepcopy(document)

    async def update(self, collection: str, document_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        document = self._document(collection, document_id)
        document.update(copy.deepcopy(dict(fields)))
        document["$updatedAt"] = format_timestamp(datetime.now(timezone.utc))
        self.writes.append(("update", collection, document_id))
        return copy.deepcopy(document)

    async def delete(self, collection: str, document_id: str) -> None:
        self._document(collection, document_id)
        del self._collections[collection][document_id]
        self.writes.append(("delete", collection, document_id))

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        try:
            return self._collections[collection]
        except KeyError:
            raise StoreError(
                "Collection with the requested ID could not be found.",
                code=STATUS_NOT_FOUND,
                error_type="collection_not_found",
            ) from None

    def _document(self, collection: str, document_id: str) -> dict[str, Any]:
        try:
            return self._collection(collection)[document_id]
        except KeyError:
            raise StoreError(
                "Document with the requested ID could not be found.",
                code=STATUS_NOT_FOUND,
                error_type="document_not_found",
            ) from None

    @staticmethod
    def _stamp_metadata(
        collection: str,
        document_id: str,
        fields: dict[str, Any],
        *,
        permissions: list[str],
    ) -> dict[str, Any]:
        now = format_timestamp(datetime.now(timezone.utc))
        document = copy.deepcopy(fields)
        document.update(
            {
                "$id": document_id,
                "$collectionId": collection,
                "$createdAt": now,
                "$updatedAt": now,
                "$permissions": permissions,
            }
        )
        return document


__all__ = ["InMemoryDocumentStore"]
