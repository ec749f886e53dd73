"""Abstract document store consumed by the reconciliation components."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# (field, op, value)
Filter = tuple[str, str, Any]

SUPPORTED_OPERATORS = ("==", ">=", "<")


@dataclass
class Document:
    """A single stored document."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Shortcut for ``self.data.get``."""
        return self.data.get(key, default)


@dataclass
class FieldUpdate:
    """A targeted field update against one document."""

    collection: str
    doc_id: str
    fields: dict[str, Any]


class DocumentStore(ABC):
    """Generic document-store client.

    Subclasses implement the blocking operations. The ``*_async`` variants run
    them in a worker thread so callers can fan out with ``asyncio.gather``.

    Example:
        >>> store = FirestoreDocumentStore()
        >>> docs = store.query("customers", [("phone", "==", "27831234567")])
        >>> customer = store.get("customers", docs[0].id)
    """

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: list[Filter],
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents matching all filters.

        Args:
            collection: Collection name.
            filters: ``(field, op, value)`` triples, combined with AND.
            order_by: Optional ``(field, "asc" | "desc")``.
            limit: Optional maximum number of documents.

        Raises:
            SourceUnavailableError: If the query fails.
        """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Document | None:
        """Return a document by id, or None if it does not exist."""

    @abstractmethod
    def exists(self, collection: str, doc_id: str) -> bool:
        """Return True if the document exists."""

    @abstractmethod
    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """Write a document, merging into existing fields by default."""

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Update fields on an existing document."""

    @abstractmethod
    def update_many(self, updates: list[FieldUpdate]) -> None:
        """Apply several field updates as one batch."""

    async def query_async(
        self,
        collection: str,
        filters: list[Filter],
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Async wrapper for query execution."""
        return await asyncio.to_thread(self.query, collection, filters, order_by, limit)

    async def get_async(self, collection: str, doc_id: str) -> Document | None:
        """Async wrapper for get."""
        return await asyncio.to_thread(self.get, collection, doc_id)

    async def exists_async(self, collection: str, doc_id: str) -> bool:
        """Async wrapper for exists."""
        return await asyncio.to_thread(self.exists, collection, doc_id)

    async def set_async(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """Async wrapper for set."""
        await asyncio.to_thread(self.set, collection, doc_id, data, merge)

    async def update_async(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Async wrapper for update."""
        await asyncio.to_thread(self.update, collection, doc_id, fields)

    async def update_many_async(self, updates: list[FieldUpdate]) -> None:
        """Async wrapper for update_many."""
        await asyncio.to_thread(self.update_many, updates)

    def close(self) -> None:  # noqa: B027
        """Release client resources. Override if needed."""
        pass

    def __enter__(self) -> DocumentStore:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - closes the store."""
        self.close()
