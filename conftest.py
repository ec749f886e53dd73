"""Shared pytest fixtures for LoyaltyLink packages."""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import Any

import pytest

from loyaltylink.store.base import SUPPORTED_OPERATORS, Document, DocumentStore, FieldUpdate, Filter
from loyaltylink.store.config import LoyaltySettings
from loyaltylink.store.exceptions import SourceUnavailableError, StaleReferenceError

FIXED_NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store for testing.

    Every write is appended to ``writes`` as ``(op, collection, doc_id, fields)``
    so tests can assert that an operation wrote nothing.
    """

    def __init__(self, data: dict[str, dict[str, dict[str, Any]]] | None = None):
        self.collections: dict[str, dict[str, dict[str, Any]]] = copy.deepcopy(data or {})
        self.writes: list[tuple[str, str, str, dict[str, Any]]] = []
        self.queries: list[tuple[str, list[Filter]]] = []
        self._failures: set[tuple[str, str | None]] = set()

    # -- test helpers ------------------------------------------------------

    def add(self, collection: str, doc_id: str, **fields: Any) -> None:
        """Insert a document without recording a write."""
        self.collections.setdefault(collection, {})[doc_id] = fields

    def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document without recording a write."""
        self.collections.get(collection, {}).pop(doc_id, None)

    def data(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the stored fields of a document."""
        return self.collections.get(collection, {}).get(doc_id)

    def fail_on(self, collection: str, field: str | None = None) -> None:
        """Make reads fail for a collection, or only queries filtering on ``field``."""
        self._failures.add((collection, field))

    # -- DocumentStore -----------------------------------------------------

    def query(
        self,
        collection: str,
        filters: list[Filter],
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        self.queries.append((collection, list(filters)))
        if (collection, None) in self._failures or any(
            (collection, field) in self._failures for field, _, _ in filters
        ):
            raise SourceUnavailableError(collection, "simulated outage")

        matches = [
            Document(id=doc_id, data=copy.deepcopy(fields))
            for doc_id, fields in self.collections.get(collection, {}).items()
            if all(_matches(fields, f) for f in filters)
        ]
        if order_by:
            field, direction = order_by
            present = [d for d in matches if d.data.get(field) is not None]
            missing = [d for d in matches if d.data.get(field) is None]
            present.sort(key=lambda d: d.data[field], reverse=direction.lower() == "desc")
            matches = present + missing
        if limit:
            matches = matches[:limit]
        return matches

    def get(self, collection: str, doc_id: str) -> Document | None:
        if (collection, None) in self._failures:
            raise SourceUnavailableError(collection, "simulated outage")
        fields = self.collections.get(collection, {}).get(doc_id)
        return Document(id=doc_id, data=copy.deepcopy(fields)) if fields is not None else None

    def exists(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        docs = self.collections.setdefault(collection, {})
        if merge and doc_id in docs:
            docs[doc_id].update(copy.deepcopy(data))
        else:
            docs[doc_id] = copy.deepcopy(data)
        self.writes.append(("set", collection, doc_id, dict(data)))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        docs = self.collections.get(collection, {})
        if doc_id not in docs:
            raise StaleReferenceError(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(fields))
        self.writes.append(("update", collection, doc_id, dict(fields)))

    def update_many(self, updates: list[FieldUpdate]) -> None:
        for item in updates:
            if item.doc_id not in self.collections.get(item.collection, {}):
                raise StaleReferenceError(item.collection, item.doc_id)
        for item in updates:
            self.update(item.collection, item.doc_id, item.fields)


def _matches(fields: dict[str, Any], condition: Filter) -> bool:
    field, op, value = condition
    if op not in SUPPORTED_OPERATORS:
        raise ValueError(f"Unsupported filter operator: {op}")
    if field not in fields:
        return False
    stored = fields[field]
    if op == "==":
        return stored == value
    try:
        return stored >= value if op == ">=" else stored < value
    except TypeError:
        return False


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def settings() -> LoyaltySettings:
    """Default settings with link serialization enabled."""
    return LoyaltySettings()


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def sample_store() -> InMemoryDocumentStore:
    """Store with one linked user, one unlinked user and some coupons."""
    return InMemoryDocumentStore(
        {
            "users": {
                "uid-linked": {"phone": "+27 83 111 2222", "linkedCustomerId": "cust-1"},
                "uid-new": {"phoneNumber": "27833334444"},
            },
            "customers": {
                "cust-1": {
                    "businessId": "biz-1",
                    "phone": "27831112222",
                    "userId": "uid-linked",
                    "visitedBusinesses": ["biz-2"],
                },
                "cust-2": {"businessId": "biz-2", "phone": "27833334444"},
                "cust-3": {"businessId": "biz-3", "phone": "+27 83 555 6666"},
            },
            "coupons": {
                "coupon-a": {
                    "businessId": "biz-1",
                    "type": "percentage",
                    "value": 20,
                    "active": True,
                },
                "coupon-b": {"businessId": "biz-1", "type": "fixed", "value": 5, "active": True},
                "coupon-c": {"businessId": "biz-2", "type": "buyXgetY", "active": True},
                "coupon-public": {
                    "type": "freeItem",
                    "freeItem": "coffee",
                    "isPublic": True,
                    "active": True,
                },
            },
        }
    )


@pytest.fixture
def make_store():
    """Factory for in-memory stores seeded with ``{collection: {doc_id: fields}}``."""
    return InMemoryDocumentStore
