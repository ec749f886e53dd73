"""
LoyaltyLink Store - document store access and shared settings.

Usage:
    from loyaltylink.store import FirestoreDocumentStore, LoyaltySettings

    store = FirestoreDocumentStore()
    settings = LoyaltySettings.from_env()
    docs = store.query("customers", [("phone", "==", "27831234567")])
"""

from loyaltylink.store.base import Document, DocumentStore, FieldUpdate, Filter
from loyaltylink.store.config import Collection, LoyaltySettings
from loyaltylink.store.exceptions import (
    ErrorKind,
    InvalidInputError,
    LoyaltyLinkError,
    SourceFailure,
    SourceUnavailableError,
    StaleReferenceError,
)
from loyaltylink.store.firestore import FirestoreConfig, FirestoreDocumentStore

__all__ = [
    # Base
    "Document",
    "DocumentStore",
    "FieldUpdate",
    "Filter",
    # Config
    "Collection",
    "LoyaltySettings",
    # Exceptions
    "ErrorKind",
    "InvalidInputError",
    "LoyaltyLinkError",
    "SourceFailure",
    "SourceUnavailableError",
    "StaleReferenceError",
    # Firestore
    "FirestoreConfig",
    "FirestoreDocumentStore",
]
