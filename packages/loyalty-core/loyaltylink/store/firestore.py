"""
FirestoreDocumentStore - DocumentStore backed by Google Cloud Firestore.

Provides:
- Lazy client initialization from environment configuration
- Equality and range filters with optional ordering and limit
- Targeted field updates and batched multi-document updates
- Translation of Google API errors into SourceUnavailableError
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account
from pydantic import BaseModel

from loyaltylink.store.base import SUPPORTED_OPERATORS, Document, DocumentStore, FieldUpdate, Filter
from loyaltylink.store.exceptions import SourceUnavailableError, StaleReferenceError

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot

logger = logging.getLogger(__name__)


class FirestoreConfig(BaseModel):
    """Configuration for the Firestore client."""

    project_id: str | None = None
    database: str | None = None
    credentials_path: str | None = None

    @classmethod
    def from_env(cls) -> FirestoreConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("GCP_PROJECT_ID") or os.getenv("LOYALTYLINK_PROJECT_ID"),
            database=os.getenv("FIRESTORE_DATABASE"),
            credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
        )


class FirestoreDocumentStore(DocumentStore):
    """
    Document store on top of ``google.cloud.firestore.Client``.

    Example:
        store = FirestoreDocumentStore()
        docs = store.query("customers", [("userId", "==", "uid-123")], limit=1)
    """

    def __init__(
        self,
        config: FirestoreConfig | None = None,
        client: firestore.Client | None = None,
    ):
        self.config = config or FirestoreConfig.from_env()
        self._client = client

    @property
    def client(self) -> firestore.Client:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs: dict[str, Any] = {"project": self.config.project_id}
            if self.config.database:
                kwargs["database"] = self.config.database
            if self.config.credentials_path:
                kwargs["credentials"] = service_account.Credentials.from_service_account_file(
                    self.config.credentials_path
                )
            try:
                self._client = firestore.Client(**kwargs)
            except auth_exceptions.GoogleAuthError as e:
                raise SourceUnavailableError("firestore", f"client setup failed: {e}") from e
        return self._client

    def query(
        self,
        collection: str,
        filters: list[Filter],
        order_by: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Run a filtered query against one collection."""
        for _field, op, _value in filters:
            if op not in SUPPORTED_OPERATORS:
                raise ValueError(f"Unsupported filter operator: {op}")

        query: Any = self.client.collection(collection)
        for field_path, op, value in filters:
            query = query.where(filter=FieldFilter(field_path, op, value))
        if order_by:
            field_path, direction = order_by
            query = query.order_by(
                field_path,
                direction=(
                    firestore.Query.DESCENDING
                    if direction.lower() == "desc"
                    else firestore.Query.ASCENDING
                ),
            )
        if limit:
            query = query.limit(limit)

        try:
            return [self._to_document(snapshot) for snapshot in query.stream()]
        except gcp_exceptions.GoogleAPIError as e:
            raise SourceUnavailableError(collection, str(e)) from e

    def get(self, collection: str, doc_id: str) -> Document | None:
        """Fetch a single document by id."""
        try:
            snapshot = self.client.collection(collection).document(doc_id).get()
        except gcp_exceptions.GoogleAPIError as e:
            raise SourceUnavailableError(collection, str(e)) from e

        if not snapshot.exists:
            return None
        return self._to_document(snapshot)

    def exists(self, collection: str, doc_id: str) -> bool:
        """Check whether a document exists."""
        return self.get(collection, doc_id) is not None

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """Write a document, merging by default."""
        try:
            self.client.collection(collection).document(doc_id).set(data, merge=merge)
        except gcp_exceptions.GoogleAPIError as e:
            raise SourceUnavailableError(collection, str(e)) from e
        logger.debug(f"Set {collection}/{doc_id} (merge={merge})")

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Update fields on an existing document."""
        try:
            self.client.collection(collection).document(doc_id).update(fields)
        except gcp_exceptions.NotFound as e:
            raise StaleReferenceError(collection, doc_id) from e
        except gcp_exceptions.GoogleAPIError as e:
            raise SourceUnavailableError(collection, str(e)) from e
        logger.debug(f"Updated {collection}/{doc_id}: {sorted(fields)}")

    def update_many(self, updates: list[FieldUpdate]) -> None:
        """Commit several field updates in a single write batch."""
        if not updates:
            return

        batch = self.client.batch()
        for item in updates:
            batch.update(self.client.collection(item.collection).document(item.doc_id), item.fields)

        try:
            batch.commit()
        except gcp_exceptions.NotFound as e:
            first = updates[0]
            raise StaleReferenceError(first.collection, first.doc_id) from e
        except gcp_exceptions.GoogleAPIError as e:
            raise SourceUnavailableError(updates[0].collection, str(e)) from e
        logger.debug(f"Committed batch of {len(updates)} updates")

    def close(self) -> None:
        """Close the underlying Firestore client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _to_document(self, snapshot: DocumentSnapshot) -> Document:
        """Convert a Firestore snapshot to a Document."""
        return Document(id=snapshot.id, data=snapshot.to_dict() or {})
