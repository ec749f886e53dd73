"""Tests for FirestoreDocumentStore."""

from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions

from loyaltylink.store.base import FieldUpdate
from loyaltylink.store.exceptions import SourceUnavailableError, StaleReferenceError
from loyaltylink.store.firestore import FirestoreConfig, FirestoreDocumentStore


def _snapshot(doc_id, data, exists=True):
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.exists = exists
    snapshot.to_dict.return_value = data
    return snapshot


@pytest.fixture
def client():
    mock_client = MagicMock()
    collection = mock_client.collection.return_value
    collection.where.return_value = collection
    collection.order_by.return_value = collection
    collection.limit.return_value = collection
    return mock_client


@pytest.fixture
def firestore_store(client):
    return FirestoreDocumentStore(config=FirestoreConfig(project_id="test-project"), client=client)


class TestFirestoreConfig:
    """Test suite for FirestoreConfig."""

    def test_default_values(self):
        """Test FirestoreConfig default values."""
        config = FirestoreConfig()
        assert config.project_id is None
        assert config.database is None
        assert config.credentials_path is None

    def test_from_env(self, monkeypatch):
        """Test FirestoreConfig.from_env() with GCP variables."""
        monkeypatch.setenv("GCP_PROJECT_ID", "my-project")
        monkeypatch.setenv("FIRESTORE_DATABASE", "loyalty")
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/path/to/creds.json")

        config = FirestoreConfig.from_env()
        assert config.project_id == "my-project"
        assert config.database == "loyalty"
        assert config.credentials_path == "/path/to/creds.json"

    def test_from_env_project_fallback(self, monkeypatch):
        """Test LOYALTYLINK_PROJECT_ID is used when GCP_PROJECT_ID is unset."""
        monkeypatch.delenv("GCP_PROJECT_ID", raising=False)
        monkeypatch.setenv("LOYALTYLINK_PROJECT_ID", "loyalty-project")

        config = FirestoreConfig.from_env()
        assert config.project_id == "loyalty-project"


class TestClientInitialization:
    """Test suite for lazy client creation."""

    @patch("loyaltylink.store.firestore.firestore.Client")
    def test_client_lazy_initialization(self, mock_client_cls):
        """Test Firestore client is created on first access."""
        store = FirestoreDocumentStore(config=FirestoreConfig(project_id="test-project"))
        assert store._client is None

        _ = store.client

        mock_client_cls.assert_called_once_with(project="test-project")
        assert store.client is mock_client_cls.return_value

    @patch("loyaltylink.store.firestore.service_account.Credentials.from_service_account_file")
    @patch("loyaltylink.store.firestore.firestore.Client")
    def test_client_with_credentials_and_database(self, mock_client_cls, mock_from_file):
        """Test explicit credentials and database are passed through."""
        config = FirestoreConfig(
            project_id="test-project", database="loyalty", credentials_path="/creds.json"
        )
        store = FirestoreDocumentStore(config=config)

        _ = store.client

        mock_from_file.assert_called_once_with("/creds.json")
        mock_client_cls.assert_called_once_with(
            project="test-project", database="loyalty", credentials=mock_from_file.return_value
        )

    @patch("loyaltylink.store.firestore.firestore.Client")
    def test_auth_failure_is_source_unavailable(self, mock_client_cls):
        """Test missing credentials surface as SourceUnavailableError."""
        mock_client_cls.side_effect = auth_exceptions.DefaultCredentialsError("no credentials")
        store = FirestoreDocumentStore(config=FirestoreConfig())

        with pytest.raises(SourceUnavailableError):
            _ = store.client

    def test_close(self, firestore_store, client):
        """Test close releases the client."""
        firestore_store.close()

        client.close.assert_called_once()
        assert firestore_store._client is None


class TestQuery:
    """Test suite for query."""

    def test_query_returns_documents(self, firestore_store, client):
        collection = client.collection.return_value
        collection.stream.return_value = [_snapshot("cust-1", {"phone": "2781"})]

        docs = firestore_store.query(
            "customers", [("phone", "==", "2781")], order_by=("updatedAt", "desc"), limit=5
        )

        assert [(d.id, d.data) for d in docs] == [("cust-1", {"phone": "2781"})]
        client.collection.assert_called_with("customers")
        collection.where.assert_called_once()
        collection.order_by.assert_called_once()
        collection.limit.assert_called_once_with(5)

    def test_query_without_order_or_limit(self, firestore_store, client):
        collection = client.collection.return_value
        collection.stream.return_value = []

        assert firestore_store.query("coupons", [("active", "==", True)]) == []
        collection.order_by.assert_not_called()
        collection.limit.assert_not_called()

    def test_unsupported_operator(self, firestore_store):
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            firestore_store.query("customers", [("phone", "in", ["1"])])

    def test_api_error_is_source_unavailable(self, firestore_store, client):
        client.collection.return_value.stream.side_effect = gcp_exceptions.ServiceUnavailable(
            "backend down"
        )

        with pytest.raises(SourceUnavailableError) as exc_info:
            firestore_store.query("customers", [("phone", "==", "2781")])

        assert exc_info.value.source == "customers"

    @pytest.mark.asyncio
    async def test_query_async(self, firestore_store, client):
        client.collection.return_value.stream.return_value = [_snapshot("c", {})]

        docs = await firestore_store.query_async("coupons", [])

        assert [d.id for d in docs] == ["c"]


class TestDocuments:
    """Test suite for single-document operations."""

    def test_get(self, firestore_store, client):
        document = client.collection.return_value.document.return_value
        document.get.return_value = _snapshot("coupon-a", {"value": 20})

        doc = firestore_store.get("coupons", "coupon-a")

        assert doc.id == "coupon-a"
        assert doc.get("value") == 20
        client.collection.return_value.document.assert_called_with("coupon-a")

    def test_get_missing(self, firestore_store, client):
        document = client.collection.return_value.document.return_value
        document.get.return_value = _snapshot("gone", None, exists=False)

        assert firestore_store.get("coupons", "gone") is None
        assert firestore_store.exists("coupons", "gone") is False

    def test_get_api_error(self, firestore_store, client):
        document = client.collection.return_value.document.return_value
        document.get.side_effect = gcp_exceptions.DeadlineExceeded("timeout")

        with pytest.raises(SourceUnavailableError):
            firestore_store.get("coupons", "coupon-a")

    def test_set_merges_by_default(self, firestore_store, client):
        document = client.collection.return_value.document.return_value

        firestore_store.set("users", "uid-1", {"linkedCustomerId": "cust-1"})

        document.set.assert_called_once_with({"linkedCustomerId": "cust-1"}, merge=True)

    def test_update(self, firestore_store, client):
        document = client.collection.return_value.document.return_value

        firestore_store.update("customers", "cust-1", {"userId": "uid-1"})

        document.update.assert_called_once_with({"userId": "uid-1"})

    def test_update_missing_document_is_stale(self, firestore_store, client):
        document = client.collection.return_value.document.return_value
        document.update.side_effect = gcp_exceptions.NotFound("no document")

        with pytest.raises(StaleReferenceError) as exc_info:
            firestore_store.update("customers", "cust-1", {"userId": "uid-1"})

        assert exc_info.value.doc_id == "cust-1"

    def test_update_api_error(self, firestore_store, client):
        document = client.collection.return_value.document.return_value
        document.update.side_effect = gcp_exceptions.PermissionDenied("denied")

        with pytest.raises(SourceUnavailableError):
            firestore_store.update("customers", "cust-1", {"userId": "uid-1"})


class TestUpdateMany:
    """Test suite for batched updates."""

    def test_commits_one_batch(self, firestore_store, client):
        batch = client.batch.return_value
        updates = [
            FieldUpdate("customers", "cust-1", {"userId": None}),
            FieldUpdate("customers", "cust-2", {"userId": "uid-1"}),
        ]

        firestore_store.update_many(updates)

        assert batch.update.call_count == 2
        batch.commit.assert_called_once()

    def test_empty_is_noop(self, firestore_store, client):
        firestore_store.update_many([])

        client.batch.assert_not_called()

    def test_missing_document_is_stale(self, firestore_store, client):
        client.batch.return_value.commit.side_effect = gcp_exceptions.NotFound("no document")

        with pytest.raises(StaleReferenceError):
            firestore_store.update_many([FieldUpdate("customers", "cust-1", {"userId": None})])

    def test_api_error(self, firestore_store, client):
        client.batch.return_value.commit.side_effect = gcp_exceptions.Aborted("contention")

        with pytest.raises(SourceUnavailableError):
            firestore_store.update_many([FieldUpdate("customers", "cust-1", {"userId": None})])
