"""Tests for the integration store."""

import pytest

from shared.db_operations import DatabaseOperations
from shared.encryption import EncryptionService
from shared.errors import CredentialError, NoIntegration
from shared.integration_store import IntegrationStore


@pytest.fixture
def db_ops():
    db = DatabaseOperations(database_url="sqlite:///:memory:")
    db.create_tables()
    return db


@pytest.fixture
def store(db_ops):
    return IntegrationStore(db_ops, EncryptionService(encryption_key=EncryptionService.generate_key()))


def test_connect_stores_encrypted_token(store, db_ops):
    """Test that the plaintext token never reaches the database."""
    integration = store.connect("user_1", "secret_token", "ws_1", "Workspace")

    stored = db_ops.get_active_integration("user_1")
    assert stored.id == integration.id
    assert "secret_token" not in stored.access_token_encrypted
    assert store.access_token(stored) == "secret_token"


def test_reconnect_replaces_token(store):
    store.connect("user_1", "old_token", "ws_1", "Workspace")
    store.connect("user_1", "new_token", "ws_1", "Renamed")

    integration = store.require_active("user_1")
    assert integration.workspace_name == "Renamed"
    assert store.access_token(integration) == "new_token"
    assert len(store.list_integrations("user_1")) == 1


def test_require_active_without_integration(store):
    with pytest.raises(NoIntegration) as exc_info:
        store.require_active("user_1")

    assert exc_info.value.user_id == "user_1"


def test_deactivate(store):
    store.connect("user_1", "token", "ws_1", "Workspace")

    assert store.deactivate("user_1") == 1
    assert store.get_active("user_1") is None
    # Rows are kept
    assert len(store.list_integrations("user_1")) == 1


def test_token_bound_to_owner(store, db_ops):
    """Test that a token copied onto another user's row does not decrypt."""
    integration = store.connect("user_1", "token", "ws_1", "Workspace")
    integration.user_id = "user_2"

    with pytest.raises(CredentialError):
        store.access_token(integration)


def test_token_unreadable_after_key_change(store, db_ops):
    store.connect("user_1", "token", "ws_1", "Workspace")
    rotated = IntegrationStore(db_ops, EncryptionService(encryption_key=EncryptionService.generate_key()))

    with pytest.raises(CredentialError):
        rotated.access_token(rotated.require_active("user_1"))
