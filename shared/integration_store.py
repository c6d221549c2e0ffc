"""Per-user Notion workspace credentials."""

import logging
from typing import List, Optional

from cryptography.exceptions import InvalidTag

from shared.db_models import Integration
from shared.db_operations import DatabaseOperations
from shared.encryption import EncryptionService
from shared.errors import CredentialError, NoIntegration

logger = logging.getLogger(__name__)


class IntegrationStore:
    """Stores encrypted access tokens and the active flag of each workspace connection.

    The owning user id is bound to every ciphertext as associated data, so a
    token copied onto another user's row fails to decrypt.
    """

    def __init__(self, db_ops: DatabaseOperations, encryption_service: EncryptionService):
        self.db_ops = db_ops
        self.encryption_service = encryption_service

    def connect(
        self,
        user_id: str,
        access_token: str,
        workspace_id: str,
        workspace_name: str
    ) -> Integration:
        """
        Store (or refresh) a workspace connection for a user.

        Args:
            user_id: The user ID
            access_token: Plaintext Notion access token obtained by the OAuth flow
            workspace_id: Notion workspace (root page) ID
            workspace_name: Workspace display name

        Returns:
            The active Integration record
        """
        encrypted = self.encryption_service.encrypt(access_token, associated_data=user_id)
        integration = self.db_ops.upsert_integration(
            user_id=user_id,
            workspace_id=workspace_id,
            workspace_name=workspace_name,
            access_token_encrypted=encrypted.ciphertext,
            access_token_iv=encrypted.iv
        )
        logger.info(f"Stored Notion integration for user {user_id} (workspace {workspace_id})")
        return integration

    def get_active(self, user_id: str) -> Optional[Integration]:
        return self.db_ops.get_active_integration(user_id)

    def require_active(self, user_id: str) -> Integration:
        """
        Get the user's active integration.

        Raises:
            NoIntegration: If the user has none
        """
        integration = self.get_active(user_id)
        if integration is None:
            raise NoIntegration(user_id)
        return integration

    def list_integrations(self, user_id: str) -> List[Integration]:
        return self.db_ops.get_integrations_by_user(user_id)

    def deactivate(self, user_id: str, workspace_id: Optional[str] = None) -> int:
        """Soft-disconnect; rows are kept for audit retention."""
        count = self.db_ops.deactivate_integrations(user_id, workspace_id)
        logger.info(f"Deactivated {count} Notion integration(s) for user {user_id}")
        return count

    def access_token(self, integration: Integration) -> str:
        """
        Decrypt the access token of an integration.

        Raises:
            CredentialError: If the token cannot be authenticated with the current key
        """
        try:
            return self.encryption_service.decrypt(
                integration.access_token_encrypted,
                integration.access_token_iv,
                associated_data=integration.user_id
            )
        except (InvalidTag, ValueError) as e:
            raise CredentialError(
                f"Access token of integration {integration.id} could not be decrypted"
            ) from e
