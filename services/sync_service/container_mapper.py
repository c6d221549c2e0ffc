"""Notebook -> Notion database resolution."""

import logging
from typing import Callable, Optional

from services.notion_writer.writer import NotionWriter
from shared.config import get_container_title_prefix
from shared.db_models import Integration
from shared.db_operations import DatabaseOperations
from shared.errors import RemoteApiError
from shared.integration_store import IntegrationStore

logger = logging.getLogger(__name__)


class ContainerMapper:
    """Finds or lazily creates the Notion database that holds a notebook's pages."""

    def __init__(
        self,
        db_ops: DatabaseOperations,
        integrations: IntegrationStore,
        writer_factory: Callable[[str], NotionWriter] = NotionWriter,
        title_prefix: Optional[str] = None
    ):
        self.db_ops = db_ops
        self.integrations = integrations
        self.writer_factory = writer_factory
        self.title_prefix = title_prefix or get_container_title_prefix()

    def container_title(self, notebook_id: int) -> str:
        return f"{self.title_prefix} {notebook_id}"

    async def resolve(
        self,
        user_id: str,
        notebook_id: int,
        integration: Integration,
        writer: Optional[NotionWriter] = None
    ) -> str:
        """
        Get the Notion database ID for a user's notebook, creating it on first use.

        The database is created under the integration's workspace page. If a
        concurrent caller persisted a mapping first, theirs is returned and the
        database created here is archived.

        Args:
            user_id: The user ID
            notebook_id: Local notebook ID
            integration: The user's active integration
            writer: Optional writer already bound to the integration's token

        Returns:
            Notion database ID

        Raises:
            RemoteApiError: If the database cannot be created (nothing is persisted)
        """
        mapping = self.db_ops.get_container_mapping(user_id, notebook_id)
        if mapping:
            return mapping.remote_database_id

        if writer is None:
            writer = self.writer_factory(self.integrations.access_token(integration))

        database_id = await writer.create_database(
            parent_page_id=integration.workspace_id,
            title=self.container_title(notebook_id)
        )

        mapping, created = self.db_ops.create_container_mapping(user_id, notebook_id, database_id)
        if created:
            logger.info(f"Mapped notebook {notebook_id} of user {user_id} to Notion database {database_id}")
            return database_id

        logger.warning(
            f"Notebook {notebook_id} of user {user_id} was mapped concurrently; "
            f"archiving duplicate database {database_id}"
        )
        try:
            # Databases are blocks of their parent page
            await writer.delete_block(database_id)
        except RemoteApiError as e:
            logger.error(f"Failed to archive duplicate database {database_id}: {e}")
        return mapping.remote_database_id
