"""Sync orchestration logic."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from services.notion_writer.codec import ContentCodec
from services.notion_writer.writer import (
    NotionWriter,
    build_page_properties,
    extract_note_id,
    extract_parent_database_id,
    extract_tags,
    extract_title,
    parse_notion_timestamp,
)
from services.sync_service.audit import SyncAuditLog
from services.sync_service.container_mapper import ContainerMapper
from shared.config import get_default_notebook_id
from shared.db_models import Note, SyncLink
from shared.db_operations import DatabaseOperations, utcnow
from shared.errors import NoteNotFound, RemoteApiError, StaleSyncError, SyncError
from shared.integration_store import IntegrationStore
from shared.models import SyncDirection, SyncStatus

logger = logging.getLogger(__name__)


class SyncStage(str, Enum):
    """Where a single push or pull currently is; reported when it fails."""
    STARTED = "started"
    RESOLVING_INTEGRATION = "resolving_integration"
    RESOLVING_CONTAINER = "resolving_container"
    CONVERTING_CONTENT = "converting_content"
    READING_REMOTE = "reading_remote"
    WRITING_REMOTE = "writing_remote"
    WRITING_LOCAL = "writing_local"


class ContentUpdater(Protocol):
    """Rewrites the child blocks of an already synced page."""

    async def replace(self, writer: NotionWriter, page_id: str, children: List[Dict[str, Any]]) -> None:
        ...


class ReplaceAllUpdater:
    """Replaces a page's content by deleting every child block and appending new ones.

    Notion has no "set children" call. After a successful replace the page
    holds exactly the given blocks.
    """

    async def replace(self, writer: NotionWriter, page_id: str, children: List[Dict[str, Any]]) -> None:
        existing = await writer.list_block_children(page_id)
        for block in existing:
            await writer.delete_block(block["id"])

        if children:
            await writer.append_block_children(page_id, children)

        logger.info(f"Replaced {len(existing)} blocks with {len(children)} on Notion page {page_id}")


class SyncOrchestrator:
    """Drives single push (note -> Notion page) and pull (Notion page -> note) operations.

    Each call is one-shot and keeps no state between calls. Failures never
    escape: they are written to the audit log and reported as ``False``.
    """

    def __init__(
        self,
        db_ops: DatabaseOperations,
        integrations: IntegrationStore,
        audit_log: Optional[SyncAuditLog] = None,
        codec: Optional[ContentCodec] = None,
        container_mapper: Optional[ContainerMapper] = None,
        writer_factory: Callable[[str], NotionWriter] = NotionWriter,
        content_updater: Optional[ContentUpdater] = None,
        default_notebook_id: Optional[int] = None
    ):
        """
        Initialize the sync orchestrator.

        Args:
            db_ops: Database operations instance (notes, links, mappings)
            integrations: Store of the users' Notion credentials
            audit_log: Sync attempt recorder
            codec: HTML <-> Notion block transcoder
            container_mapper: Notebook -> Notion database resolver
            writer_factory: Builds a NotionWriter from a decrypted access token
            content_updater: Strategy used to rewrite the blocks of an existing page
            default_notebook_id: Notebook receiving pages from unmapped databases
        """
        self.db_ops = db_ops
        self.integrations = integrations
        self.audit_log = audit_log or SyncAuditLog(db_ops)
        self.codec = codec or ContentCodec()
        self.writer_factory = writer_factory
        self.container_mapper = container_mapper or ContainerMapper(
            db_ops, integrations, writer_factory=writer_factory
        )
        self.content_updater = content_updater or ReplaceAllUpdater()
        self.default_notebook_id = (
            default_notebook_id if default_notebook_id is not None else get_default_notebook_id()
        )

    async def push(self, user_id: str, note_id: int) -> bool:
        """
        Write a local note to its Notion page, creating the page on first sync.

        Args:
            user_id: Owner of the note
            note_id: Local note ID

        Returns:
            True on success, False on any failure (see the sync log for why)
        """
        stage = SyncStage.STARTED
        page_id: Optional[str] = None
        logger.info(f"Pushing note {note_id} of user {user_id} to Notion")

        try:
            note = self.db_ops.get_note(user_id, note_id)
            if note is None:
                raise NoteNotFound(user_id, note_id)

            stage = SyncStage.RESOLVING_INTEGRATION
            integration = self.integrations.require_active(user_id)
            writer = self.writer_factory(self.integrations.access_token(integration))

            link = self.db_ops.get_sync_link_by_note(note.id)
            if link:
                page_id = link.remote_page_id
                if _to_minute(note.updated_at) < _to_minute(link.last_applied_at):
                    raise StaleSyncError(
                        f"Note {note.id} (updated {note.updated_at.isoformat()}) is older than "
                        f"the last write applied to page {page_id} ({link.last_applied_at.isoformat()})"
                    )

            stage = SyncStage.RESOLVING_CONTAINER
            database_id = await self.container_mapper.resolve(
                user_id, note.notebook_id, integration, writer=writer
            )

            stage = SyncStage.CONVERTING_CONTENT
            children = self.codec.to_notion(self.codec.encode(note.content))
            properties = build_page_properties(note.title, note.tags or [], note.id)

            stage = SyncStage.WRITING_REMOTE
            if link:
                await writer.update_page_properties(page_id, properties)
                await self.content_updater.replace(writer, page_id, children)
                self.db_ops.touch_sync_link(link.id, note.updated_at)
            else:
                page_id = await self._create_linked_page(writer, user_id, note, database_id, properties, children)

            logger.info(f"Successfully pushed note {note_id} to Notion page {page_id}")
            self.audit_log.record(
                user_id, SyncDirection.LOCAL_TO_REMOTE, SyncStatus.SUCCESS,
                note_id=note_id, remote_page_id=page_id
            )
            return True

        except Exception as e:
            logger.error(f"Failed to push note {note_id} of user {user_id} while {stage.value}: {e}", exc_info=True)
            self.audit_log.record(
                user_id, SyncDirection.LOCAL_TO_REMOTE, SyncStatus.FAILED,
                note_id=note_id, remote_page_id=page_id, error_message=str(e)
            )
            return False

    async def pull(self, user_id: str, page_id: str) -> bool:
        """
        Write a Notion page into the local note store.

        The note is found through its sync link, then through the page's
        "Note ID" property; otherwise a new note is created in the notebook
        mapped to the page's database (or the default notebook).

        Args:
            user_id: Owner of the integration the page belongs to
            page_id: Notion page ID

        Returns:
            True on success, False on any failure (see the sync log for why)
        """
        stage = SyncStage.STARTED
        note_id: Optional[int] = None
        logger.info(f"Pulling Notion page {page_id} for user {user_id}")

        try:
            stage = SyncStage.RESOLVING_INTEGRATION
            integration = self.integrations.require_active(user_id)
            writer = self.writer_factory(self.integrations.access_token(integration))

            stage = SyncStage.READING_REMOTE
            page = await writer.retrieve_page(page_id)
            if page.get("archived") or page.get("in_trash"):
                raise SyncError(f"Notion page {page_id} is archived")
            blocks = await writer.list_block_children(page_id)

            stage = SyncStage.CONVERTING_CONTENT
            content = self.codec.decode(blocks)
            title = extract_title(page)
            tags = extract_tags(page)
            edited_at = parse_notion_timestamp(page.get("last_edited_time")) or utcnow()

            stage = SyncStage.WRITING_LOCAL
            link = self.db_ops.get_sync_link_by_page(page_id)
            note = self._find_local_note(user_id, page_id, page, link)

            if note is None:
                notebook_id = self._notebook_for_page(user_id, page)
                note, created = self.db_ops.create_note_with_link(
                    user_id=user_id,
                    notebook_id=notebook_id,
                    title=title,
                    content=content,
                    tags=tags,
                    remote_page_id=page_id,
                    applied_at=edited_at
                )
                note_id = note.id
                if created:
                    logger.info(f"Created note {note.id} in notebook {notebook_id} from Notion page {page_id}")
                else:
                    logger.info(f"Notion page {page_id} was linked concurrently to note {note.id}")
            else:
                note_id = note.id
                floor = note.updated_at
                if link and link.last_applied_at > floor:
                    floor = link.last_applied_at
                if edited_at < _to_minute(floor):
                    raise StaleSyncError(
                        f"Notion page {page_id} (edited {edited_at.isoformat()}) is older than "
                        f"note {note.id} ({floor.isoformat()})"
                    )

                self.db_ops.update_note(note.id, title=title, content=content, tags=tags, updated_at=edited_at)
                if link:
                    self.db_ops.touch_sync_link(link.id, edited_at)
                else:
                    self.db_ops.create_sync_link(user_id, note.id, page_id, edited_at)
                logger.info(f"Updated note {note.id} from Notion page {page_id}")

            self.audit_log.record(
                user_id, SyncDirection.REMOTE_TO_LOCAL, SyncStatus.SUCCESS,
                note_id=note_id, remote_page_id=page_id
            )
            return True

        except Exception as e:
            logger.error(f"Failed to pull Notion page {page_id} for user {user_id} while {stage.value}: {e}", exc_info=True)
            self.audit_log.record(
                user_id, SyncDirection.REMOTE_TO_LOCAL, SyncStatus.FAILED,
                note_id=note_id, remote_page_id=page_id, error_message=str(e)
            )
            return False

    async def push_all(self, user_id: str) -> Dict[str, Any]:
        """
        Push every note of a user, one after another.

        Returns:
            Dictionary with total_count, synced_count and errors
        """
        notes = self.db_ops.get_notes_by_user(user_id)
        synced_count = 0
        errors: List[str] = []

        for note in notes:
            if await self.push(user_id, note.id):
                synced_count += 1
            else:
                errors.append(f"Failed to sync note {note.id}")

        logger.info(f"Bulk push for user {user_id}: {synced_count} of {len(notes)} notes synced")
        return {
            "total_count": len(notes),
            "synced_count": synced_count,
            "errors": errors
        }

    async def sync_note_to_remote(self, user_id: str, note_id: int) -> bool:
        """Push a local note to Notion; see push()."""
        return await self.push(user_id, note_id)

    async def sync_note_to_local(self, user_id: str, page_id: str) -> bool:
        """Pull a Notion page into the local note store; see pull()."""
        return await self.pull(user_id, page_id)

    async def _create_linked_page(
        self,
        writer: NotionWriter,
        user_id: str,
        note: Note,
        database_id: str,
        properties: Dict[str, Any],
        children: List[Dict[str, Any]]
    ) -> str:
        page = await writer.create_page(database_id, properties, children)
        link, created = self.db_ops.create_sync_link(user_id, note.id, page["id"], note.updated_at)
        if created:
            return page["id"]

        # Another push linked the note first; drop the duplicate page
        logger.warning(f"Note {note.id} was linked concurrently; archiving duplicate page {page['id']}")
        try:
            await writer.archive_page(page["id"])
        except RemoteApiError as e:
            logger.error(f"Failed to archive duplicate page {page['id']}: {e}")
        return link.remote_page_id

    def _find_local_note(
        self,
        user_id: str,
        page_id: str,
        page: Dict[str, Any],
        link: Optional[SyncLink]
    ) -> Optional[Note]:
        if link:
            if link.user_id != user_id:
                raise SyncError(f"Notion page {page_id} is linked to another user's note")
            note = self.db_ops.get_note(user_id, link.note_id)
            if note is None:
                raise NoteNotFound(user_id, link.note_id)
            return note

        # The page may carry the id of a note whose link was lost
        note_id = extract_note_id(page)
        if note_id is None:
            return None
        note = self.db_ops.get_note(user_id, note_id)
        if note is None or self.db_ops.get_sync_link_by_note(note.id) is not None:
            return None
        logger.info(f"Adopting unlinked note {note.id} for Notion page {page_id}")
        return note

    def _notebook_for_page(self, user_id: str, page: Dict[str, Any]) -> int:
        database_id = extract_parent_database_id(page)
        if database_id:
            mapping = self.db_ops.get_container_mapping_by_database(database_id)
            if mapping and mapping.user_id == user_id:
                return mapping.notebook_id
        return self.default_notebook_id


def _to_minute(value: datetime) -> datetime:
    # Notion reports last_edited_time rounded down to the minute
    return value.replace(second=0, microsecond=0)
