"""Database operations for the notes to Notion sync application."""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from shared.db_models import Base, Note, Integration, ContainerMapping, SyncLink, SyncLogEntry
from shared.config import get_database_url


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DatabaseOperations:
    """Handles all database operations for the sync application."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_database_url()
        self.engine = create_engine(self.database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # Note Operations

    def get_note(self, user_id: str, note_id: int) -> Optional[Note]:
        """
        Get a note owned by a user.

        Args:
            user_id: The owning user ID
            note_id: The local note ID

        Returns:
            Note record or None if not found
        """
        with self.get_session() as session:
            stmt = select(Note).where(Note.id == note_id, Note.user_id == user_id)
            return session.execute(stmt).scalar_one_or_none()

    def get_notes_by_user(self, user_id: str) -> List[Note]:
        """Get all notes of a user, oldest first."""
        with self.get_session() as session:
            stmt = select(Note).where(Note.user_id == user_id).order_by(Note.id.asc())
            return list(session.execute(stmt).scalars().all())

    def create_note(
        self,
        user_id: str,
        notebook_id: int,
        title: str,
        content: str,
        tags: Optional[List[str]] = None,
        updated_at: Optional[datetime] = None
    ) -> Note:
        """
        Create a local note.

        Args:
            user_id: The owning user ID
            notebook_id: Notebook (note group) the note belongs to
            title: Note title
            content: HTML body
            tags: Optional list of tags
            updated_at: Optional modification time, defaults to now

        Returns:
            The created Note record
        """
        now = utcnow()
        with self.get_session() as session:
            note = Note(
                user_id=user_id,
                notebook_id=notebook_id,
                title=title,
                content=content,
                tags=list(tags or []),
                created_at=now,
                updated_at=updated_at or now
            )
            session.add(note)
            session.commit()
            session.refresh(note)
            return note

    def update_note(
        self,
        note_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
        updated_at: Optional[datetime] = None
    ) -> Optional[Note]:
        """
        Update fields of a note.

        Args:
            note_id: The note ID
            title: New title
            content: New HTML body
            tags: New tag list
            updated_at: Modification time to record, defaults to now

        Returns:
            The updated Note record or None if not found
        """
        with self.get_session() as session:
            note = session.get(Note, note_id)
            if not note:
                return None

            if title is not None:
                note.title = title
            if content is not None:
                note.content = content
            if tags is not None:
                note.tags = list(tags)
            note.updated_at = updated_at or utcnow()

            session.commit()
            session.refresh(note)
            return note

    def create_note_with_link(
        self,
        user_id: str,
        notebook_id: int,
        title: str,
        content: str,
        tags: List[str],
        remote_page_id: str,
        applied_at: datetime
    ) -> Tuple[Note, bool]:
        """
        Create a note and its sync link in one transaction.

        If another caller already linked the page, nothing is written and the
        note behind the existing link is returned instead.

        Returns:
            Tuple of (note, created)
        """
        with self.get_session() as session:
            note = Note(
                user_id=user_id,
                notebook_id=notebook_id,
                title=title,
                content=content,
                tags=list(tags),
                created_at=utcnow(),
                updated_at=applied_at
            )
            session.add(note)
            try:
                session.flush()
                session.add(SyncLink(
                    user_id=user_id,
                    note_id=note.id,
                    remote_page_id=remote_page_id,
                    last_applied_at=applied_at,
                    created_at=utcnow(),
                    updated_at=utcnow()
                ))
                session.commit()
                session.refresh(note)
                return note, True
            except IntegrityError:
                session.rollback()

        link = self.get_sync_link_by_page(remote_page_id)
        if link is None:
            raise RuntimeError(f"Sync link for page {remote_page_id} conflicted but was not found")
        return self.get_note(link.user_id, link.note_id), False

    # Integration Operations

    def upsert_integration(
        self,
        user_id: str,
        workspace_id: str,
        workspace_name: str,
        access_token_encrypted: str,
        access_token_iv: str
    ) -> Integration:
        """
        Store a workspace connection, reactivating an existing one.

        Args:
            user_id: The user ID
            workspace_id: Notion workspace (root page) ID
            workspace_name: Workspace display name
            access_token_encrypted: Encrypted access token
            access_token_iv: IV used to encrypt the token

        Returns:
            The created or updated Integration record
        """
        with self.get_session() as session:
            integration = session.query(Integration).filter(
                Integration.user_id == user_id,
                Integration.workspace_id == workspace_id
            ).first()

            now = utcnow()
            if integration:
                integration.workspace_name = workspace_name
                integration.access_token_encrypted = access_token_encrypted
                integration.access_token_iv = access_token_iv
                integration.is_active = True
                integration.updated_at = now
            else:
                integration = Integration(
                    user_id=user_id,
                    workspace_id=workspace_id,
                    workspace_name=workspace_name,
                    access_token_encrypted=access_token_encrypted,
                    access_token_iv=access_token_iv,
                    is_active=True,
                    created_at=now,
                    updated_at=now
                )
                session.add(integration)

            session.commit()
            session.refresh(integration)
            return integration

    def get_active_integration(self, user_id: str) -> Optional[Integration]:
        """
        Get the user's active integration.

        When several workspaces are active the most recently updated wins.
        """
        with self.get_session() as session:
            stmt = select(Integration).where(
                Integration.user_id == user_id,
                Integration.is_active.is_(True)
            ).order_by(
                Integration.updated_at.desc()
            ).limit(1)
            return session.execute(stmt).scalar_one_or_none()

    def get_integrations_by_user(self, user_id: str) -> List[Integration]:
        """Get every integration of a user, active or not."""
        with self.get_session() as session:
            stmt = select(Integration).where(
                Integration.user_id == user_id
            ).order_by(Integration.created_at.asc())
            return list(session.execute(stmt).scalars().all())

    def deactivate_integrations(
        self,
        user_id: str,
        workspace_id: Optional[str] = None
    ) -> int:
        """
        Soft-delete integrations of a user.

        Args:
            user_id: The user ID
            workspace_id: Optional workspace. If None, deactivates all of the user's integrations.

        Returns:
            Number of integrations deactivated
        """
        with self.get_session() as session:
            stmt = update(Integration).where(
                Integration.user_id == user_id,
                Integration.is_active.is_(True)
            )
            if workspace_id:
                stmt = stmt.where(Integration.workspace_id == workspace_id)

            result = session.execute(stmt.values(is_active=False, updated_at=utcnow()))
            session.commit()
            return result.rowcount

    # Container Mapping Operations

    def get_container_mapping(
        self,
        user_id: str,
        notebook_id: int
    ) -> Optional[ContainerMapping]:
        """Get the Notion database mapped to a user's notebook."""
        with self.get_session() as session:
            stmt = select(ContainerMapping).where(
                ContainerMapping.user_id == user_id,
                ContainerMapping.notebook_id == notebook_id
            )
            return session.execute(stmt).scalar_one_or_none()

    def get_container_mapping_by_database(
        self,
        remote_database_id: str
    ) -> Optional[ContainerMapping]:
        """Reverse lookup: Notion database ID -> owning user and notebook."""
        with self.get_session() as session:
            stmt = select(ContainerMapping).where(
                ContainerMapping.remote_database_id == remote_database_id
            )
            return session.execute(stmt).scalar_one_or_none()

    def create_container_mapping(
        self,
        user_id: str,
        notebook_id: int,
        remote_database_id: str
    ) -> Tuple[ContainerMapping, bool]:
        """
        Insert a notebook mapping unless one already exists.

        Returns:
            Tuple of (mapping, created). When created is False the mapping is
            the one persisted by a concurrent caller.
        """
        with self.get_session() as session:
            mapping = ContainerMapping(
                user_id=user_id,
                notebook_id=notebook_id,
                remote_database_id=remote_database_id,
                created_at=utcnow()
            )
            session.add(mapping)
            try:
                session.commit()
                session.refresh(mapping)
                return mapping, True
            except IntegrityError:
                session.rollback()

        existing = self.get_container_mapping(user_id, notebook_id)
        if existing is None:
            raise RuntimeError(
                f"Database {remote_database_id} is already mapped to another notebook"
            )
        return existing, False

    # Sync Link Operations

    def get_sync_link_by_note(self, note_id: int) -> Optional[SyncLink]:
        """Get the sync link of a local note."""
        with self.get_session() as session:
            stmt = select(SyncLink).where(SyncLink.note_id == note_id)
            return session.execute(stmt).scalar_one_or_none()

    def get_sync_link_by_page(self, remote_page_id: str) -> Optional[SyncLink]:
        """Get the sync link of a Notion page."""
        with self.get_session() as session:
            stmt = select(SyncLink).where(SyncLink.remote_page_id == remote_page_id)
            return session.execute(stmt).scalar_one_or_none()

    def get_sync_links_by_user(self, user_id: str) -> List[SyncLink]:
        with self.get_session() as session:
            stmt = select(SyncLink).where(SyncLink.user_id == user_id)
            return list(session.execute(stmt).scalars().all())

    def create_sync_link(
        self,
        user_id: str,
        note_id: int,
        remote_page_id: str,
        applied_at: datetime
    ) -> Tuple[SyncLink, bool]:
        """
        Insert a sync link unless the note is already linked.

        Args:
            user_id: The user ID
            note_id: Local note ID
            remote_page_id: Notion page ID
            applied_at: Source timestamp of the write that created the link

        Returns:
            Tuple of (link, created)
        """
        now = utcnow()
        with self.get_session() as session:
            link = SyncLink(
                user_id=user_id,
                note_id=note_id,
                remote_page_id=remote_page_id,
                last_applied_at=applied_at,
                created_at=now,
                updated_at=now
            )
            session.add(link)
            try:
                session.commit()
                session.refresh(link)
                return link, True
            except IntegrityError:
                session.rollback()

        existing = self.get_sync_link_by_note(note_id) or self.get_sync_link_by_page(remote_page_id)
        if existing is None:
            raise RuntimeError(f"Sync link for note {note_id} conflicted but was not found")
        return existing, False

    def touch_sync_link(self, link_id: int, applied_at: datetime) -> Optional[SyncLink]:
        """
        Record a write applied through an existing link.

        last_applied_at never moves backwards.
        """
        with self.get_session() as session:
            link = session.get(SyncLink, link_id)
            if not link:
                return None

            if applied_at > link.last_applied_at:
                link.last_applied_at = applied_at
            link.updated_at = utcnow()

            session.commit()
            session.refresh(link)
            return link

    # Sync Log Operations

    def add_sync_log(
        self,
        user_id: str,
        direction: str,
        status: str,
        note_id: Optional[int] = None,
        remote_page_id: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> SyncLogEntry:
        """
        Append a sync log entry.

        Args:
            user_id: The user ID
            direction: local_to_remote or remote_to_local
            status: success, failed or pending
            note_id: Optional local note ID
            remote_page_id: Optional Notion page ID
            error_message: Error message for failed attempts

        Returns:
            The created SyncLogEntry record
        """
        with self.get_session() as session:
            entry = SyncLogEntry(
                user_id=user_id,
                note_id=note_id,
                remote_page_id=remote_page_id,
                direction=direction,
                status=status,
                error_message=error_message,
                created_at=utcnow()
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    def get_sync_logs(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> List[SyncLogEntry]:
        """
        Get sync log entries for a user, newest first.

        Args:
            user_id: The user ID
            limit: Maximum number of entries to return
            offset: Number of entries to skip

        Returns:
            List of SyncLogEntry records
        """
        with self.get_session() as session:
            stmt = select(SyncLogEntry).where(
                SyncLogEntry.user_id == user_id
            ).order_by(
                SyncLogEntry.created_at.desc(),
                SyncLogEntry.id.desc()
            ).limit(limit).offset(offset)

            result = session.execute(stmt)
            return list(result.scalars().all())
