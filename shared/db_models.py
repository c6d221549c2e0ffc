"""SQLAlchemy database models for the notes to Notion sync application."""

from sqlalchemy import (
    JSON, Column, String, Integer, Boolean, Text, DateTime, ForeignKey, Index, TypeDecorator
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid


class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses
    CHAR(36), storing as stringified hex values.
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value
        else:
            if isinstance(value, uuid.UUID):
                return str(value)
            return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value
        else:
            if isinstance(value, str):
                return uuid.UUID(value)
            return value


Base = declarative_base()


class Note(Base):
    """Model for notes table (the local note store)."""
    __tablename__ = 'notes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    notebook_id = Column(Integer, nullable=False)
    title = Column(String(2000), nullable=False, default='')
    content = Column(Text, nullable=False, default='')
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_notes_user_notebook', 'user_id', 'notebook_id'),
    )


class Integration(Base):
    """Model for notion_integrations table."""
    __tablename__ = 'notion_integrations'

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False)
    workspace_id = Column(String(255), nullable=False)
    workspace_name = Column(String(255), nullable=False)
    access_token_encrypted = Column(Text, nullable=False)
    access_token_iv = Column(String(64), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_notion_integrations_user_workspace', 'user_id', 'workspace_id', unique=True),
        Index('idx_notion_integrations_user_active', 'user_id', 'is_active'),
    )


class ContainerMapping(Base):
    """Model for notion_databases table: notebook -> Notion database."""
    __tablename__ = 'notion_databases'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    notebook_id = Column(Integer, nullable=False)
    remote_database_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_notion_databases_user_notebook', 'user_id', 'notebook_id', unique=True),
        # Reverse lookup used by the webhook path
        Index('idx_notion_databases_remote_id', 'remote_database_id', unique=True),
    )


class SyncLink(Base):
    """Model for sync_links table: note <-> Notion page identity."""
    __tablename__ = 'sync_links'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    note_id = Column(Integer, ForeignKey('notes.id', ondelete='CASCADE'), nullable=False)
    remote_page_id = Column(String(255), nullable=False)
    last_applied_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_sync_links_note_id', 'note_id', unique=True),
        Index('idx_sync_links_remote_page_id', 'remote_page_id', unique=True),
    )


class SyncLogEntry(Base):
    """Model for notion_sync_log table. Rows are only ever inserted."""
    __tablename__ = 'notion_sync_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    note_id = Column(Integer, nullable=True)
    remote_page_id = Column(String(255), nullable=True)
    direction = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_notion_sync_log_user_created', 'user_id', 'created_at'),
    )
