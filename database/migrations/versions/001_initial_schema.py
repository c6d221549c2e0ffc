"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create notes table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notes (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            notebook_id INTEGER NOT NULL,
            title VARCHAR(2000) NOT NULL DEFAULT '',
            content TEXT NOT NULL DEFAULT '',
            tags JSON NOT NULL DEFAULT '[]',
            created_at TIMESTAMP NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notes_user_notebook
        ON notes(user_id, notebook_id)
    """)

    # Create notion_integrations table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notion_integrations (
            id UUID PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            workspace_id VARCHAR(255) NOT NULL,
            workspace_name VARCHAR(255) NOT NULL,
            access_token_encrypted TEXT NOT NULL,
            access_token_iv VARCHAR(64) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMP NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_notion_integrations_user_workspace
        ON notion_integrations(user_id, workspace_id)
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notion_integrations_user_active
        ON notion_integrations(user_id, is_active)
    """)

    # Create notion_databases table (notebook -> Notion database)
    op.execute("""
        CREATE TABLE IF NOT EXISTS notion_databases (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            notebook_id INTEGER NOT NULL,
            remote_database_id VARCHAR(255) NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_notion_databases_user_notebook
        ON notion_databases(user_id, notebook_id)
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_notion_databases_remote_id
        ON notion_databases(remote_database_id)
    """)

    # Create sync_links table (note <-> Notion page)
    op.execute("""
        CREATE TABLE IF NOT EXISTS sync_links (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
            remote_page_id VARCHAR(255) NOT NULL,
            last_applied_at TIMESTAMP NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_links_note_id
        ON sync_links(note_id)
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_links_remote_page_id
        ON sync_links(remote_page_id)
    """)

    # Create notion_sync_log table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notion_sync_log (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            note_id INTEGER,
            remote_page_id VARCHAR(255),
            direction VARCHAR(20) NOT NULL,
            status VARCHAR(20) NOT NULL,
            error_message TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notion_sync_log_user_created
        ON notion_sync_log(user_id, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notion_sync_log CASCADE")
    op.execute("DROP TABLE IF EXISTS sync_links CASCADE")
    op.execute("DROP TABLE IF EXISTS notion_databases CASCADE")
    op.execute("DROP TABLE IF EXISTS notion_integrations CASCADE")
    op.execute("DROP TABLE IF EXISTS notes CASCADE")
