"""Shared fixtures for sync service tests."""

import itertools
from datetime import datetime, timedelta
from typing import Any, Dict, List

import pytest

from services.notion_writer.codec import read_plain_text
from services.sync_service.orchestrator import SyncOrchestrator
from shared.db_operations import DatabaseOperations
from shared.encryption import EncryptionService
from shared.errors import RemoteApiError
from shared.integration_store import IntegrationStore

USER_ID = "user_1"
ACCESS_TOKEN = "secret_token"
WORKSPACE_ID = "ws_root"


class FakeNotion:
    """In-memory stand-in for NotionWriter, keeping pages and blocks like the API does."""

    def __init__(self):
        self.databases: Dict[str, Dict[str, Any]] = {}
        self.pages: Dict[str, Dict[str, Any]] = {}
        self.children: Dict[str, List[Dict[str, Any]]] = {}
        self.tokens: List[str] = []
        self.fail_titles = set()
        self.clock = datetime(2030, 1, 1)
        self._ids = itertools.count(1)

    def bind(self, access_token: str) -> "FakeNotion":
        """Writer factory: every token gets the same workspace."""
        self.tokens.append(access_token)
        return self

    def tick(self) -> str:
        self.clock += timedelta(minutes=1)
        return self.clock.strftime("%Y-%m-%dT%H:%M:%S.000Z")

    def _blocks(self, children):
        return [dict(child, id=f"blk_{next(self._ids)}") for child in children]

    async def create_database(self, parent_page_id: str, title: str) -> str:
        database_id = f"db_{next(self._ids)}"
        self.databases[database_id] = {"parent": parent_page_id, "title": title}
        return database_id

    async def create_page(self, database_id, properties, children):
        if read_plain_text(properties.get("Name", {}).get("title")) in self.fail_titles:
            raise RemoteApiError("Notion API error during page creation: validation_error", status=400)
        page_id = f"page_{next(self._ids)}"
        self.pages[page_id] = {
            "object": "page",
            "id": page_id,
            "parent": {"type": "database_id", "database_id": database_id},
            "properties": properties,
            "archived": False,
            "last_edited_time": self.tick(),
        }
        self.children[page_id] = self._blocks(children)
        return self.pages[page_id]

    async def retrieve_page(self, page_id):
        if page_id not in self.pages:
            raise RemoteApiError("Notion API error during page retrieval: object_not_found", status=404)
        return self.pages[page_id]

    async def update_page_properties(self, page_id, properties):
        self.pages[page_id]["properties"] = properties
        self.pages[page_id]["last_edited_time"] = self.tick()
        return self.pages[page_id]

    async def archive_page(self, page_id):
        self.pages[page_id]["archived"] = True

    async def list_block_children(self, block_id):
        return list(self.children.get(block_id, []))

    async def delete_block(self, block_id):
        for blocks in self.children.values():
            blocks[:] = [block for block in blocks if block["id"] != block_id]

    async def append_block_children(self, block_id, children):
        self.children.setdefault(block_id, []).extend(self._blocks(children))

    async def check_connection(self):
        return {"object": "user", "type": "bot"}

    def edit_page(self, page_id, title=None, children=None, edited_at=None):
        """Simulate an edit made by a person in Notion."""
        page = self.pages[page_id]
        if title is not None:
            page["properties"] = dict(page["properties"], Name={"title": [{"plain_text": title}]})
        if children is not None:
            self.children[page_id] = self._blocks(children)
        page["last_edited_time"] = edited_at or self.tick()


@pytest.fixture
def db_ops():
    """Create a test database operations instance with in-memory SQLite."""
    db = DatabaseOperations(database_url="sqlite:///:memory:")
    db.create_tables()
    return db


@pytest.fixture
def integrations(db_ops):
    store = IntegrationStore(db_ops, EncryptionService(encryption_key=EncryptionService.generate_key()))
    store.connect(USER_ID, ACCESS_TOKEN, WORKSPACE_ID, "Workspace")
    return store


@pytest.fixture
def fake_notion():
    return FakeNotion()


@pytest.fixture
def orchestrator(db_ops, integrations, fake_notion):
    return SyncOrchestrator(
        db_ops=db_ops,
        integrations=integrations,
        writer_factory=fake_notion.bind,
        default_notebook_id=1
    )
