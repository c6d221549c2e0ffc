"""Unit tests for Notion Writer service."""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from notion_client.errors import APIResponseError

from services.notion_writer.writer import (
    CONTAINER_PROPERTIES,
    MAX_CHILDREN_PER_REQUEST,
    NotionWriter,
    build_page_properties,
    extract_note_id,
    extract_parent_database_id,
    extract_tags,
    extract_title,
    parse_notion_timestamp,
)
from shared.errors import RemoteApiError


def _api_error(status, code, headers=None):
    """APIResponseError without going through its version-specific constructor."""
    error = APIResponseError.__new__(APIResponseError)
    error.status = status
    error.code = code
    error.headers = httpx.Headers(headers or {})
    error.body = ""
    return error


def _blocks(count):
    return [{"object": "block", "type": "paragraph", "paragraph": {"rich_text": []}} for _ in range(count)]


class TestNotionWriter:
    """Tests for NotionWriter class."""

    @pytest.fixture
    def mock_notion_client(self):
        """Create a mock Notion client."""
        mock_client = MagicMock()
        mock_client.pages.create = AsyncMock(return_value={"id": "page123"})
        mock_client.pages.retrieve = AsyncMock()
        mock_client.pages.update = AsyncMock(return_value={"id": "page123"})
        mock_client.databases.create = AsyncMock(return_value={"id": "db123"})
        mock_client.blocks.delete = AsyncMock()
        mock_client.blocks.children.list = AsyncMock()
        mock_client.blocks.children.append = AsyncMock()
        mock_client.users.me = AsyncMock(return_value={"object": "user", "type": "bot"})
        return mock_client

    @pytest.fixture
    def writer(self, mock_notion_client):
        """Create a NotionWriter instance with mocked client."""
        with patch('services.notion_writer.writer.AsyncClient', return_value=mock_notion_client):
            return NotionWriter(api_token="test_token")

    def test_client_uses_notion_version(self):
        with patch('services.notion_writer.writer.AsyncClient') as client_cls:
            NotionWriter(api_token="test_token", notion_version="2022-06-28")

        client_cls.assert_called_once_with(auth="test_token", notion_version="2022-06-28")

    @pytest.mark.asyncio
    async def test_create_database(self, writer, mock_notion_client):
        database_id = await writer.create_database(parent_page_id="root_page", title="Notebook 3")

        assert database_id == "db123"
        kwargs = mock_notion_client.databases.create.call_args.kwargs
        assert kwargs["parent"] == {"type": "page_id", "page_id": "root_page"}
        assert kwargs["title"] == [{"type": "text", "text": {"content": "Notebook 3"}}]
        assert kwargs["properties"] == CONTAINER_PROPERTIES

    @pytest.mark.asyncio
    async def test_create_page_small(self, writer, mock_notion_client):
        properties = build_page_properties("Title", [], 1)

        page = await writer.create_page("db123", properties, _blocks(3))

        assert page["id"] == "page123"
        kwargs = mock_notion_client.pages.create.call_args.kwargs
        assert kwargs["parent"] == {"database_id": "db123"}
        assert kwargs["properties"] == properties
        assert len(kwargs["children"]) == 3
        mock_notion_client.blocks.children.append.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_page_batches_children(self, writer, mock_notion_client):
        """Test that children past the request limit are appended afterwards."""
        await writer.create_page("db123", {}, _blocks(MAX_CHILDREN_PER_REQUEST + 50))

        assert len(mock_notion_client.pages.create.call_args.kwargs["children"]) == MAX_CHILDREN_PER_REQUEST
        append_kwargs = mock_notion_client.blocks.children.append.call_args.kwargs
        assert append_kwargs["block_id"] == "page123"
        assert len(append_kwargs["children"]) == 50

    @pytest.mark.asyncio
    async def test_create_page_archives_incomplete_page(self, writer, mock_notion_client):
        """Test that a page whose remaining children fail to append is archived."""
        mock_notion_client.blocks.children.append.side_effect = httpx.ConnectError("connection reset")

        with pytest.raises(RemoteApiError):
            await writer.create_page("db123", {}, _blocks(MAX_CHILDREN_PER_REQUEST + 50))

        mock_notion_client.pages.create.assert_awaited_once()
        mock_notion_client.pages.update.assert_awaited_once_with(page_id="page123", archived=True)

    @pytest.mark.asyncio
    async def test_create_page_append_and_archive_both_fail(self, writer, mock_notion_client):
        mock_notion_client.blocks.children.append.side_effect = httpx.ConnectError("connection reset")
        mock_notion_client.pages.update.side_effect = httpx.ConnectError("connection reset")

        with pytest.raises(RemoteApiError) as exc_info:
            await writer.create_page("db123", {}, _blocks(MAX_CHILDREN_PER_REQUEST + 1))

        # The append failure is reported, not the archive failure
        assert "page creation" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_append_block_children_batches(self, writer, mock_notion_client):
        await writer.append_block_children("page123", _blocks(250))

        sizes = [len(c.kwargs["children"]) for c in mock_notion_client.blocks.children.append.call_args_list]
        assert sizes == [100, 100, 50]

    @pytest.mark.asyncio
    async def test_list_block_children_follows_pagination(self, writer, mock_notion_client):
        mock_notion_client.blocks.children.list.side_effect = [
            {"results": [{"id": "b1"}, {"id": "b2"}], "has_more": True, "next_cursor": "cursor_1"},
            {"results": [{"id": "b3"}], "has_more": False, "next_cursor": None},
        ]

        blocks = await writer.list_block_children("page123")

        assert [block["id"] for block in blocks] == ["b1", "b2", "b3"]
        calls = mock_notion_client.blocks.children.list.call_args_list
        assert "start_cursor" not in calls[0].kwargs
        assert calls[1].kwargs["start_cursor"] == "cursor_1"

    @pytest.mark.asyncio
    async def test_archive_and_delete(self, writer, mock_notion_client):
        await writer.archive_page("page123")
        await writer.delete_block("blk1")

        mock_notion_client.pages.update.assert_awaited_once_with(page_id="page123", archived=True)
        mock_notion_client.blocks.delete.assert_awaited_once_with(block_id="blk1")

    @pytest.mark.asyncio
    async def test_update_page_properties(self, writer, mock_notion_client):
        properties = build_page_properties("New", ["tag"], 1)

        await writer.update_page_properties("page123", properties)

        mock_notion_client.pages.update.assert_awaited_once_with(page_id="page123", properties=properties)

    @pytest.mark.asyncio
    async def test_check_connection(self, writer, mock_notion_client):
        user = await writer.check_connection()

        assert user["type"] == "bot"

    @pytest.mark.asyncio
    async def test_api_error_is_translated(self, writer, mock_notion_client):
        mock_notion_client.pages.retrieve.side_effect = _api_error(404, "object_not_found")

        with pytest.raises(RemoteApiError) as exc_info:
            await writer.retrieve_page("missing")

        assert exc_info.value.status == 404
        assert exc_info.value.code == "object_not_found"
        assert mock_notion_client.pages.retrieve.await_count == 1

    @pytest.mark.asyncio
    async def test_network_error_is_translated(self, writer, mock_notion_client):
        mock_notion_client.blocks.delete.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(RemoteApiError):
            await writer.delete_block("blk1")

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, writer, mock_notion_client):
        """Test that a 429 is retried after the Retry-After delay."""
        mock_notion_client.pages.retrieve.side_effect = [
            _api_error(429, "rate_limited", {"Retry-After": "2"}),
            {"id": "page123"},
        ]

        with patch('services.notion_writer.rate_limit.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            page = await writer.retrieve_page("page123")

        assert page["id"] == "page123"
        mock_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_rate_limit_gives_up(self, writer, mock_notion_client):
        mock_notion_client.pages.retrieve.side_effect = _api_error(429, "rate_limited")

        with patch('services.notion_writer.rate_limit.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(RemoteApiError) as exc_info:
                await writer.retrieve_page("page123")

        assert exc_info.value.code == "rate_limited"
        # First attempt plus three retries, default wait without Retry-After
        assert mock_notion_client.pages.retrieve.await_count == 4
        mock_sleep.assert_awaited_with(1.0)


class TestPageProperties:
    """Tests for building and reading page properties."""

    def test_build_page_properties(self):
        properties = build_page_properties("My Note", ["work", "a,b", ""], 42)

        assert properties["Name"] == {"title": [{"type": "text", "text": {"content": "My Note"}}]}
        assert properties["Tags"] == {"multi_select": [{"name": "work"}, {"name": "a b"}]}
        assert properties["Note ID"] == {"number": 42}

    def test_build_page_properties_without_note_id(self):
        assert "Note ID" not in build_page_properties("My Note", [])

    def test_extract_from_page(self):
        page = {
            "id": "page123",
            "parent": {"type": "database_id", "database_id": "db123"},
            "properties": {
                "Title": {"type": "title", "title": [{"plain_text": "Hello"}, {"plain_text": " world"}]},
                "Tags": {"type": "multi_select", "multi_select": [{"name": "a"}, {"name": "b"}]},
                "Note ID": {"type": "number", "number": 7},
            }
        }

        assert extract_title(page) == "Hello world"
        assert extract_tags(page) == ["a", "b"]
        assert extract_note_id(page) == 7
        assert extract_parent_database_id(page) == "db123"

    def test_extract_from_bare_page(self):
        page = {"id": "page123", "parent": {"type": "page_id", "page_id": "root"}, "properties": {}}

        assert extract_title(page) == "Untitled"
        assert extract_tags(page) == []
        assert extract_note_id(page) is None
        assert extract_parent_database_id(page) is None

    def test_parse_notion_timestamp(self):
        assert parse_notion_timestamp("2030-01-02T03:04:00.000Z") == datetime(2030, 1, 2, 3, 4)
        assert parse_notion_timestamp("2030-01-02T05:04:00+02:00") == datetime(2030, 1, 2, 3, 4)
        assert parse_notion_timestamp(None) is None
