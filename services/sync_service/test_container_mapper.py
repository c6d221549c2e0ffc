"""Tests for notebook -> Notion database resolution."""

import pytest
from unittest.mock import AsyncMock, Mock

from services.sync_service.container_mapper import ContainerMapper
from shared.errors import RemoteApiError


@pytest.fixture
def mapper(db_ops, integrations, fake_notion):
    return ContainerMapper(db_ops, integrations, writer_factory=fake_notion.bind, title_prefix="Notebook")


@pytest.mark.asyncio
async def test_resolve_creates_database_once(mapper, db_ops, integrations, fake_notion):
    integration = integrations.require_active("user_1")

    first = await mapper.resolve("user_1", 3, integration)
    second = await mapper.resolve("user_1", 3, integration)

    assert first == second
    assert list(fake_notion.databases) == [first]
    assert fake_notion.databases[first] == {"parent": "ws_root", "title": "Notebook 3"}
    # Token is only decrypted when a database has to be created
    assert fake_notion.tokens == ["secret_token"]


@pytest.mark.asyncio
async def test_resolve_uses_given_writer(mapper, integrations, fake_notion):
    writer = Mock()
    writer.create_database = AsyncMock(return_value="db_given")

    database_id = await mapper.resolve("user_1", 1, integrations.require_active("user_1"), writer=writer)

    assert database_id == "db_given"
    assert fake_notion.tokens == []


@pytest.mark.asyncio
async def test_resolve_remote_failure_persists_nothing(mapper, db_ops, integrations):
    writer = Mock()
    writer.create_database = AsyncMock(side_effect=RemoteApiError("forbidden", status=403))

    with pytest.raises(RemoteApiError):
        await mapper.resolve("user_1", 1, integrations.require_active("user_1"), writer=writer)

    assert db_ops.get_container_mapping("user_1", 1) is None


@pytest.mark.asyncio
async def test_resolve_lost_race_returns_winner(mapper, db_ops, integrations):
    """Test that a concurrent mapping wins and the extra database is removed."""
    def create_concurrently(parent_page_id, title):
        db_ops.create_container_mapping("user_1", 2, "db_winner")
        return "db_loser"

    writer = Mock()
    writer.create_database = AsyncMock(side_effect=create_concurrently)
    writer.delete_block = AsyncMock()

    database_id = await mapper.resolve("user_1", 2, integrations.require_active("user_1"), writer=writer)

    assert database_id == "db_winner"
    writer.delete_block.assert_awaited_once_with("db_loser")
    assert db_ops.get_container_mapping_by_database("db_loser") is None


def test_container_title(mapper):
    assert mapper.container_title(12) == "Notebook 12"
