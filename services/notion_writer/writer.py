"""Notion Writer - thin async wrapper over the Notion API used by the sync engine."""

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import httpx
from notion_client import AsyncClient
from notion_client.errors import APIResponseError, HTTPResponseError, RequestTimeoutError

from services.notion_writer.codec import read_plain_text, to_rich_text
from services.notion_writer.rate_limit import handle_rate_limit
from shared.config import get_notion_version
from shared.errors import RemoteApiError

logger = logging.getLogger(__name__)

# Notion accepts at most 100 children per create/append request
MAX_CHILDREN_PER_REQUEST = 100

TITLE_PROPERTY = "Name"
TAGS_PROPERTY = "Tags"
NOTE_ID_PROPERTY = "Note ID"

CONTAINER_PROPERTIES = {
    TITLE_PROPERTY: {"title": {}},
    TAGS_PROPERTY: {"multi_select": {}},
    NOTE_ID_PROPERTY: {"number": {}},
    "Created": {"created_time": {}},
    "Updated": {"last_edited_time": {}},
}


def remote_operation(description: str):
    """
    Decorator translating Notion client and transport errors into RemoteApiError.

    Args:
        description: What the call does, used in the error message
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except APIResponseError as e:
                logger.error(f"Notion API error during {description}: {e}")
                raise RemoteApiError(
                    f"Notion API error during {description}: {e}",
                    status=getattr(e, "status", None),
                    code=getattr(e, "code", None)
                ) from e
            except (HTTPResponseError, RequestTimeoutError, httpx.HTTPError) as e:
                logger.error(f"Notion request failed during {description}: {e}")
                raise RemoteApiError(
                    f"Notion request failed during {description}: {e}",
                    status=getattr(e, "status", None)
                ) from e
        return wrapper
    return decorator


def _batches(children: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    return [
        children[start:start + MAX_CHILDREN_PER_REQUEST]
        for start in range(0, len(children), MAX_CHILDREN_PER_REQUEST)
    ]


class NotionWriter:
    """Handles reads and writes against one user's Notion workspace."""

    def __init__(self, api_token: str, notion_version: Optional[str] = None):
        """
        Initialize Notion Writer.

        Args:
            api_token: Notion API integration token
            notion_version: Notion-Version header, defaults to NOTION_VERSION
        """
        self.client = AsyncClient(auth=api_token, notion_version=notion_version or get_notion_version())

    @remote_operation("database creation")
    @handle_rate_limit(max_retries=3)
    async def create_database(self, parent_page_id: str, title: str) -> str:
        """
        Create a notes database under a page.

        Args:
            parent_page_id: Page that will contain the database
            title: Database title

        Returns:
            The new database ID
        """
        logger.info(f"Creating Notion database '{title}' under page {parent_page_id}")
        response = await self.client.databases.create(
            parent={"type": "page_id", "page_id": parent_page_id},
            title=to_rich_text(title),
            properties=CONTAINER_PROPERTIES
        )
        return response["id"]

    @remote_operation("page creation")
    async def create_page(
        self,
        database_id: str,
        properties: Dict[str, Any],
        children: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Create a page in a database with its content blocks.

        Args:
            database_id: Notion database ID where the page will be created
            properties: Page properties (see build_page_properties)
            children: Block objects, appended in batches past the request limit

        Returns:
            The created page object
        """
        batches = _batches(children)
        logger.info(f"Creating Notion page in database {database_id} with {len(children)} blocks")
        page = await self._create_page(database_id, properties, batches[0] if batches else [])

        try:
            for batch in batches[1:]:
                await self._append(page["id"], batch)
        except (APIResponseError, HTTPResponseError, RequestTimeoutError, httpx.HTTPError) as e:
            # An incomplete page is never linked, so it must not stay behind
            logger.error(f"Failed to append content to new page {page['id']}, archiving it: {e}")
            try:
                await self.archive_page(page["id"])
            except RemoteApiError as archive_error:
                logger.error(f"Failed to archive incomplete page {page['id']}: {archive_error}")
            raise

        logger.info(f"Successfully created Notion page: {page['id']}")
        return page

    @remote_operation("page retrieval")
    @handle_rate_limit(max_retries=3)
    async def retrieve_page(self, page_id: str) -> Dict[str, Any]:
        return await self.client.pages.retrieve(page_id=page_id)

    @remote_operation("page update")
    @handle_rate_limit(max_retries=3)
    async def update_page_properties(self, page_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Updating properties of Notion page: {page_id}")
        return await self.client.pages.update(page_id=page_id, properties=properties)

    @remote_operation("page archival")
    @handle_rate_limit(max_retries=3)
    async def archive_page(self, page_id: str) -> None:
        logger.info(f"Archiving Notion page: {page_id}")
        await self.client.pages.update(page_id=page_id, archived=True)

    @remote_operation("block listing")
    async def list_block_children(self, block_id: str) -> List[Dict[str, Any]]:
        """
        List every child block of a page or block, following pagination.

        Args:
            block_id: Page or block ID

        Returns:
            Child block objects in order
        """
        results: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while True:
            response = await self._list_children_page(block_id, cursor)
            results.extend(response.get("results", []))
            if not response.get("has_more"):
                return results
            cursor = response.get("next_cursor")

    @remote_operation("block deletion")
    @handle_rate_limit(max_retries=3)
    async def delete_block(self, block_id: str) -> None:
        await self.client.blocks.delete(block_id=block_id)

    @remote_operation("block append")
    async def append_block_children(self, block_id: str, children: List[Dict[str, Any]]) -> None:
        for batch in _batches(children):
            await self._append(block_id, batch)

    @remote_operation("connection check")
    @handle_rate_limit(max_retries=3)
    async def check_connection(self) -> Dict[str, Any]:
        """Return the bot user behind the token; fails if the token is rejected."""
        return await self.client.users.me()

    @handle_rate_limit(max_retries=3)
    async def _create_page(
        self,
        database_id: str,
        properties: Dict[str, Any],
        children: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        return await self.client.pages.create(
            parent={"database_id": database_id},
            properties=properties,
            children=children
        )

    @handle_rate_limit(max_retries=3)
    async def _list_children_page(self, block_id: str, cursor: Optional[str]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"block_id": block_id, "page_size": 100}
        if cursor:
            kwargs["start_cursor"] = cursor
        return await self.client.blocks.children.list(**kwargs)

    @handle_rate_limit(max_retries=3)
    async def _append(self, block_id: str, children: List[Dict[str, Any]]) -> None:
        await self.client.blocks.children.append(block_id=block_id, children=children)


def build_page_properties(title: str, tags: List[str], note_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Build Notion page properties from note data.

    Args:
        title: Note title
        tags: Note tags, written as multi-select options
        note_id: Local note ID, lets a pull find the note if its link is lost

    Returns:
        Dictionary of Notion page properties
    """
    properties: Dict[str, Any] = {
        TITLE_PROPERTY: {"title": to_rich_text(title or "")},
        # Commas are not allowed in select option names
        TAGS_PROPERTY: {"multi_select": [{"name": tag.replace(",", " ")} for tag in tags if tag]},
    }
    if note_id is not None:
        properties[NOTE_ID_PROPERTY] = {"number": note_id}
    return properties


def extract_title(page: Dict[str, Any]) -> str:
    """Text of the page's title-typed property, whatever its name."""
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title" or (prop.get("type") is None and "title" in prop):
            return read_plain_text(prop.get("title")) or "Untitled"
    return "Untitled"


def extract_tags(page: Dict[str, Any]) -> List[str]:
    properties = page.get("properties") or {}
    prop = properties.get(TAGS_PROPERTY) or properties.get("tags") or {}
    return [option["name"] for option in prop.get("multi_select") or [] if option.get("name")]


def extract_note_id(page: Dict[str, Any]) -> Optional[int]:
    prop = (page.get("properties") or {}).get(NOTE_ID_PROPERTY) or {}
    value = prop.get("number")
    if value is None:
        return None
    return int(value)


def extract_parent_database_id(page: Dict[str, Any]) -> Optional[str]:
    return (page.get("parent") or {}).get("database_id")


def parse_notion_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Notion ISO timestamp into a naive UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
