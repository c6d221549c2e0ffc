"""Shared data models for the notes to Notion sync application."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class BlockKind(str, Enum):
    """Structural kind of a canonical content block."""
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    BULLETED_ITEM = "bulleted_item"
    NUMBERED_ITEM = "numbered_item"
    QUOTE = "quote"
    CODE = "code"


@dataclass(frozen=True)
class ContentBlock:
    """One line-level unit of note content with a plain-text payload."""
    kind: BlockKind
    text: str
    level: Optional[int] = None  # 1-3, headings only

    def __post_init__(self):
        if self.kind is BlockKind.HEADING:
            if self.level not in (1, 2, 3):
                raise ValueError(f"Heading level must be 1, 2 or 3, got {self.level}")
        elif self.level is not None:
            raise ValueError(f"Only headings carry a level, got {self.kind.value}")

    @classmethod
    def heading(cls, level: int, text: str) -> "ContentBlock":
        return cls(BlockKind.HEADING, text, level)

    @classmethod
    def paragraph(cls, text: str) -> "ContentBlock":
        return cls(BlockKind.PARAGRAPH, text)

    @classmethod
    def bulleted_item(cls, text: str) -> "ContentBlock":
        return cls(BlockKind.BULLETED_ITEM, text)

    @classmethod
    def numbered_item(cls, text: str) -> "ContentBlock":
        return cls(BlockKind.NUMBERED_ITEM, text)

    @classmethod
    def quote(cls, text: str) -> "ContentBlock":
        return cls(BlockKind.QUOTE, text)

    @classmethod
    def code(cls, text: str) -> "ContentBlock":
        return cls(BlockKind.CODE, text)


class SyncDirection(str, Enum):
    LOCAL_TO_REMOTE = "local_to_remote"
    REMOTE_TO_LOCAL = "remote_to_local"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class WebhookEventKind(str, Enum):
    DOCUMENT_CREATED = "document.created"
    DOCUMENT_UPDATED = "document.updated"


@dataclass(frozen=True)
class WebhookEvent:
    """Change notification delivered by Notion for a page in a database."""
    kind: WebhookEventKind
    page_id: str
    database_id: Optional[str]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["WebhookEvent"]:
        """
        Build an event from a raw webhook body.

        Returns None for event types this service does not handle.

        Raises:
            ValueError: If a handled event type is missing its page id
        """
        try:
            kind = WebhookEventKind(payload.get("type"))
        except ValueError:
            return None

        data = payload.get("data") or {}
        page_id = data.get("id")
        if not page_id:
            raise ValueError(f"Webhook event {kind.value} has no data.id")

        parent = data.get("parent") or {}
        return cls(kind=kind, page_id=page_id, database_id=parent.get("database_id"))
