"""Inbound Notion change notifications."""

import hashlib
import hmac
import logging
from enum import Enum
from typing import Any, Dict, Optional, Union

from services.sync_service.orchestrator import SyncOrchestrator
from shared.db_operations import DatabaseOperations
from shared.models import WebhookEvent

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


class DispatchResult(str, Enum):
    SYNCED = "synced"
    FAILED = "failed"
    IGNORED = "ignored"
    UNRESOLVED = "unresolved"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """
    Check an X-Notion-Signature header against the raw request body.

    Args:
        secret: Verification token of the webhook subscription
        body: Raw request body
        signature: Header value, "sha256=<hex digest>"

    Returns:
        True if the HMAC-SHA256 digest matches
    """
    if not signature:
        return False
    expected = SIGNATURE_PREFIX + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected)


class WebhookDispatcher:
    """Routes document.created / document.updated events to a pull for the owning user.

    The owner is found through the notebook mapping of the page's parent
    database. Delivery retries are left to Notion; repeated deliveries are
    safe because a pull updates the note already linked to the page.
    """

    def __init__(self, db_ops: DatabaseOperations, orchestrator: SyncOrchestrator):
        self.db_ops = db_ops
        self.orchestrator = orchestrator

    async def handle(self, event: Union[WebhookEvent, Dict[str, Any], None]) -> DispatchResult:
        if isinstance(event, dict):
            try:
                event = WebhookEvent.from_payload(event)
            except ValueError as e:
                logger.warning(f"Ignoring malformed webhook event: {e}")
                return DispatchResult.IGNORED
        if event is None:
            logger.debug("Ignoring webhook event of unhandled type")
            return DispatchResult.IGNORED

        mapping = None
        if event.database_id:
            mapping = self.db_ops.get_container_mapping_by_database(event.database_id)
        if mapping is None:
            logger.info(
                f"Dropping {event.kind.value} for page {event.page_id}: "
                f"database {event.database_id} is not mapped to any user"
            )
            return DispatchResult.UNRESOLVED

        logger.info(f"Dispatching {event.kind.value} for page {event.page_id} to user {mapping.user_id}")
        synced = await self.orchestrator.pull(mapping.user_id, event.page_id)
        return DispatchResult.SYNCED if synced else DispatchResult.FAILED
