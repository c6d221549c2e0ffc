"""Append-only audit trail of sync attempts."""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from shared.db_models import SyncLogEntry
from shared.db_operations import DatabaseOperations
from shared.models import SyncDirection, SyncStatus

logger = logging.getLogger(__name__)


class SyncAuditLog:
    """Records one entry per push or pull attempt.

    Entries are only ever inserted. Writing the trail must never change the
    outcome of a sync, so persistence errors are logged and dropped.
    """

    def __init__(self, db_ops: DatabaseOperations):
        self.db_ops = db_ops

    def record(
        self,
        user_id: str,
        direction: SyncDirection,
        status: SyncStatus,
        note_id: Optional[int] = None,
        remote_page_id: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> Optional[SyncLogEntry]:
        try:
            return self.db_ops.add_sync_log(
                user_id=user_id,
                direction=direction.value,
                status=status.value,
                note_id=note_id,
                remote_page_id=remote_page_id,
                error_message=error_message
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Could not record {status.value} {direction.value} sync for user {user_id}: {e}",
                exc_info=True
            )
            return None

    def recent(self, user_id: str, limit: int = 20, offset: int = 0) -> List[SyncLogEntry]:
        return self.db_ops.get_sync_logs(user_id, limit=limit, offset=offset)
