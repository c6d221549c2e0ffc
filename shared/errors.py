"""Exceptions raised inside a sync operation.

All of them are caught at the SyncOrchestrator boundary, written to the
sync log and turned into a ``False`` return value.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for failures of a single push or pull."""


class NoIntegration(SyncError):
    """The user has no active Notion integration."""

    def __init__(self, user_id: str):
        super().__init__(f"No active Notion integration found for user {user_id}")
        self.user_id = user_id


class NoteNotFound(SyncError):
    """The local note does not exist or belongs to another user."""

    def __init__(self, user_id: str, note_id: int):
        super().__init__(f"Note {note_id} not found for user {user_id}")
        self.user_id = user_id
        self.note_id = note_id


class RemoteApiError(SyncError):
    """A Notion API call failed (non-2xx response, timeout or network error)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class StaleSyncError(SyncError):
    """The source of a push or pull is older than the last write applied to the link."""


class CredentialError(SyncError):
    """A stored access token could not be decrypted."""
