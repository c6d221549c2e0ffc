"""Sync Service - FastAPI application."""

import json
import logging
import sys
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request, status, HTTPException, BackgroundTasks, Query
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import text

from services.notion_writer.writer import NotionWriter
from services.sync_service.audit import SyncAuditLog
from services.sync_service.orchestrator import SyncOrchestrator
from services.sync_service.webhooks import WebhookDispatcher, verify_signature
from shared.config import get_log_level, get_webhook_secret
from shared.db_operations import DatabaseOperations
from shared.encryption import EncryptionService
from shared.errors import RemoteApiError, SyncError
from shared.integration_store import IntegrationStore
from shared.models import WebhookEvent

# Configure logging
logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

# Global instances
db_ops: Optional[DatabaseOperations] = None
integrations: Optional[IntegrationStore] = None
audit_log: Optional[SyncAuditLog] = None
orchestrator: Optional[SyncOrchestrator] = None
dispatcher: Optional[WebhookDispatcher] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global db_ops, integrations, audit_log, orchestrator, dispatcher

    logger.info("Sync Service starting up...")

    db_ops = DatabaseOperations()
    db_ops.create_tables()
    logger.info("Database connection initialized")

    integrations = IntegrationStore(db_ops, EncryptionService())
    audit_log = SyncAuditLog(db_ops)
    orchestrator = SyncOrchestrator(db_ops, integrations, audit_log=audit_log, writer_factory=NotionWriter)
    dispatcher = WebhookDispatcher(db_ops, orchestrator)
    logger.info("Sync components initialized")

    yield

    db_ops.engine.dispose()
    logger.info("Sync Service shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Sync Service",
    description="Bidirectional synchronization between local notes and Notion",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc)
            }
        )


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    db_healthy = False
    try:
        with db_ops.get_session() as session:
            session.execute(text("SELECT 1"))
        db_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "healthy" if db_healthy else "degraded",
        "service": "sync_service",
        "version": "0.1.0",
        "dependencies": {
            "database": "up" if db_healthy else "down"
        }
    }


@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """Root endpoint."""
    return {
        "service": "Sync Service",
        "version": "0.1.0",
        "status": "running"
    }


# Request/Response models
class CreateIntegrationRequest(BaseModel):
    """Request model for connecting a Notion workspace."""
    user_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    workspace_id: str = Field(..., min_length=1)
    workspace_name: str = Field(..., min_length=1)


class IntegrationInfo(BaseModel):
    workspace_id: str
    workspace_name: str
    is_active: bool
    created_at: datetime


class IntegrationStatusResponse(BaseModel):
    """Response model for integration status."""
    has_integration: bool
    integration: Optional[IntegrationInfo] = None


class SyncRequest(BaseModel):
    """Request model for a single push or pull."""
    user_id: str = Field(..., min_length=1)


class SyncResponse(BaseModel):
    success: bool
    message: str
    note_id: Optional[int] = None
    page_id: Optional[str] = None


class BulkSyncResponse(BaseModel):
    success: bool
    message: str
    synced_count: int
    total_count: int
    errors: List[str] = []


class SyncLogRecord(BaseModel):
    id: int
    note_id: Optional[int] = None
    remote_page_id: Optional[str] = None
    direction: str
    status: str
    error_message: Optional[str] = None
    created_at: datetime


class SyncLogsResponse(BaseModel):
    logs: List[SyncLogRecord]
    has_more: bool


def _integration_info(integration) -> IntegrationInfo:
    return IntegrationInfo(
        workspace_id=integration.workspace_id,
        workspace_name=integration.workspace_name,
        is_active=integration.is_active,
        created_at=integration.created_at
    )


@app.post("/internal/integrations", response_model=IntegrationInfo, status_code=status.HTTP_201_CREATED)
async def create_integration(request: CreateIntegrationRequest):
    """
    Connect a Notion workspace for a user.

    The access token is encrypted before it is stored. Connecting a workspace
    that was disconnected before reactivates it.
    """
    integration = integrations.connect(
        user_id=request.user_id,
        access_token=request.access_token,
        workspace_id=request.workspace_id,
        workspace_name=request.workspace_name
    )
    return _integration_info(integration)


@app.get("/internal/integrations/{user_id}", response_model=IntegrationStatusResponse)
async def get_integration_status(user_id: str):
    """Report whether a user has an active Notion integration."""
    integration = integrations.get_active(user_id)
    return IntegrationStatusResponse(
        has_integration=integration is not None,
        integration=_integration_info(integration) if integration else None
    )


@app.delete("/internal/integrations/{user_id}")
async def disconnect_integration(user_id: str, workspace_id: Optional[str] = None):
    """Deactivate a user's integrations (all of them, or one workspace)."""
    count = integrations.deactivate(user_id, workspace_id)
    return {"user_id": user_id, "deactivated": count}


@app.post("/internal/integrations/{user_id}/test")
async def test_connection(user_id: str):
    """
    Check that the stored token is accepted by Notion.

    Raises:
        HTTPException: 404 without an active integration, 502 if Notion rejects the token
    """
    integration = integrations.get_active(user_id)
    if not integration:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No Notion integration found"
        )

    try:
        writer = orchestrator.writer_factory(integrations.access_token(integration))
        await writer.check_connection()
    except (RemoteApiError, SyncError) as e:
        logger.warning(f"Notion connection test failed for user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Connection test failed: {e}"
        )

    return {
        "success": True,
        "message": "Notion connection is active",
        "workspace_name": integration.workspace_name
    }


@app.post("/internal/sync/notes/{note_id}/push", response_model=SyncResponse)
async def sync_note_to_notion(note_id: int, request: SyncRequest):
    """
    Push one local note to Notion.

    Raises:
        HTTPException: 502 if the sync failed; the sync log holds the reason
    """
    success = await orchestrator.sync_note_to_remote(request.user_id, note_id)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to sync note {note_id} to Notion"
        )

    return SyncResponse(success=True, message="Note synced to Notion successfully", note_id=note_id)


@app.post("/internal/sync/pages/{page_id}/pull", response_model=SyncResponse)
async def sync_notion_page(page_id: str, request: SyncRequest):
    """
    Pull one Notion page into the local note store.

    Raises:
        HTTPException: 502 if the sync failed; the sync log holds the reason
    """
    success = await orchestrator.sync_note_to_local(request.user_id, page_id)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to sync Notion page {page_id}"
        )

    return SyncResponse(success=True, message="Notion page synced successfully", page_id=page_id)


@app.post("/internal/sync/users/{user_id}/push-all", response_model=BulkSyncResponse)
async def sync_all_notes(user_id: str):
    """Push every note of a user to Notion."""
    summary = await orchestrator.push_all(user_id)

    if summary["total_count"] == 0:
        message = "No notes to sync"
    else:
        message = f"Synced {summary['synced_count']} of {summary['total_count']} notes"

    return BulkSyncResponse(
        success=not summary["errors"],
        message=message,
        synced_count=summary["synced_count"],
        total_count=summary["total_count"],
        errors=summary["errors"]
    )


@app.get("/internal/sync/logs/{user_id}", response_model=SyncLogsResponse)
async def get_sync_logs(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0)
):
    """List a user's sync attempts, newest first."""
    entries = audit_log.recent(user_id, limit=limit, offset=offset)
    return SyncLogsResponse(
        logs=[
            SyncLogRecord(
                id=entry.id,
                note_id=entry.note_id,
                remote_page_id=entry.remote_page_id,
                direction=entry.direction,
                status=entry.status,
                error_message=entry.error_message,
                created_at=entry.created_at
            )
            for entry in entries
        ],
        has_more=len(entries) == limit
    )


@app.post("/webhooks/notion", status_code=status.HTTP_200_OK)
async def notion_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receive Notion change notifications.

    The pull runs in the background so Notion gets its acknowledgement
    immediately; Notion retries deliveries that are not acknowledged.

    Raises:
        HTTPException: 401 on a bad signature, 400 on a malformed body
    """
    body = await request.body()

    secret = get_webhook_secret()
    if secret and not verify_signature(secret, body, request.headers.get("x-notion-signature")):
        logger.warning("Rejected Notion webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    # Sent once when the subscription is created; the token is copied into NOTION_WEBHOOK_SECRET
    if "verification_token" in payload:
        logger.info("Received Notion webhook verification token")
        return {"status": "verification_received"}

    try:
        event = WebhookEvent.from_payload(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if event is None:
        return {"status": "ignored"}

    background_tasks.add_task(dispatcher.handle, event)
    return {"status": "accepted", "page_id": event.page_id}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("SYNC_SERVICE_PORT", 8005))
    uvicorn.run(app, host="0.0.0.0", port=port)
