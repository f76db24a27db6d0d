"""
Sync API routes

Provides REST endpoints for repository sync:
- Repository configuration (create or update by owner/name)
- Sync operations: start, list, details (with persisted log lines), cancel
- Live operation logs over Server-Sent Events or WebSocket

Operations run in the background; the create endpoint returns immediately
with the pending operation.
"""

import asyncio
import logging
import os
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from database import DatabaseManager
from gitsync.service import SyncService
from log_broadcaster import LogBroadcaster, Subscription
from models.sync_models import (
    CancelOperationResponse,
    RepositoryConfigure,
    RepositoryResponse,
    SyncOperationCreate,
    SyncOperationDetailResponse,
    SyncOperationListResponse,
    SyncOperationResponse,
)
from sinks import QueueSink, SinkClosedError, WebSocketSink

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

# Module-level references, set during application startup
_db_manager: Optional[DatabaseManager] = None
_sync_service: Optional[SyncService] = None
_broadcaster: Optional[LogBroadcaster] = None

DEFAULT_KEEPALIVE_SECONDS = 15.0
_keepalive_seconds = DEFAULT_KEEPALIVE_SECONDS


def set_database_manager(db: DatabaseManager) -> None:
    """Set the database manager reference."""
    global _db_manager
    _db_manager = db


def set_sync_service(service: SyncService) -> None:
    global _sync_service
    _sync_service = service


def set_broadcaster(broadcaster: LogBroadcaster, keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS) -> None:
    global _broadcaster, _keepalive_seconds
    _broadcaster = broadcaster
    _keepalive_seconds = keepalive_seconds


def get_db() -> DatabaseManager:
    """Get database manager, raising error if not initialized."""
    if _db_manager is None:
        raise RuntimeError("Database manager not initialized for sync routes")
    return _db_manager


def get_sync_service() -> SyncService:
    if _sync_service is None:
        raise RuntimeError("Sync service not initialized for sync routes")
    return _sync_service


def get_broadcaster() -> LogBroadcaster:
    if _broadcaster is None:
        raise RuntimeError("Log broadcaster not initialized for sync routes")
    return _broadcaster


# =============================================================================
# Helper Functions
# =============================================================================


async def _get_operation_or_404(operation_id: int):
    operation = await asyncio.to_thread(get_db().get_operation, operation_id)
    if operation is None:
        raise HTTPException(status_code=404, detail="Sync operation not found")
    return operation


def _check_parent_directory(local_path: str) -> str:
    """Resolve local_path and make sure its parent directory is usable."""
    resolved = os.path.abspath(os.path.expanduser(local_path))
    parent = os.path.dirname(resolved) or '/'
    if not os.path.isdir(parent) or not os.access(parent, os.W_OK | os.X_OK):
        raise HTTPException(
            status_code=400,
            detail=f"Parent directory is not accessible: {parent}"
        )
    return resolved


async def sse_event_stream(
    broadcaster: LogBroadcaster,
    subscription: Subscription,
    sink: QueueSink,
    keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS
):
    """
    SSE generator for one subscriber.

    Yields ``data: <json>`` frames and a comment frame whenever nothing
    arrived for keepalive_seconds. Always unsubscribes when the client goes away.
    """
    try:
        while True:
            try:
                message = await sink.get(timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if message is None:
                break
            yield f"data: {message}\n\n"
    finally:
        await broadcaster.unsubscribe(subscription)
        sink.close()


# =============================================================================
# Repository Endpoints
# =============================================================================


@router.get("/repositories", response_model=List[RepositoryResponse])
async def list_repositories():
    """List configured repositories."""
    repositories = await asyncio.to_thread(get_db().list_repositories)
    return [RepositoryResponse.from_db(r) for r in repositories]


@router.post("/repositories", response_model=RepositoryResponse)
async def configure_repository(data: RepositoryConfigure):
    """Create or update the repository identified by remote_id."""
    local_path = _check_parent_directory(data.local_path)
    repo, created = await asyncio.to_thread(
        get_db().upsert_repository,
        data.remote_id,
        data.display_name,
        local_path,
        data.sync_enabled,
    )
    logger.info(f"{'Configured' if created else 'Reconfigured'} repository {repo.remote_id}")
    return RepositoryResponse.from_db(repo)


# =============================================================================
# Sync Operation Endpoints
# =============================================================================


@router.post("/operations", response_model=SyncOperationResponse, status_code=201)
async def create_operation(data: SyncOperationCreate):
    """Create a sync operation and start it in the background."""
    db = get_db()

    repo = await asyncio.to_thread(db.get_repository_by_remote_id, data.remote_id)
    if repo is None:
        raise HTTPException(status_code=404, detail=f"Repository {data.remote_id} is not configured")
    if not repo.sync_enabled:
        raise HTTPException(status_code=409, detail=f"Sync is disabled for {data.remote_id}")

    user = await asyncio.to_thread(db.get_user)
    if user is None or not user.has_github_token:
        raise HTTPException(status_code=400, detail="GitHub token not configured")

    created = await asyncio.to_thread(db.create_operation, repo.id, data.kind, data.options)
    operation = await asyncio.to_thread(db.get_operation, created.id)
    get_sync_service().start(operation.id)

    logger.info(f"Created {data.kind} sync operation {operation.id} for {data.remote_id}")
    return SyncOperationResponse.from_db(operation)


@router.get("/operations", response_model=SyncOperationListResponse)
async def list_operations(
    status: Optional[str] = Query(default=None, pattern='^(pending|running|succeeded|failed|cancelled)$'),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum number of results"),
    offset: int = Query(default=0, ge=0, description="Number of results to skip"),
):
    """List sync operations, newest first."""
    operations, total = await asyncio.to_thread(
        get_db().list_operations, status, None, limit, offset
    )
    return SyncOperationListResponse(
        operations=[SyncOperationResponse.from_db(op) for op in operations],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/operations/{operation_id}", response_model=SyncOperationDetailResponse)
async def get_operation(operation_id: int):
    """Get a sync operation with its persisted log lines."""
    operation = await _get_operation_or_404(operation_id)
    logs = await asyncio.to_thread(get_db().get_sync_logs, operation_id)
    return SyncOperationDetailResponse.from_db_with_logs(operation, logs)


@router.post("/operations/{operation_id}/cancel", response_model=CancelOperationResponse)
async def cancel_operation(operation_id: int):
    """Cancel a pending operation, or ask a running one to stop after its current step."""
    operation = await _get_operation_or_404(operation_id)

    result = await get_sync_service().request_cancel(operation_id)
    if result is None:
        current = await _get_operation_or_404(operation_id)
        raise HTTPException(
            status_code=409,
            detail=f"Sync operation is {current.status} and cannot be cancelled"
        )

    if result == 'cancelled':
        message = "Sync operation cancelled"
    else:
        message = "Cancellation requested; the operation stops after its current step"
    logger.info(f"Cancel requested for sync operation {operation.id}: {result}")
    return CancelOperationResponse(id=operation_id, status=result, message=message)


# =============================================================================
# Live Log Streaming
# =============================================================================


@router.get("/operations/{operation_id}/logs")
async def stream_operation_logs(operation_id: int):
    """Stream an operation's log lines as Server-Sent Events."""
    await _get_operation_or_404(operation_id)
    broadcaster = get_broadcaster()

    sink = QueueSink()
    try:
        subscription = await broadcaster.subscribe(operation_id, sink)
    except (SinkClosedError, RuntimeError) as e:
        raise HTTPException(status_code=503, detail=f"Log stream unavailable: {e}")

    return StreamingResponse(
        sse_event_stream(broadcaster, subscription, sink, _keepalive_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


@router.websocket("/operations/{operation_id}/ws")
async def operation_logs_websocket(websocket: WebSocket, operation_id: int):
    """Stream an operation's log lines over a WebSocket."""
    operation = await asyncio.to_thread(get_db().get_operation, operation_id)
    if operation is None:
        await websocket.close(code=1008, reason="Sync operation not found")
        return

    await websocket.accept()
    broadcaster = get_broadcaster()
    sink = WebSocketSink(websocket)

    try:
        subscription = await broadcaster.subscribe(operation_id, sink)
    except (SinkClosedError, RuntimeError) as e:
        logger.debug(f"WebSocket log subscription for operation {operation_id} failed: {e}")
        await sink.close()
        return

    try:
        # Clients do not send anything meaningful; reading detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"WebSocket log viewer for operation {operation_id} disconnected")
    finally:
        await broadcaster.unsubscribe(subscription)
