#!/usr/bin/env python3
"""
Repository Sync Backend
Keeps local working copies in sync with GitHub and streams sync progress live

Components (created once in the lifespan):
- DatabaseManager: repositories, sync operations, log lines, stored credential
- LogBroadcaster: per-operation fan-out of log lines to SSE/WebSocket viewers
- SyncLogEmitter: persists and publishes every log line
- SyncOrchestrator + SyncService: run operations in the background
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import routes as auth_routes
from config.paths import ensure_data_dirs
from config.settings import AppConfig, HealthCheckFilter, setup_logging
from database import DatabaseManager
from gitsync import routes as sync_routes
from gitsync.command_runner import CommandRunner
from gitsync.orchestrator import SyncOrchestrator
from gitsync.service import SyncService
from hosting.github_client import GitHubClient
from log_broadcaster import LogBroadcaster
from log_emitter import DatabaseLogStore, SyncLogEmitter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    # Validate configuration early to fail fast on misconfiguration
    AppConfig.validate()
    ensure_data_dirs()
    setup_logging()

    logger.info("Starting sync backend...")

    # Reapply health check filter to uvicorn access logger (must be done after uvicorn starts)
    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())

    db = await asyncio.to_thread(DatabaseManager, AppConfig.DATABASE_PATH)
    # No task survives a restart, so nothing will ever finish these
    await asyncio.to_thread(db.fail_interrupted_operations)

    broadcaster = LogBroadcaster(write_timeout=AppConfig.SUBSCRIBER_WRITE_TIMEOUT)
    await broadcaster.start()

    emitter = SyncLogEmitter(broadcaster=broadcaster, store=DatabaseLogStore(db))
    github_client = GitHubClient(api_url=AppConfig.GITHUB_API_URL)
    runner = CommandRunner(timeout=AppConfig.GIT_TIMEOUT)
    orchestrator = SyncOrchestrator(
        runner,
        emitter,
        github_client,
        branch=AppConfig.TRACKED_BRANCH,
        host=AppConfig.GITHUB_HOST,
    )
    sync_service = SyncService(db, orchestrator, emitter)

    sync_routes.set_database_manager(db)
    sync_routes.set_sync_service(sync_service)
    sync_routes.set_broadcaster(broadcaster, keepalive_seconds=AppConfig.SSE_KEEPALIVE_SECONDS)
    auth_routes.set_database_manager(db)
    auth_routes.set_github_client(github_client)
    logger.info("Sync services initialized")

    app.state.db = db
    app.state.broadcaster = broadcaster
    app.state.sync_service = sync_service

    yield
    # Shutdown
    logger.info("Shutting down sync backend...")

    try:
        await sync_service.shutdown()
        logger.info("Sync service stopped")
    except Exception as e:
        logger.error(f"Error stopping sync service: {e}")

    try:
        await broadcaster.shutdown()
    except Exception as e:
        logger.error(f"Error stopping log broadcaster: {e}")

    # Dispose SQLAlchemy engine (run in thread pool to avoid blocking event loop)
    try:
        await asyncio.to_thread(db.engine.dispose)
        logger.info("SQLAlchemy engine disposed")
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}")


app = FastAPI(
    title="Repository Sync API",
    version="1.0.0",
    lifespan=lifespan
)

cors_config = AppConfig.CORS_ORIGINS
if cors_config:
    origins_list = [origin.strip() for origin in cors_config.split(',')]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Custom handler for Pydantic validation errors.
    Returns user-friendly error messages with field-level details.
    """
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(x) for x in error['loc'])
        errors.append({
            "field": field,
            "message": error['msg'],
            "type": error['type']
        })

    logger.warning(f"Validation failed for {request.url.path}: {errors}")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request data",
            "errors": errors
        }
    )


# ==================== API Routes ====================

app.include_router(auth_routes.router)
app.include_router(sync_routes.router)


@app.get("/health")
async def health_check():
    """Liveness probe"""
    return {"status": "healthy", "service": "gitsync-backend"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=AppConfig.HOST, port=AppConfig.PORT)
