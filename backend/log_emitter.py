"""
Sync log emitter - single entry point for operation progress lines

Each emitted line is:
1. Persisted through the log store (durable history, read back by the API)
2. Published to the log broadcaster (live viewers)
3. Mirrored to the application log at debug level

Persistence and publishing run concurrently. A log store failure is logged
and does not stop the line from reaching live viewers, nor the sync itself.

Lines flow: Orchestrator → SyncLogEmitter → [LogStore, LogBroadcaster]
"""

import asyncio
import logging
from typing import Optional, Protocol, TYPE_CHECKING

from gitsync.models import LogLevel, LogLine

if TYPE_CHECKING:
    from database import DatabaseManager
    from log_broadcaster import LogBroadcaster

logger = logging.getLogger(__name__)


class LogStore(Protocol):
    def append(self, line: LogLine) -> None:
        ...


class DatabaseLogStore:
    """Log store backed by the sync_logs table."""

    def __init__(self, db: 'DatabaseManager'):
        self.db = db

    def append(self, line: LogLine) -> None:
        self.db.append_sync_log(
            operation_id=line.operation_id,
            level=line.level.value,
            message=line.message,
            timestamp=line.timestamp,
        )


class SyncLogEmitter:
    """Emits operation log lines to the store and the broadcaster"""

    def __init__(self, broadcaster: Optional['LogBroadcaster'] = None, store: Optional[LogStore] = None):
        self.broadcaster = broadcaster
        self.store = store

    async def emit(self, operation_id: int, level: LogLevel, message: str) -> LogLine:
        """
        Emit a log line for an operation.

        Args:
            operation_id: Sync operation the line belongs to
            level: info, warning, error or success
            message: Human-readable line (must already be sanitized)

        Returns:
            The LogLine that was emitted
        """
        line = LogLine(operation_id=operation_id, level=LogLevel(level), message=message)
        logger.debug(f"[sync {operation_id}] {line.level.value}: {message}")

        await asyncio.gather(self._persist(line), self._publish(line))
        return line

    async def info(self, operation_id: int, message: str) -> LogLine:
        return await self.emit(operation_id, LogLevel.INFO, message)

    async def warning(self, operation_id: int, message: str) -> LogLine:
        return await self.emit(operation_id, LogLevel.WARNING, message)

    async def error(self, operation_id: int, message: str) -> LogLine:
        return await self.emit(operation_id, LogLevel.ERROR, message)

    async def success(self, operation_id: int, message: str) -> LogLine:
        return await self.emit(operation_id, LogLevel.SUCCESS, message)

    async def _persist(self, line: LogLine) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.append, line)
        except Exception as e:
            logger.error(f"Failed to persist log line for operation {line.operation_id}: {e}", exc_info=True)

    async def _publish(self, line: LogLine) -> None:
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(line.operation_id, line.to_event())
        except Exception as e:
            logger.error(f"Failed to publish log line for operation {line.operation_id}: {e}", exc_info=True)
