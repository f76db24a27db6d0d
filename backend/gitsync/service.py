"""
Sync service - runs sync operations in the background and owns their status.

Responsibilities:
- Load the operation, its repository and the stored GitHub credential
- Move the operation record through pending -> running -> terminal state
- Hand the work to SyncOrchestrator and record the outcome (error kind/message)
- Track background tasks so they can be cancelled on shutdown

Cancellation is advisory: a running operation is flagged and stops at the
next step boundary. A git process that is already running is never killed.
"""

import asyncio
import logging
from typing import Dict, Optional, Set, TYPE_CHECKING

from gitsync.errors import ConfigurationError, OperationCancelled, SyncError
from gitsync.models import Credential
from utils.encryption import decrypt_token

if TYPE_CHECKING:
    from database import DatabaseManager
    from gitsync.orchestrator import SyncOrchestrator
    from log_emitter import SyncLogEmitter

logger = logging.getLogger(__name__)


class SyncService:
    """Executes sync operations as asyncio tasks"""

    def __init__(self, db: 'DatabaseManager', orchestrator: 'SyncOrchestrator', emitter: 'SyncLogEmitter'):
        self.db = db
        self.orchestrator = orchestrator
        self.emitter = emitter
        self._tasks: Dict[int, asyncio.Task] = {}
        self._cancel_requested: Set[int] = set()
        # Operations this process is executing right now
        self._running: Set[int] = set()

    def start(self, operation_id: int) -> asyncio.Task:
        """Run an operation in the background. Returns the task."""
        task = asyncio.create_task(self.execute(operation_id), name=f"sync-operation-{operation_id}")
        self._tasks[operation_id] = task
        task.add_done_callback(lambda t: self._handle_task_done(operation_id, t))
        return task

    def _handle_task_done(self, operation_id: int, task: asyncio.Task) -> None:
        """Forget finished tasks and log unexpected failures"""
        if self._tasks.get(operation_id) is task:
            del self._tasks[operation_id]
        try:
            task.result()
        except asyncio.CancelledError:
            pass  # Normal shutdown, don't log
        except Exception as e:
            logger.error(f"Sync operation {operation_id} task failed: {e}", exc_info=True)

    def is_active(self, operation_id: int) -> bool:
        return operation_id in self._tasks

    def _load_credential(self) -> Optional[Credential]:
        user = self.db.get_user()
        if user is None or not user.github_token_encrypted:
            return None
        try:
            token = decrypt_token(user.github_token_encrypted)
        except ValueError as e:
            raise ConfigurationError(f"Stored GitHub token could not be decrypted: {e}")
        return Credential(token=token, username=user.github_username or '')

    async def execute(self, operation_id: int) -> Optional[str]:
        """
        Run one operation to completion.

        Returns:
            Final status of the operation, or None if it does not exist
        """
        record = await asyncio.to_thread(self.db.get_operation, operation_id)
        if record is None:
            logger.error(f"Sync operation {operation_id} not found")
            return None

        if record.status != 'pending':
            logger.warning(f"Sync operation {operation_id} is {record.status}, not starting it")
            return record.status

        # Claimed before the status flips so request_cancel never sees an unowned running record
        self._running.add(operation_id)
        try:
            if await asyncio.to_thread(self.db.transition_operation, operation_id, 'running') is None:
                # Cancelled between creation and start
                current = await asyncio.to_thread(self.db.get_operation, operation_id)
                return current.status if current else None
            return await self._run(operation_id, record)
        finally:
            self._running.discard(operation_id)

    async def _run(self, operation_id: int, record) -> str:
        await self.emitter.info(operation_id, f"Starting sync operation {operation_id} ({record.kind})")

        final_status = 'succeeded'
        error_message = None
        error_kind = None

        try:
            credential = await asyncio.to_thread(self._load_credential)
            result = await self.orchestrator.run(
                record.to_domain(),
                record.repository.to_domain(),
                credential=credential,
                is_cancelled=lambda: operation_id in self._cancel_requested,
            )
        except OperationCancelled as e:
            final_status, error_message, error_kind = 'cancelled', str(e), e.kind
        except SyncError as e:
            final_status, error_message, error_kind = 'failed', str(e), e.kind
            await self.emitter.error(operation_id, f"Sync operation failed: {e}")
        except asyncio.CancelledError:
            await asyncio.to_thread(
                self.db.transition_operation, operation_id, 'failed',
                "Sync service shut down before the operation finished", 'interrupted'
            )
            raise
        except Exception as e:
            logger.error(f"Unexpected error in sync operation {operation_id}: {e}", exc_info=True)
            final_status, error_message, error_kind = 'failed', f"Unexpected error: {e}", 'internal'
            await self.emitter.error(operation_id, f"Sync operation failed: {error_message}")
        else:
            outcome = result.outcome.value if result.outcome else 'done'
            await self.emitter.success(operation_id, f"Sync operation completed successfully ({outcome})")
        finally:
            self._cancel_requested.discard(operation_id)

        await asyncio.to_thread(
            self.db.transition_operation, operation_id, final_status, error_message, error_kind
        )
        logger.info(f"Sync operation {operation_id} finished: {final_status}")
        return final_status

    async def request_cancel(self, operation_id: int) -> Optional[str]:
        """
        Cancel an operation.

        Returns:
            'cancelled' if a pending operation, or a running one no task here
            owns any more, was cancelled immediately,
            'cancelling' if a running operation was flagged,
            None if the operation is missing or already finished
        """
        record = await asyncio.to_thread(self.db.get_operation, operation_id)
        if record is None:
            return None

        if record.status == 'pending':
            updated = await asyncio.to_thread(
                self.db.transition_operation, operation_id, 'cancelled',
                "Cancelled before start", 'cancelled'
            )
            if updated is not None:
                await self.emitter.warning(operation_id, "Sync operation cancelled before start")
                return 'cancelled'
            record = await asyncio.to_thread(self.db.get_operation, operation_id)

        if record is not None and record.status == 'running' and operation_id not in self._running:
            # Left running by an earlier process; nothing here will ever see the flag
            updated = await asyncio.to_thread(
                self.db.transition_operation, operation_id, 'cancelled',
                "Cancelled after the sync service lost the operation", 'cancelled'
            )
            if updated is not None:
                await self.emitter.warning(operation_id, "Sync operation cancelled, it was no longer running")
                return 'cancelled'
            return None

        if record is not None and record.status == 'running':
            self._cancel_requested.add(operation_id)
            await self.emitter.warning(operation_id, "Cancellation requested, stopping after the current step")
            return 'cancelling'

        return None

    async def shutdown(self) -> None:
        """Cancel and await all running operation tasks"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} running sync operation(s)")
        self._tasks.clear()
