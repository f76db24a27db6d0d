"""
Sync orchestrator - pull, push and bidirectional sync of one working copy.

Every step emits a log line through the SyncLogEmitter so live viewers can
follow along. Failures are raised as SyncError subclasses (see errors.py),
each emitted at error level first.

Push flow:
    validate -> init (if needed) -> identity + origin -> status -> add ->
    staged diff -> commit -> push [-> pull --rebase -> push once more]

Only a non-fast-forward rejection is retried, and only once. The orchestrator
never touches the operation record; SyncService owns status persistence.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, NoReturn, Optional, Union, TYPE_CHECKING

from gitsync.command_runner import CommandError, CommandResult
from gitsync.credentials import CredentialInjector, REMOTE_NAME, parse_repository_identifier, sanitize_error
from gitsync.errors import (
    BidirectionalSyncError,
    CloneError,
    CommitError,
    ConfigurationError,
    NonFastForwardRejection,
    OperationCancelled,
    PullError,
    RebaseConflictError,
    RetryFailedRejection,
    SyncError,
    UnclassifiedPushError,
    classify_push_failure,
)
from gitsync.models import Credential, Repository, SyncKind, SyncOperation, SyncOutcome, SyncResult
from gitsync.working_tree import FileChange, parse_name_status, parse_porcelain
from hosting.github_client import HostingAPIError

if TYPE_CHECKING:
    from gitsync.command_runner import CommandRunner
    from hosting.github_client import GitHubClient
    from log_emitter import SyncLogEmitter

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = 'main'

CancelCheck = Callable[[], bool]


def default_commit_message(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Sync: {now.isoformat()}"


class SyncOrchestrator:
    """Runs one sync operation against one working copy."""

    def __init__(
        self,
        runner: 'CommandRunner',
        emitter: 'SyncLogEmitter',
        hosting_client: 'GitHubClient',
        branch: str = DEFAULT_BRANCH,
        host: str = 'github.com',
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.runner = runner
        self.emitter = emitter
        self.hosting = hosting_client
        self.branch = branch
        self.injector = CredentialInjector(runner, host=host)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(
        self,
        operation: SyncOperation,
        repository: Repository,
        local_path: Optional[Union[str, Path]] = None,
        credential: Optional[Credential] = None,
        is_cancelled: Optional[CancelCheck] = None
    ) -> SyncResult:
        """
        Execute an operation according to its kind.

        Args:
            operation: Operation being executed (id is used for log lines)
            repository: Repository configuration
            local_path: Working copy path (defaults to repository.local_path)
            credential: Token + username, required for push and bidirectional
            is_cancelled: Polled between steps; True aborts with OperationCancelled

        Returns:
            SyncResult describing how each phase ended

        Raises:
            SyncError: Classified failure (already emitted at error level)
        """
        path = Path(local_path or repository.local_path)
        kind = SyncKind(operation.kind)

        if kind == SyncKind.PULL:
            outcome = await self.pull(operation, repository, path, credential, is_cancelled)
            return SyncResult(kind=kind, outcomes=[outcome])

        if kind == SyncKind.PUSH:
            result = SyncResult(kind=kind)
            outcome = await self.push(operation, repository, path, credential, is_cancelled, result)
            result.outcomes.append(outcome)
            return result

        return await self.bidirectional(operation, repository, path, credential, is_cancelled)

    # =========================================================================
    # Pull
    # =========================================================================

    async def pull(
        self,
        operation: SyncOperation,
        repository: Repository,
        path: Path,
        credential: Optional[Credential] = None,
        is_cancelled: Optional[CancelCheck] = None
    ) -> SyncOutcome:
        """Clone when there is no working copy yet, otherwise pull origin/<branch>."""
        op_id = operation.id
        await self._check_cancelled(op_id, is_cancelled)
        await self.emitter.info(op_id, f"Starting pull from {repository.remote_id}")

        if not (path / '.git').exists():
            try:
                owner, name = parse_repository_identifier(repository.remote_id)
            except ConfigurationError as e:
                await self._fail(op_id, e)

            token = credential.token if credential else None
            try:
                clone_url = await self.hosting.get_clone_url(owner, name, token=token)
            except HostingAPIError as e:
                await self._fail(op_id, CloneError(
                    f"Failed to resolve clone URL for {repository.remote_id}: {e}", cause=e
                ))

            await self._check_cancelled(op_id, is_cancelled)
            path.parent.mkdir(parents=True, exist_ok=True)
            await self.emitter.info(op_id, f"Cloning {clone_url} into {path}")
            try:
                await self.runner.run(['clone', clone_url, str(path)], cwd=path.parent)
            except CommandError as e:
                await self._fail(op_id, CloneError(
                    f"Clone failed: {self._clean(e.output, credential) or e}", cause=e
                ))

            await self.emitter.success(op_id, f"Cloned {repository.remote_id}")
            return SyncOutcome.CLONED

        await self.emitter.info(op_id, f"Pulling latest changes from {REMOTE_NAME}/{self.branch}")
        try:
            result = await self.runner.run(['pull', REMOTE_NAME, self.branch], cwd=path)
        except CommandError as e:
            await self._fail(op_id, PullError(
                f"Pull failed: {self._clean(e.output, credential) or e}", cause=e
            ))

        output = self._clean(result.output, credential)
        if output:
            await self.emitter.info(op_id, output)
        await self.emitter.success(op_id, f"Pulled latest changes for {repository.remote_id}")
        return SyncOutcome.PULLED

    # =========================================================================
    # Push
    # =========================================================================

    async def push(
        self,
        operation: SyncOperation,
        repository: Repository,
        path: Path,
        credential: Optional[Credential] = None,
        is_cancelled: Optional[CancelCheck] = None,
        result: Optional[SyncResult] = None
    ) -> SyncOutcome:
        """Commit every local change and push it to origin/<branch>."""
        op_id = operation.id

        # Validation happens before any git process is started
        try:
            owner, name = parse_repository_identifier(repository.remote_id)
            if credential is None or not credential.token:
                raise ConfigurationError("No GitHub token configured. Connect a GitHub account before pushing.")
            if not credential.username:
                raise ConfigurationError("GitHub username is unknown for the configured token")
            remote_url = self.injector.authenticated_remote(repository.remote_id, credential.token)
        except ConfigurationError as e:
            await self._fail(op_id, e)

        await self._check_cancelled(op_id, is_cancelled)
        await self.emitter.info(op_id, f"Starting push to {owner}/{name}")

        if not (path / '.git').exists():
            path.mkdir(parents=True, exist_ok=True)
            await self.emitter.info(op_id, f"Initializing git repository in {path}")
            await self._prepare(op_id, ['init'], path, credential)
            await self._prepare(op_id, ['symbolic-ref', 'HEAD', f'refs/heads/{self.branch}'], path, credential)

        await self._check_cancelled(op_id, is_cancelled)
        try:
            await self.injector.ensure_identity(path, credential.username)
            await self.injector.ensure_remote(path, remote_url)
        except CommandError as e:
            await self._fail(op_id, UnclassifiedPushError(
                f"Failed to configure repository: {self._clean(e.output, credential) or e}", cause=e
            ))
        await self.emitter.info(op_id, f"Configured {REMOTE_NAME} remote for {owner}/{name}")

        await self._check_cancelled(op_id, is_cancelled)
        status = await self._prepare(op_id, ['status', '--porcelain'], path, credential)
        changes = parse_porcelain(status.stdout)
        if not changes:
            await self.emitter.success(op_id, "No changes to sync")
            return SyncOutcome.NOTHING_TO_SYNC

        await self.emitter.info(op_id, f"Found {len(changes)} changed file(s):")
        await self._log_changes(op_id, changes)

        await self._check_cancelled(op_id, is_cancelled)
        await self._prepare(op_id, ['add', '-A'], path, credential)
        staged_output = await self._prepare(op_id, ['diff', '--cached', '--name-status'], path, credential)
        staged = parse_name_status(staged_output.stdout)
        if not staged:
            await self.emitter.success(op_id, "No changes staged for commit")
            return SyncOutcome.NOTHING_STAGED

        await self.emitter.info(op_id, f"Staged {len(staged)} file(s):")
        await self._log_changes(op_id, staged)

        await self._check_cancelled(op_id, is_cancelled)
        message = operation.commit_message or default_commit_message(self._clock())
        if result is not None:
            result.commit_message = message
        await self.emitter.info(op_id, f"Committing: {message}")
        commit = await self.runner.run(['commit', '-m', message], cwd=path, check=False)
        if not commit.ok:
            commit_output = self._clean(commit.output, credential)
            if 'nothing to commit' in commit_output.lower():
                await self.emitter.warning(op_id, "Nothing to commit")
                return SyncOutcome.NOTHING_TO_COMMIT
            await self._fail(op_id, CommitError(f"Commit failed: {commit_output or 'unknown error'}"))

        await self._check_cancelled(op_id, is_cancelled)
        await self.emitter.info(op_id, f"Pushing to {REMOTE_NAME}/{self.branch}")
        pushed = await self._push_once(path)
        if pushed.ok:
            await self._log_output(op_id, pushed, credential)
            await self.emitter.success(op_id, f"Pushed changes to {repository.remote_id}")
            return SyncOutcome.PUSHED

        output = self._clean(pushed.output, credential)
        error = classify_push_failure(output)
        if not isinstance(error, NonFastForwardRejection):
            await self._fail(op_id, error)

        await self.emitter.warning(
            op_id,
            "Push rejected: remote has commits not present locally. Rebasing and retrying once"
        )
        if result is not None:
            result.retried = True

        await self._check_cancelled(op_id, is_cancelled)
        await self._rebase_onto_remote(op_id, path, credential)

        retry = await self._push_once(path)
        if not retry.ok:
            retry_output = self._clean(retry.output, credential)
            await self._fail(op_id, RetryFailedRejection(
                f"Push failed after rebase: {retry_output or 'unknown error'}",
                cause=classify_push_failure(retry_output)
            ))

        await self._log_output(op_id, retry, credential)
        await self.emitter.success(op_id, f"Pushed changes to {repository.remote_id} after rebasing")
        return SyncOutcome.PUSHED

    async def _push_once(self, path: Path) -> CommandResult:
        return await self.runner.run(['push', REMOTE_NAME, self.branch], cwd=path, check=False)

    async def _rebase_onto_remote(self, op_id: int, path: Path, credential: Credential) -> None:
        """pull --rebase; on failure abort the rebase so the working copy is left clean."""
        await self.emitter.info(op_id, f"Rebasing onto {REMOTE_NAME}/{self.branch}")
        rebase = await self.runner.run(
            ['pull', '--rebase', REMOTE_NAME, self.branch], cwd=path, check=False
        )
        if rebase.ok:
            return

        rebase_output = self._clean(rebase.output, credential)
        abort = await self.runner.run(['rebase', '--abort'], cwd=path, check=False)
        if not abort.ok:
            logger.warning(f"Operation {op_id}: rebase --abort failed: {self._clean(abort.output, credential)}")
        await self._fail(op_id, RebaseConflictError(
            f"Rebase onto {REMOTE_NAME}/{self.branch} failed and was aborted: "
            f"{rebase_output or 'unknown error'}"
        ))

    # =========================================================================
    # Bidirectional
    # =========================================================================

    async def bidirectional(
        self,
        operation: SyncOperation,
        repository: Repository,
        path: Path,
        credential: Optional[Credential] = None,
        is_cancelled: Optional[CancelCheck] = None
    ) -> SyncResult:
        """Pull to completion, then push. Either failure aborts the whole operation."""
        result = SyncResult(kind=SyncKind.BIDIRECTIONAL)
        op_id = operation.id
        await self.emitter.info(op_id, "Starting bidirectional sync")

        try:
            result.outcomes.append(
                await self.pull(operation, repository, path, credential, is_cancelled)
            )
            result.outcomes.append(
                await self.push(operation, repository, path, credential, is_cancelled, result)
            )
        except OperationCancelled:
            raise
        except SyncError as e:
            wrapped = BidirectionalSyncError(e)
            await self.emitter.error(op_id, str(wrapped))
            raise wrapped from e

        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _prepare(
        self,
        op_id: int,
        args: List[str],
        path: Path,
        credential: Optional[Credential]
    ) -> CommandResult:
        """Run a push preparation step; any failure ends the push unclassified."""
        try:
            return await self.runner.run(args, cwd=path)
        except CommandError as e:
            await self._fail(op_id, UnclassifiedPushError(
                f"git {args[0]} failed: {self._clean(e.output, credential) or e}", cause=e
            ))

    async def _log_changes(self, op_id: int, changes: List[FileChange]) -> None:
        for change in changes:
            await self.emitter.info(op_id, f"  {change.describe()}")

    async def _log_output(self, op_id: int, result: CommandResult, credential: Optional[Credential]) -> None:
        output = self._clean(result.output, credential)
        if output:
            await self.emitter.info(op_id, output)

    async def _check_cancelled(self, op_id: int, is_cancelled: Optional[CancelCheck]) -> None:
        if is_cancelled is not None and is_cancelled():
            await self.emitter.warning(op_id, "Sync operation cancelled")
            raise OperationCancelled(f"Sync operation {op_id} was cancelled")

    async def _fail(self, op_id: int, error: SyncError) -> NoReturn:
        """Emit the error at error level, then raise it."""
        logger.warning(f"Sync operation {op_id} failed ({error.kind}): {error}")
        await self.emitter.error(op_id, str(error))
        raise error from error.cause

    @staticmethod
    def _clean(text: str, credential: Optional[Credential]) -> str:
        secrets = [credential.token] if credential and credential.token else []
        return sanitize_error(text or '', secrets=secrets).strip()
