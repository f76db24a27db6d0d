"""
Error taxonomy for sync operations.

Every failure raised by the orchestrator derives from SyncError and carries a
stable ``kind`` string. The kind is what gets persisted on the operation
record (error_kind) and what API clients switch on, so kinds must never be
renamed.

Push failures are classified from git's output using PUSH_FAILURE_PATTERNS.
This is the only place where git output is matched against strings.
"""

from typing import Optional, Tuple, Type


class SyncError(Exception):
    """Base class for all sync operation failures."""
    kind = 'sync'

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ConfigurationError(SyncError):
    """Repository or credential configuration is unusable (no process is spawned)."""
    kind = 'configuration'


class CloneError(SyncError):
    kind = 'clone'


class PullError(SyncError):
    kind = 'pull'


class CommitError(SyncError):
    kind = 'commit'


class PushRejected(SyncError):
    """Remote refused the push. Concrete variants are attached below."""
    kind = 'push_rejected'


class NonFastForwardRejection(PushRejected):
    """Remote has commits the local branch lacks. Triggers the rebase-retry path."""
    kind = 'non_fast_forward'


class RetryFailedRejection(PushRejected):
    """The single push retry after rebasing failed."""
    kind = 'retry_failed'


class ServerDeniedRejection(PushRejected):
    """Rejected for any reason other than non-fast-forward (hooks, protected branch)."""
    kind = 'server_denied'


PushRejected.NonFastForward = NonFastForwardRejection
PushRejected.RetryFailed = RetryFailedRejection
PushRejected.ServerDenied = ServerDeniedRejection


class RebaseConflictError(SyncError):
    """``pull --rebase`` during the retry path stopped on a conflict."""
    kind = 'rebase_conflict'


class AuthorizationError(SyncError):
    """Credential is valid but lacks permission on the repository."""
    kind = 'authorization'


class ConnectivityError(SyncError):
    kind = 'connectivity'


class CredentialError(SyncError):
    """Remote rejected the credential itself."""
    kind = 'credential'


class UnclassifiedPushError(SyncError):
    kind = 'push'


class BidirectionalSyncError(SyncError):
    """Wraps the failure of either phase of a bidirectional sync."""
    kind = 'bidirectional'

    def __init__(self, cause: SyncError):
        super().__init__(f"Bidirectional sync failed: {cause}", cause=cause)


class OperationCancelled(SyncError):
    kind = 'cancelled'


# Ordered (substring, error class, user-facing message) table for push failures.
# First match wins. Matching is case-insensitive against stderr + stdout.
# 'rejected' entries are handled by classify_push_failure before this table.
PUSH_FAILURE_PATTERNS: Tuple[Tuple[str, Type[SyncError], str], ...] = (
    ('permission denied', AuthorizationError,
     "Permission denied. Check that your GitHub token has write access to this repository."),
    ('403', AuthorizationError,
     "Permission denied. Check that your GitHub token has write access to this repository."),
    ('could not resolve host', ConnectivityError,
     "Network error. Check your internet connection."),
    ('network', ConnectivityError,
     "Network error. Check your internet connection."),
    ('authentication failed', CredentialError,
     "Authentication failed. Your GitHub token may have expired or been revoked."),
)

# Markers that identify a rejection the remote would accept after rebasing.
NON_FAST_FORWARD_MARKERS: Tuple[str, ...] = ('non-fast-forward', 'fetch first')


def classify_push_failure(output: str) -> SyncError:
    """
    Map git push output to a classified error instance.

    Args:
        output: Combined (already sanitized) stderr/stdout of the failed push

    Returns:
        SyncError subclass instance. NonFastForwardRejection signals that the
        caller may rebase and retry once.

    Examples:
        >>> type(classify_push_failure("! [rejected] main -> main (fetch first)"))
        <class 'gitsync.errors.NonFastForwardRejection'>
        >>> type(classify_push_failure("fatal: Authentication failed for ..."))
        <class 'gitsync.errors.CredentialError'>
    """
    text = output or ''
    lowered = text.lower()

    if 'rejected' in lowered:
        if any(marker in lowered for marker in NON_FAST_FORWARD_MARKERS):
            return NonFastForwardRejection(
                "Push rejected: remote contains commits not present locally"
            )
        return ServerDeniedRejection(f"Push rejected by server: {text.strip()}")

    for pattern, error_cls, message in PUSH_FAILURE_PATTERNS:
        if pattern in lowered:
            return error_cls(message)

    return UnclassifiedPushError(f"Push failed: {text.strip() or 'unknown error'}")
