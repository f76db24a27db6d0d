"""
Repository sync package.

This module provides:
- SyncOrchestrator: pull, push and bidirectional sync of a working copy
- CommandRunner: async git CLI execution
- CredentialInjector: authenticated remotes and commit identity
- SyncService: background execution and status tracking of sync operations
- The SyncError taxonomy used to classify failures

HTTP routes live in gitsync.routes and are imported by main.py directly.
"""
from gitsync.command_runner import (
    CommandRunner,
    CommandResult,
    CommandError,
    GitNotAvailableError,
)
from gitsync.credentials import (
    CredentialInjector,
    build_authenticated_remote,
    parse_repository_identifier,
    sanitize_error,
)
from gitsync.errors import SyncError, PushRejected, classify_push_failure
from gitsync.models import (
    Credential,
    LogLevel,
    LogLine,
    OperationStatus,
    Repository,
    SyncKind,
    SyncOperation,
    SyncOutcome,
    SyncResult,
)
from gitsync.orchestrator import SyncOrchestrator
from gitsync.service import SyncService
from gitsync.state_machine import OperationStateMachine

__all__ = [
    'CommandRunner',
    'CommandResult',
    'CommandError',
    'GitNotAvailableError',
    'CredentialInjector',
    'build_authenticated_remote',
    'parse_repository_identifier',
    'sanitize_error',
    'SyncError',
    'PushRejected',
    'classify_push_failure',
    'Credential',
    'LogLevel',
    'LogLine',
    'OperationStatus',
    'Repository',
    'SyncKind',
    'SyncOperation',
    'SyncOutcome',
    'SyncResult',
    'SyncOrchestrator',
    'SyncService',
    'OperationStateMachine',
]
