"""
Domain types passed between the sync service, the orchestrator and the log pipeline.

These are plain dataclasses decoupled from the SQLAlchemy records in
database.py so the orchestrator can be driven without a database.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SyncKind(str, Enum):
    PULL = 'pull'
    PUSH = 'push'
    BIDIRECTIONAL = 'bidirectional'


class OperationStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class LogLevel(str, Enum):
    INFO = 'info'
    WARNING = 'warning'
    ERROR = 'error'
    SUCCESS = 'success'


class SyncOutcome(str, Enum):
    """How a successful phase ended."""
    CLONED = 'cloned'
    PULLED = 'pulled'
    PUSHED = 'pushed'
    NOTHING_TO_SYNC = 'nothing_to_sync'
    NOTHING_STAGED = 'nothing_staged'
    NOTHING_TO_COMMIT = 'nothing_to_commit'


@dataclass
class Repository:
    """A configured repository. remote_id is 'owner/name' on the hosting service."""
    id: int
    remote_id: str
    name: str
    local_path: str
    branch: str = 'main'


@dataclass
class SyncOperation:
    id: int
    repository_id: int
    kind: SyncKind
    options: Dict[str, Any] = field(default_factory=dict)
    status: OperationStatus = OperationStatus.PENDING

    @property
    def commit_message(self) -> Optional[str]:
        """Commit message from options; both snake and camel case spellings are accepted."""
        message = self.options.get('commit_message') or self.options.get('commitMessage')
        return message or None


@dataclass(frozen=True)
class Credential:
    """Bearer token for the hosting service. Never persisted by the orchestrator."""
    token: str
    username: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, token='***')"


@dataclass(frozen=True)
class LogLine:
    operation_id: int
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_event(self) -> Dict[str, Any]:
        """Wire shape delivered to live subscribers."""
        return {
            'type': 'log',
            'level': self.level.value,
            'message': self.message,
            'operationId': self.operation_id,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class SyncResult:
    """Result of a completed (non-failing) sync phase or operation."""
    kind: SyncKind
    outcomes: list = field(default_factory=list)
    commit_message: Optional[str] = None
    retried: bool = False

    @property
    def outcome(self) -> Optional[SyncOutcome]:
        return self.outcomes[-1] if self.outcomes else None
