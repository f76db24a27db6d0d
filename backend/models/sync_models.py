"""
Sync Models for API Endpoints

Pydantic models for repositories, sync operations, their log lines and the
stored GitHub credential.

Security:
    - Responses never include the GitHub token, only a connected flag
    - Repository identifiers and paths are validated before reaching git
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Shared Validation Helpers
# =============================================================================

_REMOTE_ID_PART = re.compile(r'^[A-Za-z0-9_.-]+$')
_MAX_COMMIT_MESSAGE = 1000


def _validate_remote_id(v: str) -> str:
    """Validate owner/name repository identifier."""
    v = v.strip()
    if v.count('/') != 1:
        raise ValueError('Repository identifier must have the form owner/name')
    owner, name = v.split('/')
    if not owner or not name:
        raise ValueError('Repository owner and name cannot be empty')
    if not _REMOTE_ID_PART.match(owner) or not _REMOTE_ID_PART.match(name):
        raise ValueError('Repository identifier contains invalid characters')
    return v


def _validate_local_path(v: str) -> str:
    """Validate working copy path."""
    v = v.strip()
    if not v:
        raise ValueError('Local path cannot be empty')
    if '\x00' in v or '\n' in v:
        raise ValueError('Local path contains invalid characters')
    return v


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.isoformat() + 'Z'
    return value.isoformat()


# =============================================================================
# Repository Models
# =============================================================================


class RepositoryConfigure(BaseModel):
    """Request model for configuring (creating or updating) a repository."""
    remote_id: str = Field(..., min_length=3, max_length=200)
    name: Optional[str] = Field(None, max_length=100)
    local_path: str = Field(..., min_length=1, max_length=1000)
    sync_enabled: bool = Field(default=True)

    @field_validator('remote_id')
    @classmethod
    def validate_remote_id(cls, v: str) -> str:
        return _validate_remote_id(v)

    @field_validator('local_path')
    @classmethod
    def validate_local_path(cls, v: str) -> str:
        return _validate_local_path(v)

    @property
    def display_name(self) -> str:
        return (self.name or '').strip() or self.remote_id.split('/')[1]


class RepositoryResponse(BaseModel):
    id: int
    remote_id: str
    name: str
    local_path: str
    default_branch: str
    sync_enabled: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_db(cls, repo) -> 'RepositoryResponse':
        return cls(
            id=repo.id,
            remote_id=repo.remote_id,
            name=repo.name,
            local_path=repo.local_path,
            default_branch=repo.default_branch or 'main',
            sync_enabled=bool(repo.sync_enabled),
            created_at=_iso(repo.created_at),
            updated_at=_iso(repo.updated_at),
        )


# =============================================================================
# Sync Operation Models
# =============================================================================


class SyncOperationCreate(BaseModel):
    """Request model for starting a sync operation."""
    remote_id: str = Field(..., min_length=3, max_length=200)
    kind: str = Field(..., pattern='^(pull|push|bidirectional)$')
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('remote_id')
    @classmethod
    def validate_remote_id(cls, v: str) -> str:
        return _validate_remote_id(v)

    @field_validator('options')
    @classmethod
    def validate_options(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        for key in ('commit_message', 'commitMessage'):
            message = v.get(key)
            if message is None:
                continue
            if not isinstance(message, str):
                raise ValueError(f'{key} must be a string')
            if len(message) > _MAX_COMMIT_MESSAGE:
                raise ValueError(f'{key} cannot exceed {_MAX_COMMIT_MESSAGE} characters')
        return v


class SyncLogResponse(BaseModel):
    id: int
    level: str
    message: str
    timestamp: Optional[str] = None

    @classmethod
    def from_db(cls, log) -> 'SyncLogResponse':
        return cls(id=log.id, level=log.level, message=log.message, timestamp=_iso(log.timestamp))


class SyncOperationResponse(BaseModel):
    id: int
    repository_id: int
    remote_id: Optional[str] = None
    repository_name: Optional[str] = None
    kind: str
    status: str
    options: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def _fields_from_db(cls, operation) -> Dict[str, Any]:
        repo = operation.repository
        return dict(
            id=operation.id,
            repository_id=operation.repository_id,
            remote_id=repo.remote_id if repo else None,
            repository_name=repo.name if repo else None,
            kind=operation.kind,
            status=operation.status,
            options=operation.options or {},
            error_message=operation.error_message,
            error_kind=operation.error_kind,
            created_at=_iso(operation.created_at),
            started_at=_iso(operation.started_at),
            completed_at=_iso(operation.completed_at),
        )

    @classmethod
    def from_db(cls, operation) -> 'SyncOperationResponse':
        return cls(**cls._fields_from_db(operation))


class SyncOperationDetailResponse(SyncOperationResponse):
    logs: List[SyncLogResponse] = Field(default_factory=list)

    @classmethod
    def from_db_with_logs(cls, operation, logs) -> 'SyncOperationDetailResponse':
        return cls(
            **cls._fields_from_db(operation),
            logs=[SyncLogResponse.from_db(log) for log in logs],
        )


class SyncOperationListResponse(BaseModel):
    operations: List[SyncOperationResponse]
    total: int
    limit: int
    offset: int


class CancelOperationResponse(BaseModel):
    id: int
    status: str
    message: str


# =============================================================================
# GitHub Credential Models
# =============================================================================


class GitHubTokenRequest(BaseModel):
    """Request model for storing a GitHub personal access token."""
    token: str = Field(..., min_length=1, max_length=500)

    @field_validator('token')
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Token cannot be empty')
        if any(c.isspace() for c in v):
            raise ValueError('Token cannot contain whitespace')
        return v


class AuthStatusResponse(BaseModel):
    connected: bool
    github_username: Optional[str] = None
