"""
Database models and operations for the sync service
Uses SQLite for persistent storage of repositories, sync operations and their logs
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import create_engine, event, Column, String, Integer, Boolean, DateTime, JSON, ForeignKey, Text, Index, CheckConstraint
from sqlalchemy.orm import declarative_base, sessionmaker, Session, relationship, joinedload
import os
import logging

from gitsync import models as domain
from gitsync.state_machine import OperationStateMachine

logger = logging.getLogger(__name__)


def utcnow():
    """Helper to get timezone-aware UTC datetime for database defaults"""
    return datetime.now(timezone.utc)


Base = declarative_base()


class User(Base):
    """The single local user and their GitHub credential"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    github_username = Column(String, nullable=True)
    github_token_encrypted = Column(Text, nullable=True)  # Fernet ciphertext, see utils/encryption.py
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # Only one user row exists
        CheckConstraint('id = 1', name='single_user_row'),
    )

    @property
    def has_github_token(self) -> bool:
        return bool(self.github_token_encrypted)


class Repository(Base):
    """A repository configured for syncing"""
    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    remote_id = Column(String, nullable=False, unique=True)  # owner/name on GitHub
    name = Column(String, nullable=False)
    local_path = Column(String, nullable=False)
    default_branch = Column(String, nullable=False, default='main')
    sync_enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    operations = relationship("SyncOperationRecord", back_populates="repository", cascade="all, delete-orphan")

    def to_domain(self) -> domain.Repository:
        return domain.Repository(
            id=self.id,
            remote_id=self.remote_id,
            name=self.name,
            local_path=self.local_path,
            branch=self.default_branch or 'main',
        )


class SyncOperationRecord(Base):
    """One pull, push or bidirectional sync request and its outcome"""
    __tablename__ = "sync_operations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String, nullable=False)  # pull | push | bidirectional
    options = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default='pending')
    error_message = Column(Text, nullable=True)
    error_kind = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    repository = relationship("Repository", back_populates="operations")
    logs = relationship("SyncLog", back_populates="operation", cascade="all, delete-orphan", order_by="SyncLog.id")

    __table_args__ = (
        Index('idx_sync_operations_status', 'status'),
        Index('idx_sync_operations_created', 'created_at'),
    )

    def to_domain(self) -> domain.SyncOperation:
        return domain.SyncOperation(
            id=self.id,
            repository_id=self.repository_id,
            kind=domain.SyncKind(self.kind),
            options=dict(self.options or {}),
            status=domain.OperationStatus(self.status),
        )


class SyncLog(Base):
    """Append-only log line of a sync operation"""
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(Integer, ForeignKey("sync_operations.id", ondelete="CASCADE"), nullable=False)
    level = Column(String, nullable=False)  # info | warning | error | success
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow)

    operation = relationship("SyncOperationRecord", back_populates="logs")

    __table_args__ = (
        Index('idx_sync_logs_operation', 'operation_id', 'id'),
    )


class DatabaseManager:
    """
    Database management and operations.

    One instance is created at startup and shared by routes and services.
    Methods open a short-lived session each, so they are safe to call from
    worker threads via asyncio.to_thread.
    """

    def __init__(self, db_path: str = "data/gitsync.db"):
        self.db_path = db_path
        self.state_machine = OperationStateMachine()

        # Ensure data directory exists
        data_dir = os.path.dirname(db_path)
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={
                "check_same_thread": False,
                "timeout": 20
            },
            echo=False
        )
        event.listen(self.engine, "connect", self._configure_sqlite_pragmas)

        # Detached records are handed to async code, so keep their loaded state after commit
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database initialized at {db_path}")

    @staticmethod
    def _configure_sqlite_pragmas(dbapi_connection, connection_record):
        """
        WAL mode for concurrent reads during writes, foreign keys for cascades.
        """
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    def get_session(self) -> Session:
        """Get a database session"""
        return self.SessionLocal()

    # Repository Operations
    def list_repositories(self) -> List[Repository]:
        with self.get_session() as session:
            return session.query(Repository).order_by(Repository.name).all()

    def get_repository(self, repository_id: int) -> Optional[Repository]:
        with self.get_session() as session:
            return session.query(Repository).filter(Repository.id == repository_id).first()

    def get_repository_by_remote_id(self, remote_id: str) -> Optional[Repository]:
        with self.get_session() as session:
            return session.query(Repository).filter(Repository.remote_id == remote_id).first()

    def upsert_repository(
        self,
        remote_id: str,
        name: str,
        local_path: str,
        sync_enabled: bool = True
    ) -> Tuple[Repository, bool]:
        """Create or update the repository with this remote_id. Returns (repository, created)"""
        with self.get_session() as session:
            repo = session.query(Repository).filter(Repository.remote_id == remote_id).first()
            created = repo is None
            if created:
                repo = Repository(remote_id=remote_id)
                session.add(repo)
            repo.name = name
            repo.local_path = local_path
            repo.sync_enabled = sync_enabled
            session.commit()
            session.refresh(repo)
            logger.info(f"{'Created' if created else 'Updated'} repository {remote_id} -> {local_path}")
            return repo, created

    # Sync Operation Operations
    def create_operation(self, repository_id: int, kind: str, options: Optional[Dict[str, Any]] = None) -> SyncOperationRecord:
        with self.get_session() as session:
            operation = SyncOperationRecord(
                repository_id=repository_id,
                kind=kind,
                options=options or {},
                status='pending',
            )
            session.add(operation)
            session.commit()
            session.refresh(operation)
            return operation

    def get_operation(self, operation_id: int) -> Optional[SyncOperationRecord]:
        with self.get_session() as session:
            return (
                session.query(SyncOperationRecord)
                .options(joinedload(SyncOperationRecord.repository))
                .filter(SyncOperationRecord.id == operation_id)
                .first()
            )

    def list_operations(
        self,
        status: Optional[str] = None,
        repository_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[SyncOperationRecord], int]:
        """List operations newest first - returns (operations, total_count)"""
        with self.get_session() as session:
            query = session.query(SyncOperationRecord)
            if status:
                query = query.filter(SyncOperationRecord.status == status)
            if repository_id is not None:
                query = query.filter(SyncOperationRecord.repository_id == repository_id)

            total = query.count()
            operations = (
                query.options(joinedload(SyncOperationRecord.repository))
                .order_by(SyncOperationRecord.created_at.desc(), SyncOperationRecord.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return operations, total

    def transition_operation(
        self,
        operation_id: int,
        to_state: str,
        error_message: Optional[str] = None,
        error_kind: Optional[str] = None
    ) -> Optional[SyncOperationRecord]:
        """
        Apply a validated status transition.

        Returns:
            The updated record, or None if the operation does not exist or the
            transition is not allowed from its current status
        """
        with self.get_session() as session:
            operation = session.query(SyncOperationRecord).filter(SyncOperationRecord.id == operation_id).first()
            if operation is None:
                return None
            if not self.state_machine.transition(operation, to_state):
                return None
            if error_message is not None:
                operation.error_message = error_message
            if error_kind is not None:
                operation.error_kind = error_kind
            session.commit()
            session.refresh(operation)
            return operation

    def fail_interrupted_operations(self) -> int:
        """
        Finish operations left behind by a previous process.

        Running operations become failed and pending ones cancelled, both with
        error kind 'interrupted'. Returns the number of records changed.
        """
        outcomes = {
            'running': ('failed', "Sync service restarted while the operation was running"),
            'pending': ('cancelled', "Sync service restarted before the operation started"),
        }
        with self.get_session() as session:
            stale = (
                session.query(SyncOperationRecord)
                .filter(SyncOperationRecord.status.in_(list(outcomes)))
                .all()
            )
            for operation in stale:
                to_state, message = outcomes[operation.status]
                if self.state_machine.transition(operation, to_state):
                    operation.error_message = message
                    operation.error_kind = 'interrupted'
            session.commit()
            if stale:
                logger.info(f"Marked {len(stale)} interrupted sync operation(s) as finished")
            return len(stale)

    # Sync Log Operations
    def append_sync_log(self, operation_id: int, level: str, message: str, timestamp: Optional[datetime] = None) -> SyncLog:
        with self.get_session() as session:
            log = SyncLog(
                operation_id=operation_id,
                level=level,
                message=message,
                timestamp=timestamp or utcnow(),
            )
            session.add(log)
            session.commit()
            session.refresh(log)
            return log

    def get_sync_logs(self, operation_id: int) -> List[SyncLog]:
        with self.get_session() as session:
            return (
                session.query(SyncLog)
                .filter(SyncLog.operation_id == operation_id)
                .order_by(SyncLog.id.asc())
                .all()
            )

    # User / Credential Operations
    def get_user(self) -> Optional[User]:
        with self.get_session() as session:
            return session.query(User).filter(User.id == 1).first()

    def save_github_token(self, username: str, token_encrypted: str) -> User:
        with self.get_session() as session:
            user = session.query(User).filter(User.id == 1).first()
            if user is None:
                user = User(id=1)
                session.add(user)
            user.github_username = username
            user.github_token_encrypted = token_encrypted
            session.commit()
            session.refresh(user)
            logger.info(f"Stored GitHub token for {username}")
            return user

    def clear_github_token(self) -> bool:
        with self.get_session() as session:
            user = session.query(User).filter(User.id == 1).first()
            if user is None or not user.github_token_encrypted:
                return False
            user.github_token_encrypted = None
            session.commit()
            logger.info("Removed stored GitHub token")
            return True
