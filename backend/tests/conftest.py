"""
Shared pytest fixtures for sync service tests.

Fixtures provided:
- db_manager: DatabaseManager on a temporary SQLite file
- test_repository: Configured repository record
- recording_store: Log store that keeps appended lines in memory
- encryption_key_path: Isolated Fernet key file for token encryption
"""

import pytest
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from database import DatabaseManager


class RecordingLogStore:
    """Log store that keeps every appended line"""

    def __init__(self):
        self.lines = []

    def append(self, line):
        self.lines.append(line)

    @property
    def messages(self):
        return [line.message for line in self.lines]


@pytest.fixture(scope="function")
def db_manager(tmp_path):
    """Create a DatabaseManager backed by a temporary SQLite database."""
    manager = DatabaseManager(str(tmp_path / "data" / "gitsync.db"))
    yield manager
    manager.engine.dispose()


@pytest.fixture
def test_repository(db_manager, tmp_path):
    """A configured repository whose working copy lives under tmp_path."""
    repo, _ = db_manager.upsert_repository(
        remote_id="octo/widgets",
        name="widgets",
        local_path=str(tmp_path / "work" / "widgets"),
    )
    return repo


@pytest.fixture
def recording_store():
    return RecordingLogStore()


@pytest.fixture
def encryption_key_path(tmp_path):
    """Point token encryption at a key file inside tmp_path."""
    key_path = str(tmp_path / "keys" / "encryption.key")
    with patch('utils.encryption.KEY_PATH', key_path):
        yield key_path
