"""
Fixtures for orchestrator tests.

FakeGitRunner stands in for CommandRunner: it records every git invocation
and answers from scripted responses, so no git process is ever started.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from gitsync.command_runner import CommandError, CommandResult
from gitsync.models import Credential, Repository, SyncKind, SyncOperation
from gitsync.orchestrator import SyncOrchestrator
from log_emitter import SyncLogEmitter


class FakeGitRunner:
    """Scripted replacement for CommandRunner"""

    def __init__(self):
        self.calls = []
        self._responses = []

    def on(self, *prefix, returncode=0, stdout='', stderr='', times=None):
        """
        Script the result for commands starting with prefix.

        Earlier registrations win; times limits how often a response is used.
        """
        self._responses.append({
            'prefix': list(prefix),
            'returncode': returncode,
            'stdout': stdout,
            'stderr': stderr,
            'times': times,
        })
        return self

    def _match(self, args):
        for response in self._responses:
            prefix = response['prefix']
            if args[:len(prefix)] != prefix:
                continue
            if response['times'] is not None:
                if response['times'] <= 0:
                    continue
                response['times'] -= 1
            return response
        return None

    async def run(self, args, cwd, check=True, env=None):
        args = list(args)
        self.calls.append((args, str(cwd)))

        response = self._match(args)
        result = CommandResult(
            args=args,
            returncode=response['returncode'] if response else 0,
            stdout=response['stdout'] if response else '',
            stderr=response['stderr'] if response else '',
        )

        # Mirror the filesystem effects the orchestrator relies on
        if result.ok and args[0] == 'clone':
            (Path(args[-1]) / '.git').mkdir(parents=True, exist_ok=True)
        if result.ok and args[0] == 'init':
            (Path(cwd) / '.git').mkdir(parents=True, exist_ok=True)

        if check and not result.ok:
            raise CommandError(args, result.returncode, stderr=result.stderr, stdout=result.stdout)
        return result

    @property
    def commands(self):
        return [args for args, _ in self.calls]

    def count(self, *prefix):
        prefix = list(prefix)
        return sum(1 for args in self.commands if args[:len(prefix)] == prefix)


@pytest.fixture
def runner():
    return FakeGitRunner()


@pytest.fixture
def hosting_client():
    client = MagicMock()
    client.get_clone_url = AsyncMock(return_value="https://github.com/octo/widgets.git")
    return client


@pytest.fixture
def emitter(recording_store):
    return SyncLogEmitter(broadcaster=None, store=recording_store)


@pytest.fixture
def orchestrator(runner, emitter, hosting_client):
    return SyncOrchestrator(runner, emitter, hosting_client)


@pytest.fixture
def credential():
    return Credential(token="ghp_secret123", username="octocat")


@pytest.fixture
def working_copy(tmp_path):
    """Existing working copy (has .git)"""
    path = tmp_path / "widgets"
    (path / '.git').mkdir(parents=True)
    return path


@pytest.fixture
def repository(tmp_path):
    return Repository(id=1, remote_id="octo/widgets", name="widgets", local_path=str(tmp_path / "widgets"))


def _operation(kind, options=None, operation_id=7):
    return SyncOperation(id=operation_id, repository_id=1, kind=SyncKind(kind), options=options or {})


@pytest.fixture
def push_operation():
    return _operation('push')


@pytest.fixture
def pull_operation():
    return _operation('pull')


@pytest.fixture
def bidirectional_operation():
    return _operation('bidirectional')
