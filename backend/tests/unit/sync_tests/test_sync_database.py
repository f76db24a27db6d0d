"""
Unit tests for DatabaseManager sync persistence.
"""

from sqlalchemy import inspect

from database import DatabaseManager, SyncOperationRecord


class TestSchema:

    def test_tables_created(self, db_manager):
        tables = set(inspect(db_manager.engine).get_table_names())
        assert {'users', 'repositories', 'sync_operations', 'sync_logs'} <= tables

    def test_creates_missing_data_directory(self, tmp_path):
        manager = DatabaseManager(str(tmp_path / "nested" / "dir" / "gitsync.db"))
        try:
            assert (tmp_path / "nested" / "dir").is_dir()
        finally:
            manager.engine.dispose()


class TestRepositories:

    def test_upsert_creates_then_updates(self, db_manager, tmp_path):
        repo, created = db_manager.upsert_repository("octo/widgets", "widgets", str(tmp_path / "a"))
        assert created
        assert repo.default_branch == 'main'
        assert repo.sync_enabled

        updated, created = db_manager.upsert_repository("octo/widgets", "Widgets", str(tmp_path / "b"), sync_enabled=False)
        assert not created
        assert updated.id == repo.id
        assert updated.local_path == str(tmp_path / "b")
        assert not updated.sync_enabled
        assert len(db_manager.list_repositories()) == 1

    def test_lookup(self, db_manager, test_repository):
        assert db_manager.get_repository(test_repository.id).remote_id == "octo/widgets"
        assert db_manager.get_repository_by_remote_id("octo/widgets").id == test_repository.id
        assert db_manager.get_repository(12345) is None

    def test_to_domain(self, db_manager, test_repository):
        domain_repo = test_repository.to_domain()
        assert domain_repo.remote_id == "octo/widgets"
        assert domain_repo.branch == 'main'


class TestOperations:

    def test_create_is_pending(self, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'pull')

        assert operation.status == 'pending'
        assert operation.options == {}
        assert operation.created_at is not None

    def test_get_loads_repository(self, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push', {'commit_message': 'hi'})

        loaded = db_manager.get_operation(operation.id)

        assert loaded.repository.remote_id == "octo/widgets"
        assert loaded.to_domain().commit_message == 'hi'

    def test_list_newest_first_with_filters(self, db_manager, test_repository):
        first = db_manager.create_operation(test_repository.id, 'pull')
        second = db_manager.create_operation(test_repository.id, 'push')
        db_manager.transition_operation(first.id, 'running')

        operations, total = db_manager.list_operations()
        assert total == 2
        assert [op.id for op in operations] == [second.id, first.id]

        running, total = db_manager.list_operations(status='running')
        assert total == 1
        assert running[0].id == first.id

        page, total = db_manager.list_operations(limit=1, offset=1)
        assert total == 2
        assert [op.id for op in page] == [first.id]

    def test_transition_records_error(self, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push')
        db_manager.transition_operation(operation.id, 'running')

        updated = db_manager.transition_operation(operation.id, 'failed', "Network error", 'connectivity')

        assert updated.status == 'failed'
        assert updated.error_message == "Network error"
        assert updated.error_kind == 'connectivity'
        assert updated.completed_at is not None

    def test_invalid_transition_returns_none(self, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push')

        assert db_manager.transition_operation(operation.id, 'succeeded') is None
        assert db_manager.get_operation(operation.id).status == 'pending'

    def test_transition_missing_operation(self, db_manager):
        assert db_manager.transition_operation(999, 'running') is None

    def test_terminal_state_is_final(self, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push')
        db_manager.transition_operation(operation.id, 'cancelled')

        assert db_manager.transition_operation(operation.id, 'running') is None

    def test_logs_in_append_order(self, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push')
        for i in range(3):
            db_manager.append_sync_log(operation.id, 'info', f"line {i}")

        assert [log.message for log in db_manager.get_sync_logs(operation.id)] == ["line 0", "line 1", "line 2"]

    def test_operation_isolation_of_logs(self, db_manager, test_repository):
        one = db_manager.create_operation(test_repository.id, 'push')
        two = db_manager.create_operation(test_repository.id, 'pull')
        db_manager.append_sync_log(one.id, 'info', "for one")

        assert db_manager.get_sync_logs(two.id) == []

    def test_record_type(self, db_manager, test_repository):
        assert isinstance(db_manager.create_operation(test_repository.id, 'pull'), SyncOperationRecord)

    def test_fail_interrupted_operations(self, db_manager, test_repository):
        running = db_manager.create_operation(test_repository.id, 'push')
        db_manager.transition_operation(running.id, 'running')
        pending = db_manager.create_operation(test_repository.id, 'pull')
        done = db_manager.create_operation(test_repository.id, 'pull')
        db_manager.transition_operation(done.id, 'running')
        db_manager.transition_operation(done.id, 'succeeded')

        assert db_manager.fail_interrupted_operations() == 2

        running = db_manager.get_operation(running.id)
        assert running.status == 'failed'
        assert running.error_kind == 'interrupted'
        assert running.completed_at is not None
        pending = db_manager.get_operation(pending.id)
        assert pending.status == 'cancelled'
        assert pending.error_kind == 'interrupted'
        assert db_manager.get_operation(done.id).status == 'succeeded'

        assert db_manager.fail_interrupted_operations() == 0


class TestCredentials:

    def test_save_and_clear_token(self, db_manager):
        assert db_manager.get_user() is None

        user = db_manager.save_github_token("octocat", "ciphertext")
        assert user.has_github_token
        assert db_manager.get_user().github_username == "octocat"

        assert db_manager.clear_github_token() is True
        assert not db_manager.get_user().has_github_token
        assert db_manager.clear_github_token() is False

    def test_save_replaces_token(self, db_manager):
        db_manager.save_github_token("octocat", "first")
        db_manager.save_github_token("hubot", "second")

        user = db_manager.get_user()
        assert user.github_username == "hubot"
        assert user.github_token_encrypted == "second"
