"""
API tests for the sync routes.

The app is assembled from the routers with a real DatabaseManager and a
mocked SyncService, so no operation ever runs git.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from gitsync import routes as sync_routes
from log_broadcaster import LogBroadcaster


@pytest.fixture
def sync_service():
    service = MagicMock()
    service.start = MagicMock()
    service.request_cancel = AsyncMock(return_value='cancelling')
    return service


@pytest.fixture
def broadcaster():
    return LogBroadcaster()


@pytest.fixture
def client(db_manager, sync_service, broadcaster, monkeypatch):
    monkeypatch.setattr(sync_routes, '_db_manager', db_manager)
    monkeypatch.setattr(sync_routes, '_sync_service', sync_service)
    monkeypatch.setattr(sync_routes, '_broadcaster', broadcaster)

    app = FastAPI()
    app.include_router(sync_routes.router)
    return TestClient(app)


@pytest.fixture
def connected(db_manager):
    db_manager.save_github_token("octocat", "ciphertext")


class TestRepositories:

    def test_configure_and_list(self, client, tmp_path):
        response = client.post("/api/sync/repositories", json={
            "remote_id": "octo/widgets",
            "local_path": str(tmp_path / "widgets"),
        })

        assert response.status_code == 200
        data = response.json()
        assert data["remote_id"] == "octo/widgets"
        assert data["name"] == "widgets"
        assert data["default_branch"] == "main"

        listed = client.get("/api/sync/repositories").json()
        assert [r["remote_id"] for r in listed] == ["octo/widgets"]

    def test_reconfigure_updates_path(self, client, tmp_path):
        client.post("/api/sync/repositories", json={"remote_id": "octo/widgets", "local_path": str(tmp_path / "a")})
        response = client.post("/api/sync/repositories", json={
            "remote_id": "octo/widgets", "local_path": str(tmp_path / "b"), "name": "Widgets",
        })

        assert response.json()["local_path"] == str(tmp_path / "b")
        assert len(client.get("/api/sync/repositories").json()) == 1

    def test_inaccessible_parent_directory(self, client, tmp_path):
        response = client.post("/api/sync/repositories", json={
            "remote_id": "octo/widgets",
            "local_path": str(tmp_path / "missing" / "widgets"),
        })

        assert response.status_code == 400
        assert "Parent directory" in response.json()["detail"]

    @pytest.mark.parametrize("remote_id", ["acme-project", "a/b/c", "octo/wid gets"])
    def test_invalid_identifier(self, client, tmp_path, remote_id):
        response = client.post("/api/sync/repositories", json={
            "remote_id": remote_id, "local_path": str(tmp_path / "x"),
        })
        assert response.status_code == 422


class TestCreateOperation:

    def test_creates_pending_operation_and_starts_it(self, client, test_repository, connected, sync_service):
        response = client.post("/api/sync/operations", json={
            "remote_id": "octo/widgets", "kind": "push", "options": {"commit_message": "Update"},
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["kind"] == "push"
        assert data["remote_id"] == "octo/widgets"
        assert data["options"] == {"commit_message": "Update"}
        sync_service.start.assert_called_once_with(data["id"])

    def test_unknown_repository(self, client, connected):
        response = client.post("/api/sync/operations", json={"remote_id": "octo/other", "kind": "pull"})
        assert response.status_code == 404

    def test_sync_disabled(self, client, db_manager, tmp_path, connected):
        db_manager.upsert_repository("octo/widgets", "widgets", str(tmp_path / "w"), sync_enabled=False)

        response = client.post("/api/sync/operations", json={"remote_id": "octo/widgets", "kind": "pull"})

        assert response.status_code == 409

    def test_requires_token(self, client, test_repository, sync_service):
        response = client.post("/api/sync/operations", json={"remote_id": "octo/widgets", "kind": "pull"})

        assert response.status_code == 400
        assert response.json()["detail"] == "GitHub token not configured"
        sync_service.start.assert_not_called()

    def test_invalid_kind(self, client, test_repository, connected):
        response = client.post("/api/sync/operations", json={"remote_id": "octo/widgets", "kind": "sideways"})
        assert response.status_code == 422

    def test_commit_message_too_long(self, client, test_repository, connected):
        response = client.post("/api/sync/operations", json={
            "remote_id": "octo/widgets", "kind": "push", "options": {"commit_message": "x" * 1001},
        })
        assert response.status_code == 422


class TestReadOperations:

    def test_list_and_filter(self, client, db_manager, test_repository):
        first = db_manager.create_operation(test_repository.id, 'pull')
        db_manager.create_operation(test_repository.id, 'push')
        db_manager.transition_operation(first.id, 'running')

        data = client.get("/api/sync/operations").json()
        assert data["total"] == 2
        assert data["limit"] == 50

        running = client.get("/api/sync/operations", params={"status": "running"}).json()
        assert [op["id"] for op in running["operations"]] == [first.id]

    def test_list_rejects_unknown_status(self, client):
        assert client.get("/api/sync/operations", params={"status": "exploded"}).status_code == 422

    def test_detail_includes_logs(self, client, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push')
        db_manager.append_sync_log(operation.id, 'info', "Starting push to octo/widgets")
        db_manager.transition_operation(operation.id, 'running')
        db_manager.transition_operation(operation.id, 'failed', "Network error", 'connectivity')

        data = client.get(f"/api/sync/operations/{operation.id}").json()

        assert data["status"] == "failed"
        assert data["error_kind"] == "connectivity"
        assert data["started_at"].endswith("Z")
        assert [log["message"] for log in data["logs"]] == ["Starting push to octo/widgets"]

    def test_detail_not_found(self, client):
        assert client.get("/api/sync/operations/999").status_code == 404


class TestCancel:

    def test_cancel_running(self, client, db_manager, test_repository, sync_service):
        operation = db_manager.create_operation(test_repository.id, 'push')

        response = client.post(f"/api/sync/operations/{operation.id}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelling"
        sync_service.request_cancel.assert_awaited_once_with(operation.id)

    def test_cancel_finished(self, client, db_manager, test_repository, sync_service):
        operation = db_manager.create_operation(test_repository.id, 'push')
        sync_service.request_cancel.return_value = None

        response = client.post(f"/api/sync/operations/{operation.id}/cancel")

        assert response.status_code == 409
        assert response.json()["detail"] == "Sync operation is pending and cannot be cancelled"

    def test_cancel_missing(self, client):
        assert client.post("/api/sync/operations/999/cancel").status_code == 404


class TestLogStreams:

    def test_sse_not_found(self, client):
        assert client.get("/api/sync/operations/999/logs").status_code == 404

    def test_sse_unavailable_after_shutdown(self, client, db_manager, test_repository, broadcaster):
        operation = db_manager.create_operation(test_repository.id, 'push')
        asyncio.run(broadcaster.shutdown())

        assert client.get(f"/api/sync/operations/{operation.id}/logs").status_code == 503

    def test_websocket_not_found(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/sync/operations/999/ws") as websocket:
                websocket.receive_text()

        assert exc_info.value.code == 1008

    def test_websocket_receives_ack(self, client, db_manager, test_repository):
        operation = db_manager.create_operation(test_repository.id, 'push')

        with client.websocket_connect(f"/api/sync/operations/{operation.id}/ws") as websocket:
            ack = websocket.receive_json()

        assert ack["type"] == "connected"
        assert ack["message"] == f"Connected to sync operation {operation.id} log stream"
