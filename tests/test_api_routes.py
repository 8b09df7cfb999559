import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from apps.api.main import app, get_service, get_settings
from schlichter.bindings import Binding
from schlichter.config import Settings
from schlichter.errors import FindingNotFound, StatusChangeFailed, TransportError, UnknownBinding, UnknownConnection
from schlichter.resolution import CURRENT_VOCABULARY, ResolutionStatus
from schlichter.service import PermissionOutcome, ReopenOutcome
from conftest import CONNECTION_ID, PROJECT_KEY, SCOPE_ID

HEADERS = {"X-API-Key": "secret"}


@pytest.fixture
def service():
    svc = MagicMock()
    svc.check_permission = AsyncMock(return_value=PermissionOutcome(True, None, CURRENT_VOCABULARY))
    svc.change_status = AsyncMock(return_value=None)
    svc.add_comment = AsyncMock(return_value=None)
    svc.reopen = AsyncMock(return_value=ReopenOutcome(success=True))
    svc.reopen_all = AsyncMock(return_value=ReopenOutcome(success=True))
    svc.check_anticipated_resolution_supported = AsyncMock(return_value=True)
    svc.resync_scope = AsyncMock(return_value=False)
    svc.record_local_only = AsyncMock(side_effect=lambda scope_id, findings: findings)
    svc.replace_server_findings = AsyncMock(return_value=Binding("conn", "acme-backend"))
    return svc


@pytest.fixture
def client(service):
    # no context manager: the lifespan would load the real configuration
    app.dependency_overrides[get_settings] = lambda: Settings(api_key="secret")
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz_needs_no_key(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.text == "ok"


def test_missing_key_is_rejected(client, service):
    response = client.post("/issues/permission", json={"connection_id": "c", "issue_key": "k"})
    assert response.status_code == 401
    service.check_permission.assert_not_awaited()


def test_unconfigured_key_is_rejected(client):
    app.dependency_overrides[get_settings] = lambda: Settings(api_key=None)
    response = client.post("/issues/permission", json={"connection_id": "c", "issue_key": "k"}, headers=HEADERS)
    assert response.status_code == 503


def test_check_permission(client, service):
    response = client.post(
        "/issues/permission", json={"connection_id": "conn", "issue_key": "AYx"}, headers=HEADERS
    )
    assert response.status_code == 200
    body = response.json()
    assert body["permitted"] is True
    assert body["reason"] is None
    assert [s["name"] for s in body["allowed_statuses"]] == ["ACCEPT", "FALSE_POSITIVE"]
    assert body["allowed_statuses"][0]["title"] == "Accept"
    service.check_permission.assert_awaited_once_with("conn", "AYx")


def test_unknown_connection_maps_to_404(client, service):
    service.check_permission.side_effect = UnknownConnection("conn")
    response = client.post(
        "/issues/permission", json={"connection_id": "conn", "issue_key": "AYx"}, headers=HEADERS
    )
    assert response.status_code == 404
    assert response.json() == {
        "detail": "Connection with ID 'conn' does not exist",
        "kind": "unknown_connection",
    }


def test_finding_not_found_maps_to_404(client, service):
    service.check_permission.side_effect = FindingNotFound("AYx")
    response = client.post(
        "/issues/permission", json={"connection_id": "conn", "issue_key": "AYx"}, headers=HEADERS
    )
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


def test_change_status_accepts_name_and_wire_code(client, service):
    for value in ("WONT_FIX", "wontfix"):
        response = client.post(
            "/issues/status",
            json={"scope_id": "scope", "issue_key": "AYx", "new_status": value},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True}
    assert service.change_status.await_count == 2
    service.change_status.assert_awaited_with("scope", "AYx", ResolutionStatus.WONT_FIX, False)


def test_change_status_rejects_unknown_status(client, service):
    response = client.post(
        "/issues/status",
        json={"scope_id": "scope", "issue_key": "AYx", "new_status": "confirm"},
        headers=HEADERS,
    )
    assert response.status_code == 422
    service.change_status.assert_not_awaited()


def test_failed_status_change_maps_to_502(client, service):
    service.change_status.side_effect = StatusChangeFailed("Could not change status", TransportError("boom"))
    response = client.post(
        "/issues/status",
        json={"scope_id": "scope", "issue_key": "AYx", "new_status": "ACCEPT"},
        headers=HEADERS,
    )
    assert response.status_code == 502
    assert response.json() == {"detail": "Could not change status: boom", "kind": "status_change_failed"}


def test_add_comment_requires_text(client, service):
    response = client.post(
        "/issues/comment", json={"scope_id": "scope", "issue_key": "AYx", "text": ""}, headers=HEADERS
    )
    assert response.status_code == 422
    service.add_comment.assert_not_awaited()

    response = client.post(
        "/issues/comment", json={"scope_id": "scope", "issue_key": "AYx", "text": "ok"}, headers=HEADERS
    )
    assert response.status_code == 200
    service.add_comment.assert_awaited_once_with("scope", "AYx", "ok")


def test_reopen_routes(client, service):
    service.reopen.return_value = ReopenOutcome(success=False)
    response = client.post("/issues/reopen", json={"scope_id": "scope", "issue_id": "AYx"}, headers=HEADERS)
    assert response.json() == {"success": False}
    service.reopen.assert_awaited_once_with("scope", "AYx", False)

    response = client.post(
        "/issues/reopen-file", json={"scope_id": "scope", "file_path": "src/app.py"}, headers=HEADERS
    )
    assert response.json() == {"success": True}
    service.reopen_all.assert_awaited_once_with("scope", "src/app.py")


def test_scope_routes_accept_slashes_in_scope_id(client, service):
    response = client.get("/scopes/backend/api/anticipated-support", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"supported": True}
    service.check_anticipated_resolution_supported.assert_awaited_once_with("backend/api")

    response = client.post("/scopes/backend/resync", headers=HEADERS)
    assert response.json() == {"resynced": False}
    service.resync_scope.assert_awaited_once_with("backend")


def test_record_local_only_findings(client, service):
    known = "0b7a3c1e-5d1f-4a53-9f0e-4f1a2b3c4d5e"
    response = client.post(
        "/scopes/backend/api/local-only-findings",
        json={
            "findings": [
                {"id": known, "file_path": "src/app.py", "rule_key": "python:S1481", "line": 3},
                {"file_path": "src/app.py", "rule_key": "python:S1172"},
            ]
        },
        headers=HEADERS,
    )
    assert response.status_code == 200
    ids = response.json()["ids"]
    assert ids[0] == known
    assert len(ids) == 2 and ids[1] != known

    scope_id, findings = service.record_local_only.await_args.args
    assert scope_id == "backend/api"
    assert [f.scope_id for f in findings] == ["backend/api", "backend/api"]
    assert findings[0].line == 3


def test_record_local_only_rejects_missing_rule(client, service):
    response = client.post(
        "/scopes/scope/local-only-findings", json={"findings": [{"file_path": "src/app.py"}]}, headers=HEADERS
    )
    assert response.status_code == 422
    service.record_local_only.assert_not_awaited()


def test_replace_server_findings(client, service):
    response = client.put(
        "/scopes/scope/server-findings",
        json={"findings": [{"key": "AYx", "rule_key": "java:S100"}, {"key": "T1", "rule_key": "java:S2076", "taint": True}]},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json() == {"connection_id": "conn", "project_key": "acme-backend", "count": 2}
    scope_id, metas = service.replace_server_findings.await_args.args
    assert scope_id == "scope"
    assert [(m.key, m.taint) for m in metas] == [("AYx", False), ("T1", True)]


def test_replace_server_findings_of_unbound_scope_maps_to_404(client, service):
    service.replace_server_findings.side_effect = UnknownBinding("unbound")
    response = client.put("/scopes/unbound/server-findings", json={"findings": []}, headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["kind"] == "unknown_binding"


@pytest.fixture
def live_client(harness):
    app.dependency_overrides[get_settings] = lambda: Settings(api_key="secret")
    app.dependency_overrides[get_service] = lambda: harness.service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_ingested_findings_can_be_resolved_and_reopened(live_client, harness):
    harness.set_server_version("10.4")

    response = live_client.put(
        f"/scopes/{SCOPE_ID}/server-findings",
        json={"findings": [{"key": "AYx", "rule_key": "java:S100"}]},
        headers=HEADERS,
    )
    assert response.json() == {"connection_id": CONNECTION_ID, "project_key": PROJECT_KEY, "count": 1}

    response = live_client.post(
        f"/scopes/{SCOPE_ID}/local-only-findings",
        json={"findings": [{"file_path": "src/app.py", "rule_key": "python:S1481", "line": 12}]},
        headers=HEADERS,
    )
    (local_id,) = response.json()["ids"]

    for key in ("AYx", local_id):
        response = live_client.post(
            "/issues/status",
            json={"scope_id": SCOPE_ID, "issue_key": key, "new_status": "ACCEPT"},
            headers=HEADERS,
        )
        assert response.status_code == 200

    assert harness.server_findings().get("AYx", False).resolved is True
    harness.api.issues.change_status.assert_awaited_once()
    _, pushed = harness.pushed()
    assert [str(f.id) for f in pushed] == [local_id]

    for key in ("AYx", local_id):
        response = live_client.post("/issues/reopen", json={"scope_id": SCOPE_ID, "issue_id": key}, headers=HEADERS)
        assert response.json() == {"success": True}

    assert harness.server_findings().get("AYx", False).resolved is False
    assert harness.storage.local_only().load_all(SCOPE_ID) == []
    _, pushed = harness.pushed()
    assert pushed == []
