import pytest
from fastapi.testclient import TestClient

from machina.api import create_fastapi_app

TOKEN = "dop_v1_" + "a1b2c3d4" * 8


@pytest.fixture
def client(app):
    return TestClient(create_fastapi_app(app.config.server, app))


@pytest.fixture
def account_id(client):
    response = client.post("/api/v1/providers/accounts", json={
        "provider_type": "digitalocean",
        "label": "Primary",
        "credentials": {"api_token": TOKEN},
    }, headers={"X-User-Id": "alice"})
    assert response.status_code == 201
    return response.json()["account"]["provider_account_id"]


def _create_machine(client, account_id, name="web-1"):
    return client.post("/api/v1/machines", json={
        "name": name,
        "provider_account_id": account_id,
        "region": "nyc3",
        "size": "s-1vcpu-1gb",
        "image": "ubuntu-22-04-x64",
    }, headers={"X-User-Id": "alice"})


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_info_lists_supported_providers(client):
    body = client.get("/info").json()

    assert body["environment"] == "testing"
    assert body["providers"] == ["digitalocean"]


def test_account_response_never_contains_credentials(client, account_id):
    response = client.get(f"/api/v1/providers/accounts/{account_id}")

    assert response.status_code == 200
    assert TOKEN not in response.text


def test_create_machine_flow(app, client, account_id):
    # Act
    response = _create_machine(client, account_id)
    app.scheduler.run_pending()

    # Assert
    assert response.status_code == 201
    body = response.json()
    assert body["machine"]["actual_status"] == "pending"
    assert body["deployment"]["state"] == "queued"
    assert body["deployment"]["initiated_by"] == "alice"

    machine = client.get(f"/api/v1/machines/{body['machine']['machine_id']}").json()["machine"]
    assert machine["actual_status"] == "running"
    assert machine["public_ip"] == "203.0.113.10"

    deployment = client.get(f"/api/v1/deployments/{body['deployment']['deployment_id']}").json()["deployment"]
    assert deployment["state"] == "succeeded"


def test_unknown_machine_returns_error_envelope(client):
    response = client.get("/api/v1/machines/mach_missing", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["request_id"] == "req-123"
    assert response.headers["X-Request-ID"] == "req-123"


def test_invalid_body_is_a_validation_error(client, account_id):
    response = client.post("/api/v1/machines", json={"name": "has space", "provider_account_id": account_id})

    assert response.status_code == 400
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    fields = {e["field"] for e in body["error"]["details"]["errors"]}
    assert "body.region" in fields


def test_second_deployment_conflicts(client, account_id):
    machine_id = _create_machine(client, account_id).json()["machine"]["machine_id"]

    response = client.post(f"/api/v1/machines/{machine_id}/destroy")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"


def test_rejected_credentials_return_400(client, fake_adapter):
    fake_adapter.valid = False

    response = client.post("/api/v1/providers/accounts", json={
        "provider_type": "digitalocean", "label": "Primary", "credentials": {"api_token": TOKEN},
    })

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_delete_account(client, account_id):
    response = client.delete(f"/api/v1/providers/accounts/{account_id}")

    assert response.status_code == 200
    assert response.json() == {"success": True, "provider_account_id": account_id}
    assert client.get(f"/api/v1/providers/accounts/{account_id}").status_code == 404


def test_cancel_queued_deployment(client, account_id):
    deployment_id = _create_machine(client, account_id).json()["deployment"]["deployment_id"]

    response = client.post(f"/api/v1/deployments/{deployment_id}/cancel")

    assert response.status_code == 200
    assert response.json()["deployment"]["state"] == "cancelled"


def test_log_stream_of_finished_deployment(app, client, account_id):
    # Arrange
    deployment_id = _create_machine(client, account_id).json()["deployment"]["deployment_id"]
    app.scheduler.run_pending()

    # Act
    response = client.get(f"/api/v1/deployments/{deployment_id}/logs", params={"stream": "true"})

    # Assert
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert "event: log" in response.text
    assert response.text.rstrip().split("\n\n")[-1].startswith("event: complete")
    assert '"state": "succeeded"' in response.text


def test_stored_logs(app, client, account_id):
    deployment_id = _create_machine(client, account_id).json()["deployment"]["deployment_id"]
    app.scheduler.run_pending()

    logs = client.get(f"/api/v1/deployments/{deployment_id}/logs").json()["logs"]

    assert logs[-1]["message"] == "Deployment succeeded"


def test_sync_endpoint(app, client, account_id, fake_adapter):
    # Arrange
    created = _create_machine(client, account_id).json()
    app.scheduler.run_pending()
    fake_adapter.set_resource("424242", "off")

    # Act
    response = client.post("/api/v1/machines/sync")

    # Assert
    assert response.status_code == 200
    assert response.json()["synced"] == 1
    machine = client.get(f"/api/v1/machines/{created['machine']['machine_id']}").json()["machine"]
    assert machine["actual_status"] == "stopped"
    assert machine["terraform_state_status"] == "drifted"


def test_audit_events_filtered_by_target_and_action(app, client, account_id):
    # Arrange
    machine_id = _create_machine(client, account_id).json()["machine"]["machine_id"]
    app.scheduler.run_pending()

    # Act
    response = client.get("/api/v1/audit/events", params={"target_id": machine_id, "action": "machine.create"})

    # Assert
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [e["outcome"] for e in body["events"]] == ["success", "pending"]
    assert {e["actor_id"] for e in body["events"]} == {"alice"}
    assert {e["target_id"] for e in body["events"]} == {machine_id}


def test_audit_events_filter_by_actor_and_page(client, account_id):
    _create_machine(client, account_id)

    alice = client.get("/api/v1/audit/events", params={"actor_id": "alice"}).json()
    first = client.get("/api/v1/audit/events", params={"limit": 1}).json()

    assert alice["count"] >= 3
    assert first["count"] == 1
    assert first["events"][0]["event_id"] == alice["events"][0]["event_id"]


def test_audit_events_reject_unknown_action(client):
    response = client.get("/api/v1/audit/events", params={"action": "machine.explode"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
