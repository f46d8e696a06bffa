import threading

import pytest

from machina.domain.core.exceptions import InvalidStateError, UnsupportedProviderError, ValidationError
from machina.domain.deployment.value_objects import DeploymentState, DeploymentType
from machina.domain.machine.exceptions import MachineNotFoundError
from machina.domain.machine.value_objects import MachineStatus


def test_create_machine_starts_pending(app, create_machine):
    # Act
    machine, deployment = create_machine(tags={"env": "prod"}, initiated_by="alice")

    # Assert
    assert machine.actual_status == MachineStatus.PENDING
    assert machine.desired_status == MachineStatus.RUNNING
    assert machine.terraform_workspace == f"machine-{machine.machine_id}"
    assert deployment.type == DeploymentType.CREATE
    assert deployment.state == DeploymentState.QUEUED
    assert deployment.initiated_by == "alice"
    assert app.machine_service.get_machine(machine.machine_id).tags.to_dict() == {"env": "prod"}


def test_create_machine_requires_fields(app, account):
    with pytest.raises(ValidationError) as exc_info:
        app.machine_service.create_machine(name="", provider_account_id=account.provider_account_id,
                                           region="nyc3", size="", image="ubuntu-22-04-x64")

    assert exc_info.value.details["missing"] == ["name", "size"]
    assert app.machine_service.list_machines() == []


def test_create_machine_on_provider_without_module(app):
    account = app.provider_service.create_account("hetzner", "Lab", {"api_token": "h" * 64})

    with pytest.raises(UnsupportedProviderError) as exc_info:
        app.machine_service.create_machine(name="web-1", provider_account_id=account.provider_account_id,
                                           region="fsn1", size="cx11", image="ubuntu-22.04")

    assert exc_info.value.code == "UNSUPPORTED_PROVIDER"


def test_reboot_requires_running_machine(app, create_machine):
    machine, _ = create_machine()

    with pytest.raises(InvalidStateError):
        app.machine_service.reboot_machine(machine.machine_id)


def test_reboot_submits_deployment(app, running_machine):
    deployment = app.machine_service.reboot_machine(running_machine.machine_id, "bob")

    assert deployment.type == DeploymentType.REBOOT
    assert deployment.initiated_by == "bob"


def test_destroy_sets_desired_status_only(app, running_machine):
    # Act
    deployment = app.machine_service.destroy_machine(running_machine.machine_id)

    # Assert
    machine = app.machine_service.get_machine(running_machine.machine_id)
    assert deployment.type == DeploymentType.DESTROY
    assert machine.desired_status == MachineStatus.TERMINATED
    assert machine.actual_status == MachineStatus.RUNNING


def test_destroy_already_deleted_machine_is_rejected(app, running_machine, wait_for):
    # Arrange
    deployment = app.machine_service.destroy_machine(running_machine.machine_id)
    worker = threading.Thread(target=app.scheduler.run_pending)
    worker.start()
    assert wait_for(lambda: app.orchestrator.get(deployment.deployment_id).state
                    == DeploymentState.AWAITING_APPROVAL)
    app.orchestrator.approve(deployment.deployment_id, "alice")
    worker.join(10)

    # Act / Assert
    with pytest.raises(InvalidStateError):
        app.machine_service.destroy_machine(running_machine.machine_id)


def test_get_unknown_machine(app):
    with pytest.raises(MachineNotFoundError):
        app.machine_service.get_machine("mach_missing")


def test_list_machines_filters(app, create_machine):
    # Arrange
    web, _ = create_machine("web-1")
    db, _ = create_machine("db-1", region="ams3")

    # Act / Assert
    assert {m.machine_id for m in app.machine_service.list_machines()} == {web.machine_id, db.machine_id}
    assert [m.machine_id for m in app.machine_service.list_machines(region="ams3")] == [db.machine_id]
    assert [m.machine_id for m in app.machine_service.list_machines(search="WEB")] == [web.machine_id]
    assert app.machine_service.list_machines(status="running") == []
    assert app.machine_service.list_machines(provider="aws") == []
