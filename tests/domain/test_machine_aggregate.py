from machina.domain.machine.machine_aggregate import Machine, workspace_name_for
from machina.domain.machine.value_objects import MachineStatus, ProviderType, TerraformStateStatus


def _machine():
    return Machine.create(
        name="web-1",
        provider=ProviderType.DIGITALOCEAN,
        provider_account_id="pa_digitalocean_1",
        region="nyc3",
        size="s-1vcpu-1gb",
        image="ubuntu-22-04-x64",
        tags={"env": "test"},
    )


def test_create_assigns_workspace_and_pending_status():
    machine = _machine()

    assert machine.machine_id.startswith("mach_")
    assert machine.terraform_workspace == workspace_name_for(machine.machine_id)
    assert machine.actual_status == MachineStatus.PENDING
    assert machine.desired_status == MachineStatus.RUNNING


def test_request_status_never_touches_actual_status():
    machine = _machine()

    machine.request_status(MachineStatus.TERMINATED)

    assert machine.desired_status == MachineStatus.TERMINATED
    assert machine.actual_status == MachineStatus.PENDING


def test_record_observation_reports_changes_once():
    # Arrange
    machine = _machine()

    # Act
    first = machine.record_observation(MachineStatus.RUNNING, TerraformStateStatus.IN_SYNC,
                                       public_ip="203.0.113.10", provider_resource_id="42")
    second = machine.record_observation(MachineStatus.RUNNING, TerraformStateStatus.IN_SYNC,
                                        public_ip="203.0.113.10", provider_resource_id="42")

    # Assert
    assert first is True
    assert second is False
    assert len(machine.events) == 1
    assert machine.events[0].old_state == "pending"
    assert machine.events[0].new_state == "running"


def test_none_values_keep_previous_addresses():
    machine = _machine()
    machine.record_observation(MachineStatus.RUNNING, public_ip="203.0.113.10")

    machine.record_observation(MachineStatus.STOPPED)

    assert machine.public_ip == "203.0.113.10"


def test_mark_deleted_soft_deletes():
    machine = _machine()

    machine.mark_deleted()

    assert machine.is_deleted
    assert machine.actual_status == MachineStatus.TERMINATED
    assert machine.terraform_state_status == TerraformStateStatus.IN_SYNC


def test_mark_unknown_keeps_actual_status():
    machine = _machine()
    machine.record_observation(MachineStatus.RUNNING, TerraformStateStatus.IN_SYNC)

    machine.mark_unknown()

    assert machine.actual_status == MachineStatus.RUNNING
    assert machine.terraform_state_status == TerraformStateStatus.UNKNOWN


def test_dict_form_carries_tags():
    machine = _machine()

    restored = Machine.from_dict(machine.to_dict())

    assert restored.tags.to_dict() == {"env": "test"}
    assert restored.provider == ProviderType.DIGITALOCEAN
