import pytest

from machina.domain.core.exceptions import InvalidStateError, InvalidStateTransitionError
from machina.domain.deployment.deployment_aggregate import Deployment
from machina.domain.deployment.value_objects import DeploymentState, DeploymentType, PlanSummary


@pytest.fixture
def deployment():
    return Deployment.create(DeploymentType.CREATE, "mach_1", {"name": "web-1"}, "alice", "machine-mach_1")


def test_create_starts_queued(deployment):
    assert deployment.state == DeploymentState.QUEUED
    assert deployment.deployment_id.startswith("deploy_")
    assert deployment.is_active
    assert deployment.initiated_by == "alice"


def test_happy_path_sets_timestamps(deployment):
    # Act
    deployment.update_state(DeploymentState.PLANNING)
    deployment.update_state(DeploymentState.AWAITING_APPROVAL, "Plan destroys 1 resource(s)")
    deployment.update_state(DeploymentState.APPLYING, "Plan approved by bob")
    deployment.succeed({"resource_id": "123"})

    # Assert
    assert deployment.state == DeploymentState.SUCCEEDED
    assert deployment.started_at is not None
    assert deployment.approval_requested_at is not None
    assert deployment.finished_at is not None
    assert deployment.outputs == {"resource_id": "123"}
    assert [e.new_state for e in deployment.events] == [
        "planning", "awaiting_approval", "applying", "succeeded"
    ]


def test_queued_cannot_jump_to_applying(deployment):
    with pytest.raises(InvalidStateTransitionError):
        deployment.update_state(DeploymentState.APPLYING)


def test_terminal_deployment_is_immutable(deployment):
    # Arrange
    deployment.cancel("Cancelled by alice")

    # Act & Assert
    with pytest.raises(InvalidStateError):
        deployment.update_state(DeploymentState.PLANNING)
    with pytest.raises(InvalidStateError):
        deployment.record_plan(PlanSummary())
    with pytest.raises(InvalidStateError):
        deployment.request_cancel()


def test_fail_records_error_message(deployment):
    deployment.update_state(DeploymentState.PLANNING)

    deployment.fail("terraform plan exited with code 1")

    assert deployment.state == DeploymentState.FAILED
    assert deployment.error_message == "terraform plan exited with code 1"


def test_request_cancel_only_sets_flag(deployment):
    deployment.update_state(DeploymentState.PLANNING)

    deployment.request_cancel()

    assert deployment.cancel_requested
    assert deployment.state == DeploymentState.PLANNING


def test_serialized_form_restores_state(deployment):
    # Arrange
    deployment.update_state(DeploymentState.PLANNING)
    deployment.record_plan(PlanSummary(2, 1, 0), "plan text")
    deployment.update_state(DeploymentState.AWAITING_APPROVAL)

    # Act
    restored = Deployment.from_dict(deployment.to_dict())

    # Assert
    assert restored.state == DeploymentState.AWAITING_APPROVAL
    assert restored.plan_summary.resources_to_add == 2
    assert restored.approval_requested_at == deployment.approval_requested_at
    assert restored.terraform_workspace == "machine-mach_1"
