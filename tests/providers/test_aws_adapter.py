from unittest.mock import Mock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from machina.domain.core.exceptions import ProviderError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.value_objects import MachineStatus, ProviderType
from machina.domain.provider.credentials import AWSCredentials
from machina.providers.aws.adapter import AWSAdapter
from machina.providers.base.adapter import ProvisionRequest


@pytest.fixture
def adapter():
    return AWSAdapter(retry_attempts=1)


@pytest.fixture
def credentials():
    return AWSCredentials(access_key_id="AKIAEXAMPLE", secret_access_key="example-secret", region="us-east-1")


def _ami():
    return boto3.client("ec2", region_name="us-east-1").describe_images()["Images"][0]["ImageId"]


def _client_error(code, operation="GetCallerIdentity", status=403):
    return ClientError({"Error": {"Code": code, "Message": code},
                        "ResponseMetadata": {"HTTPStatusCode": status}}, operation)


@mock_aws
def test_validate_credentials_returns_identity(adapter, credentials):
    check = adapter.validate_credentials(credentials)

    assert check.valid
    assert check.account["account"] == "123456789012"


def test_rejected_credentials_are_an_invalid_check(adapter, credentials, monkeypatch):
    # Arrange
    client = Mock()
    client.get_caller_identity.side_effect = _client_error("InvalidClientTokenId")
    monkeypatch.setattr(adapter, "_client", Mock(return_value=client))

    # Act
    check = adapter.validate_credentials(credentials)

    # Assert
    assert not check.valid
    assert "InvalidClientTokenId" in check.message


def test_other_client_errors_raise_provider_error(adapter, credentials, monkeypatch):
    client = Mock()
    client.get_caller_identity.side_effect = _client_error("Throttling", status=400)
    monkeypatch.setattr(adapter, "_client", Mock(return_value=client))

    with pytest.raises(ProviderError) as exc_info:
        adapter.validate_credentials(credentials)

    assert exc_info.value.status_code == 400


@mock_aws
def test_instance_lifecycle(adapter, credentials):
    # Arrange
    request = ProvisionRequest(name="web-1", region="us-east-1", size="t3.micro", image=_ami(),
                               machine_id="mach_1", tags={"env": "prod"})

    # Act
    created = adapter.create_resource(credentials, request)
    described = adapter.describe_resource(credentials, created.resource_id)
    adapter.reboot_resource(credentials, created.resource_id)
    adapter.destroy_resource(credentials, created.resource_id)
    terminated = adapter.describe_resource(credentials, created.resource_id)

    # Assert
    assert created.resource_id.startswith("i-")
    assert described.status == MachineStatus.RUNNING
    assert described.size == "t3.micro"
    assert described.private_ip
    assert terminated.status == MachineStatus.TERMINATED
    tags = boto3.client("ec2", region_name="us-east-1").describe_tags(
        Filters=[{"Name": "resource-id", "Values": [created.resource_id]}]
    )["Tags"]
    assert {t["Key"]: t["Value"] for t in tags}["machine_id"] == "mach_1"


@mock_aws
def test_describe_unknown_instance_returns_none(adapter, credentials):
    assert adapter.describe_resource(credentials, "i-0123456789abcdef0") is None


def test_status_map_covers_ec2_states(adapter):
    assert adapter.map_status("shutting-down") == MachineStatus.TERMINATING
    assert adapter.map_status("stopping") == MachineStatus.STOPPING
    assert adapter.map_status("hibernating") == MachineStatus.ERROR


def test_terraform_variables_mark_secrets_sensitive(adapter, credentials):
    machine = Machine.create("web-1", ProviderType.AWS, "prov_1", "eu-west-1", "t3.micro", "ami-12345678")

    variables, sensitive = adapter.terraform_variables(machine, credentials, {"key_name": "deploy"})

    assert variables["aws_secret_access_key"] == "example-secret"
    assert variables["aws_session_token"] == ""
    assert variables["region"] == "eu-west-1"
    assert variables["key_name"] == "deploy"
    assert set(sensitive) == {"aws_secret_access_key", "aws_session_token"}
