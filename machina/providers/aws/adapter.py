"""AWS provider adapter backed by boto3."""
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from machina.domain.core.exceptions import ProviderError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.value_objects import MachineStatus, ProviderType
from machina.domain.provider.credentials import AWSCredentials
from machina.infrastructure.logging.logger import get_logger
from machina.providers.base.adapter import (
    CredentialCheck,
    ProviderAdapter,
    ProvisionRequest,
    ResourceDescription,
)

INVALID_CREDENTIAL_CODES = frozenset({
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
    "ExpiredToken",
    "AuthFailure",
    "AccessDenied",
})
NOT_FOUND_CODES = frozenset({"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"})


class AWSAdapter(ProviderAdapter):
    """
    EC2 adapter.

    Clients are created per call from the account's own credentials; nothing
    is read from the ambient AWS profile.
    """

    provider_type = ProviderType.AWS
    terraform_module = "aws"
    STATUS_MAP = {
        "pending": MachineStatus.PENDING,
        "running": MachineStatus.RUNNING,
        "stopping": MachineStatus.STOPPING,
        "stopped": MachineStatus.STOPPED,
        "shutting-down": MachineStatus.TERMINATING,
        "terminated": MachineStatus.TERMINATED,
    }

    def __init__(self, retry_attempts: int = 3, connect_timeout_ms: int = 1000):
        self._retry_attempts = retry_attempts
        self._connect_timeout = connect_timeout_ms / 1000
        self._logger = get_logger(__name__)

    def _client(self, service: str, credentials: AWSCredentials, region: Optional[str] = None):
        region_name = region or credentials.region
        config = Config(
            region_name=region_name,
            retries={"max_attempts": self._retry_attempts, "mode": "standard"},
            connect_timeout=self._connect_timeout,
        )
        session = boto3.session.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key.get_secret_value(),
            aws_session_token=(credentials.session_token.get_secret_value()
                               if credentials.session_token else None),
            region_name=region_name,
        )
        return session.client(service, config=config)

    @staticmethod
    def _error(operation: str, error: Exception) -> ProviderError:
        if isinstance(error, ClientError):
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = error.response.get("Error", {}).get("Code", "Unknown")
            return ProviderError("AWS", f"{operation} failed: {code}", status)
        return ProviderError("AWS", f"{operation} failed: {type(error).__name__}")

    def validate_credentials(self, credentials: AWSCredentials) -> CredentialCheck:
        try:
            identity = self._client("sts", credentials).get_caller_identity()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in INVALID_CREDENTIAL_CODES:
                return CredentialCheck(valid=False, message=f"AWS rejected the credentials: {code}")
            raise self._error("GetCallerIdentity", e)
        except BotoCoreError as e:
            raise self._error("GetCallerIdentity", e)
        return CredentialCheck(
            valid=True,
            message="AWS credentials are valid",
            account={"account": identity.get("Account"), "arn": identity.get("Arn")},
        )

    def list_regions(self, credentials: Optional[AWSCredentials] = None) -> List[Dict[str, Any]]:
        if credentials is None:
            return super().list_regions()
        try:
            response = self._client("ec2", credentials).describe_regions()
        except (ClientError, BotoCoreError) as e:
            raise self._error("DescribeRegions", e)
        return sorted(
            ({"slug": r["RegionName"], "name": r["RegionName"]} for r in response.get("Regions", [])),
            key=lambda r: r["slug"],
        )

    def _describe(self, instance: Dict[str, Any], region: Optional[str]) -> ResourceDescription:
        raw_status = instance.get("State", {}).get("Name", "")
        return ResourceDescription(
            resource_id=instance["InstanceId"],
            status=self.map_status(raw_status),
            raw_status=raw_status,
            public_ip=instance.get("PublicIpAddress"),
            private_ip=instance.get("PrivateIpAddress"),
            region=region,
            size=instance.get("InstanceType"),
        )

    def create_resource(self, credentials: AWSCredentials, request: ProvisionRequest) -> ResourceDescription:
        tags = [{"Key": "Name", "Value": request.name}, {"Key": "machine_id", "Value": request.machine_id}]
        tags.extend({"Key": k, "Value": v} for k, v in request.tags.items())
        params: Dict[str, Any] = {
            "ImageId": request.image,
            "InstanceType": request.size,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [{"ResourceType": "instance", "Tags": tags}],
        }
        if request.ssh_keys:
            params["KeyName"] = request.ssh_keys[0]
        if request.user_data:
            params["UserData"] = request.user_data
        try:
            response = self._client("ec2", credentials, request.region).run_instances(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._error("RunInstances", e)
        instance = response["Instances"][0]
        self._logger.info("Instance launched", provider="aws", resource_id=instance["InstanceId"])
        return self._describe(instance, request.region)

    def destroy_resource(self, credentials: AWSCredentials, resource_id: str,
                         region: Optional[str] = None) -> None:
        try:
            self._client("ec2", credentials, region).terminate_instances(InstanceIds=[resource_id])
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                return
            raise self._error("TerminateInstances", e)
        except BotoCoreError as e:
            raise self._error("TerminateInstances", e)

    def describe_resource(self, credentials: AWSCredentials, resource_id: str,
                          region: Optional[str] = None) -> Optional[ResourceDescription]:
        try:
            response = self._client("ec2", credentials, region).describe_instances(InstanceIds=[resource_id])
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                return None
            raise self._error("DescribeInstances", e)
        except BotoCoreError as e:
            raise self._error("DescribeInstances", e)
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return self._describe(instance, region or credentials.region)
        return None

    def reboot_resource(self, credentials: AWSCredentials, resource_id: str,
                        region: Optional[str] = None) -> None:
        try:
            self._client("ec2", credentials, region).reboot_instances(InstanceIds=[resource_id])
        except (ClientError, BotoCoreError) as e:
            raise self._error("RebootInstances", e)
        self._logger.info("Reboot requested", provider="aws", resource_id=resource_id)

    def terraform_variables(self, machine: Machine, credentials: AWSCredentials,
                            parameters: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        variables = {
            "aws_access_key_id": credentials.access_key_id,
            "aws_secret_access_key": credentials.secret_access_key.get_secret_value(),
            "aws_session_token": (credentials.session_token.get_secret_value()
                                  if credentials.session_token else ""),
            "region": machine.region,
            "name": machine.name,
            "machine_id": machine.machine_id,
            "instance_type": machine.size,
            "ami": machine.image,
            "key_name": parameters.get("key_name") or "",
            "tags": machine.tags.to_dict(),
            "user_data": parameters.get("user_data") or "",
        }
        return variables, ["aws_secret_access_key", "aws_session_token"]
