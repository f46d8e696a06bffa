"""Provider adapter contract.

One adapter per provider type turns provider-neutral calls into provider API
calls and Terraform variables, and maps provider-reported states onto
:class:`MachineStatus` through a single deterministic table.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from machina.domain.core.exceptions import UnsupportedProviderError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.value_objects import MachineStatus, ProviderType

CATALOG_FILE = Path(__file__).resolve().parents[1] / "catalog.yaml"


@lru_cache(maxsize=1)
def load_catalog() -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
    with open(CATALOG_FILE, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True)
class CredentialCheck:
    """Outcome of a credential validation. Adapters never persist it."""
    valid: bool
    message: str = ""
    account: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceDescription:
    """What the provider currently reports about one resource."""
    resource_id: str
    status: MachineStatus
    raw_status: str
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    region: Optional[str] = None
    size: Optional[str] = None


@dataclass(frozen=True)
class ProvisionRequest:
    name: str
    region: str
    size: str
    image: str
    machine_id: str
    tags: Dict[str, str] = field(default_factory=dict)
    ssh_keys: List[str] = field(default_factory=list)
    user_data: Optional[str] = None


class ProviderAdapter(ABC):
    """Base class for provider adapters."""

    provider_type: ProviderType
    terraform_module: Optional[str] = None
    STATUS_MAP: Mapping[str, MachineStatus] = {}

    def map_status(self, raw_status: Optional[str]) -> MachineStatus:
        """Map a provider state to a machine status. Unknown states map to ``error``."""
        if raw_status is None:
            return MachineStatus.ERROR
        return self.STATUS_MAP.get(str(raw_status).lower(), MachineStatus.ERROR)

    def _catalog(self, section: str) -> List[Dict[str, Any]]:
        return list(load_catalog().get(self.provider_type.value, {}).get(section, []))

    def list_regions(self, credentials: Any = None) -> List[Dict[str, Any]]:
        return self._catalog("regions")

    def list_sizes(self, credentials: Any = None) -> List[Dict[str, Any]]:
        return self._catalog("sizes")

    def list_images(self, credentials: Any = None) -> List[Dict[str, Any]]:
        return self._catalog("images")

    @abstractmethod
    def validate_credentials(self, credentials: Any) -> CredentialCheck:
        """Check credentials against the provider without side effects."""

    @abstractmethod
    def create_resource(self, credentials: Any, request: ProvisionRequest) -> ResourceDescription:
        """Create a resource directly through the provider API."""

    @abstractmethod
    def destroy_resource(self, credentials: Any, resource_id: str, region: Optional[str] = None) -> None:
        """Destroy a resource directly through the provider API."""

    @abstractmethod
    def describe_resource(self, credentials: Any, resource_id: str,
                          region: Optional[str] = None) -> Optional[ResourceDescription]:
        """Current state of a resource, or None if it no longer exists."""

    @abstractmethod
    def reboot_resource(self, credentials: Any, resource_id: str, region: Optional[str] = None) -> None:
        """Request a reboot of a running resource."""

    def terraform_variables(self, machine: Machine, credentials: Any,
                            parameters: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """
        Terraform variables for the provider module.

        Returns:
            The variable mapping and the names of variables holding secrets
        """
        raise UnsupportedProviderError(self.provider_type.value, "terraform provisioning")

    def parse_outputs(self, outputs: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize module outputs into machine observation fields."""
        resource_id = outputs.get("resource_id")
        return {
            "provider_resource_id": str(resource_id) if resource_id not in (None, "") else None,
            "public_ip": outputs.get("public_ip") or None,
            "private_ip": outputs.get("private_ip") or None,
            "actual_status": self.map_status(outputs.get("status")),
        }


class UnsupportedProviderAdapter(ProviderAdapter):
    """Adapter for provider types that are declared but not implemented."""

    def __init__(self, provider_type: ProviderType):
        self.provider_type = provider_type

    def validate_credentials(self, credentials: Any) -> CredentialCheck:
        raise UnsupportedProviderError(self.provider_type.value, "credential validation")

    def create_resource(self, credentials: Any, request: ProvisionRequest) -> ResourceDescription:
        raise UnsupportedProviderError(self.provider_type.value, "resource creation")

    def destroy_resource(self, credentials: Any, resource_id: str, region: Optional[str] = None) -> None:
        raise UnsupportedProviderError(self.provider_type.value, "resource destruction")

    def describe_resource(self, credentials: Any, resource_id: str,
                          region: Optional[str] = None) -> Optional[ResourceDescription]:
        raise UnsupportedProviderError(self.provider_type.value, "resource description")

    def reboot_resource(self, credentials: Any, resource_id: str, region: Optional[str] = None) -> None:
        raise UnsupportedProviderError(self.provider_type.value, "reboot")
