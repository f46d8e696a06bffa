"""Machine bounded context."""

from .machine_aggregate import Machine, workspace_name_for
from .value_objects import MachineStatus, TerraformStateStatus, ProviderType, ProvisioningMethod
from .exceptions import MachineNotFoundError

__all__ = [
    "Machine",
    "workspace_name_for",
    "MachineStatus",
    "TerraformStateStatus",
    "ProviderType",
    "ProvisioningMethod",
    "MachineNotFoundError",
]
