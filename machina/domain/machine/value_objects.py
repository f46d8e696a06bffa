"""Machine value objects."""
from enum import Enum


class MachineStatus(str, Enum):
    """Observed or intended lifecycle status of a machine."""
    RUNNING = "running"
    STOPPED = "stopped"
    PROVISIONING = "provisioning"
    PENDING = "pending"
    STOPPING = "stopping"
    REBOOTING = "rebooting"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    ERROR = "error"

    @property
    def is_transitional(self) -> bool:
        return self in (
            MachineStatus.PROVISIONING,
            MachineStatus.PENDING,
            MachineStatus.STOPPING,
            MachineStatus.REBOOTING,
            MachineStatus.TERMINATING,
        )


class TerraformStateStatus(str, Enum):
    IN_SYNC = "in_sync"
    DRIFTED = "drifted"
    PENDING = "pending"
    UNKNOWN = "unknown"


class ProviderType(str, Enum):
    DIGITALOCEAN = "digitalocean"
    AWS = "aws"
    GCP = "gcp"
    HETZNER = "hetzner"
    BAREMETAL = "baremetal"


class ProvisioningMethod(str, Enum):
    PROVIDER_API = "provider_api"
    BYO_SERVER = "byo_server"
    UNKNOWN = "unknown"
