from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from machina.domain.machine.value_objects import (
    MachineStatus,
    TerraformStateStatus,
    ProviderType,
    ProvisioningMethod
)
from machina.domain.core.common_types import (
    Tags,
    utcnow,
    generate_id,
    parse_datetime,
    format_datetime
)
from machina.domain.core.events import ResourceStateChangedEvent


def workspace_name_for(machine_id: str) -> str:
    """Deterministic Terraform workspace name for a machine."""
    return f"machine-{machine_id}"


@dataclass
class Machine:
    """Machine aggregate root.

    ``desired_status`` records what the user asked for. ``actual_status`` is
    what the provider last reported, and is only written through
    :meth:`record_observation` by the deployment state machine and the
    reconciliation engine.
    """
    machine_id: str
    name: str
    provider: ProviderType
    provider_account_id: str
    region: str
    size: str
    image: str
    desired_status: MachineStatus = MachineStatus.RUNNING
    actual_status: MachineStatus = MachineStatus.PENDING
    provider_resource_id: Optional[str] = None
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    tags: Tags = field(default_factory=Tags)
    terraform_workspace: Optional[str] = None
    terraform_state_status: TerraformStateStatus = TerraformStateStatus.PENDING
    provisioning_method: ProvisioningMethod = ProvisioningMethod.PROVIDER_API
    firewall_profile_id: Optional[str] = None
    bootstrap_profile_id: Optional[str] = None
    ssh_key_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
    version: int = field(default=0, repr=False, compare=False)
    _events: List[ResourceStateChangedEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(cls,
               name: str,
               provider: ProviderType,
               provider_account_id: str,
               region: str,
               size: str,
               image: str,
               tags: Optional[Dict[str, str]] = None,
               **kwargs: Any) -> Machine:
        """Allocate a new machine record awaiting its first create deployment."""
        machine_id = generate_id("mach", 20)
        return cls(
            machine_id=machine_id,
            name=name,
            provider=provider,
            provider_account_id=provider_account_id,
            region=region,
            size=size,
            image=image,
            tags=Tags.from_dict(tags),
            terraform_workspace=workspace_name_for(machine_id),
            **kwargs
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def events(self) -> List[ResourceStateChangedEvent]:
        return self._events.copy()

    def clear_events(self) -> None:
        self._events.clear()

    def request_status(self, desired: MachineStatus) -> None:
        """Record user intent. Never touches ``actual_status``."""
        if self.desired_status != desired:
            self.desired_status = desired
            self.updated_at = utcnow()

    def record_observation(self,
                           actual_status: MachineStatus,
                           terraform_state_status: Optional[TerraformStateStatus] = None,
                           public_ip: Optional[str] = None,
                           private_ip: Optional[str] = None,
                           provider_resource_id: Optional[str] = None,
                           reason: Optional[str] = None) -> bool:
        """
        Apply an observation of the machine's real state.

        Args:
            actual_status: Status reported by the provider
            terraform_state_status: New Terraform state status, if known
            public_ip: Observed public address (kept when None)
            private_ip: Observed private address (kept when None)
            provider_resource_id: Provider-side identifier (kept when None)
            reason: Optional reason recorded on the state change event

        Returns:
            True if any field changed
        """
        changed = False
        old_status = self.actual_status

        if actual_status != self.actual_status:
            self.actual_status = actual_status
            changed = True
        if terraform_state_status is not None and terraform_state_status != self.terraform_state_status:
            self.terraform_state_status = terraform_state_status
            changed = True
        for attr, value in (("public_ip", public_ip),
                            ("private_ip", private_ip),
                            ("provider_resource_id", provider_resource_id)):
            if value is not None and getattr(self, attr) != value:
                setattr(self, attr, value)
                changed = True

        if changed:
            self.updated_at = utcnow()
        if old_status != actual_status:
            self._events.append(
                ResourceStateChangedEvent(
                    resource_id=self.machine_id,
                    resource_type="Machine",
                    old_state=old_status.value,
                    new_state=actual_status.value,
                    details={"reason": reason} if reason else None
                )
            )
        return changed

    def mark_unknown(self) -> None:
        """Flag the Terraform state for re-verification without touching ``actual_status``."""
        if self.terraform_state_status != TerraformStateStatus.UNKNOWN:
            self.terraform_state_status = TerraformStateStatus.UNKNOWN
            self.updated_at = utcnow()

    def mark_deleted(self) -> None:
        """Soft-delete after a successful destroy deployment."""
        self.record_observation(MachineStatus.TERMINATED, TerraformStateStatus.IN_SYNC,
                                reason="Destroy deployment succeeded")
        self.deleted_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert machine to dictionary."""
        return {
            "machine_id": self.machine_id,
            "name": self.name,
            "provider": self.provider.value,
            "provider_account_id": self.provider_account_id,
            "provider_resource_id": self.provider_resource_id,
            "region": self.region,
            "size": self.size,
            "image": self.image,
            "desired_status": self.desired_status.value,
            "actual_status": self.actual_status.value,
            "public_ip": self.public_ip,
            "private_ip": self.private_ip,
            "tags": self.tags.to_dict(),
            "terraform_workspace": self.terraform_workspace,
            "terraform_state_status": self.terraform_state_status.value,
            "provisioning_method": self.provisioning_method.value,
            "firewall_profile_id": self.firewall_profile_id,
            "bootstrap_profile_id": self.bootstrap_profile_id,
            "ssh_key_ids": list(self.ssh_key_ids),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "deleted_at": format_datetime(self.deleted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Machine:
        """Create machine from dictionary."""
        return cls(
            machine_id=data["machine_id"],
            name=data["name"],
            provider=ProviderType(data["provider"]),
            provider_account_id=data["provider_account_id"],
            provider_resource_id=data.get("provider_resource_id"),
            region=data["region"],
            size=data["size"],
            image=data["image"],
            desired_status=MachineStatus(data.get("desired_status", "running")),
            actual_status=MachineStatus(data.get("actual_status", "pending")),
            public_ip=data.get("public_ip"),
            private_ip=data.get("private_ip"),
            tags=Tags.from_dict(data.get("tags")),
            terraform_workspace=data.get("terraform_workspace"),
            terraform_state_status=TerraformStateStatus(data.get("terraform_state_status", "unknown")),
            provisioning_method=ProvisioningMethod(data.get("provisioning_method", "unknown")),
            firewall_profile_id=data.get("firewall_profile_id"),
            bootstrap_profile_id=data.get("bootstrap_profile_id"),
            ssh_key_ids=data.get("ssh_key_ids", []),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
            deleted_at=parse_datetime(data.get("deleted_at")),
        )
