# machina/application/machine/service.py
from typing import Any, Dict, List, Optional, Tuple

from machina.application.deployment.service import DeploymentOrchestrator
from machina.domain.audit.audit_event import AuditAction, AuditEvent, AuditOutcome
from machina.domain.audit.repository import AuditRepository
from machina.domain.core.exceptions import InvalidStateError, UnsupportedProviderError, ValidationError
from machina.domain.deployment.deployment_aggregate import Deployment
from machina.domain.deployment.value_objects import DeploymentType
from machina.domain.machine.exceptions import MachineNotFoundError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.repository import MachineRepository
from machina.domain.machine.value_objects import MachineStatus
from machina.domain.provider.exceptions import ProviderAccountNotFoundError
from machina.domain.provider.repository import ProviderAccountRepository
from machina.infrastructure.logging.logger import get_logger
from machina.providers.registry import ProviderRegistry

CREATE_FIELDS = ("name", "provider_account_id", "region", "size", "image")


class MachineApplicationService:
    """User-facing machine operations.

    These only ever change ``desired_status`` and submit deployments; the
    observed status is left to the orchestrator and reconciliation.
    """

    def __init__(self,
                 machine_repository: MachineRepository,
                 account_repository: ProviderAccountRepository,
                 orchestrator: DeploymentOrchestrator,
                 providers: ProviderRegistry,
                 audit_repository: AuditRepository):
        self._repository = machine_repository
        self._accounts = account_repository
        self._orchestrator = orchestrator
        self._providers = providers
        self._audit = audit_repository
        self._logger = get_logger(__name__)

    def create_machine(self,
                       name: str,
                       provider_account_id: str,
                       region: str,
                       size: str,
                       image: str,
                       tags: Optional[Dict[str, str]] = None,
                       ssh_key_ids: Optional[List[str]] = None,
                       firewall_profile_id: Optional[str] = None,
                       bootstrap_profile_id: Optional[str] = None,
                       parameters: Optional[Dict[str, Any]] = None,
                       initiated_by: str = "system") -> Tuple[Machine, Deployment]:
        """
        Allocate a machine record and submit its ``create`` deployment.

        Returns:
            The pending machine and its queued deployment
        """
        values = {"name": name, "provider_account_id": provider_account_id,
                  "region": region, "size": size, "image": image}
        missing = [key for key in CREATE_FIELDS if not values.get(key)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})

        account = self._accounts.find_by_id(provider_account_id)
        if account is None:
            raise ProviderAccountNotFoundError(provider_account_id)
        if not self._providers.get(account.provider_type).terraform_module:
            raise UnsupportedProviderError(account.provider_type.value, "machine provisioning")

        machine = Machine.create(
            name=name,
            provider=account.provider_type,
            provider_account_id=provider_account_id,
            region=region,
            size=size,
            image=image,
            tags=tags,
            ssh_key_ids=list(ssh_key_ids or []),
            firewall_profile_id=firewall_profile_id,
            bootstrap_profile_id=bootstrap_profile_id,
        )
        self._repository.save(machine)

        deployment_parameters = dict(parameters or {})
        deployment_parameters.update(values)
        deployment = self._orchestrator.submit(DeploymentType.CREATE, machine.machine_id,
                                               deployment_parameters, initiated_by)
        self._audit.record(AuditEvent.by(
            initiated_by, AuditAction.MACHINE_CREATE, AuditOutcome.PENDING, "machine", machine.machine_id,
            deployment_id=deployment.deployment_id, provider=account.provider_type.value, region=region
        ))
        self._logger.info("Machine creation submitted",
                          machine_id=machine.machine_id,
                          deployment_id=deployment.deployment_id)
        return machine, deployment

    def reboot_machine(self, machine_id: str, initiated_by: str = "system") -> Deployment:
        machine = self.get_machine(machine_id)
        if machine.actual_status != MachineStatus.RUNNING:
            raise InvalidStateError(
                f"Machine {machine_id} must be running to reboot (currently {machine.actual_status.value})",
                machine.actual_status.value
            )
        deployment = self._orchestrator.submit(DeploymentType.REBOOT, machine_id, {}, initiated_by,
                                               desired_status=MachineStatus.RUNNING)
        self._audit.record(AuditEvent.by(
            initiated_by, AuditAction.MACHINE_REBOOT, AuditOutcome.PENDING, "machine", machine_id,
            deployment_id=deployment.deployment_id
        ))
        return deployment

    def destroy_machine(self, machine_id: str, initiated_by: str = "system") -> Deployment:
        machine = self.get_machine(machine_id)
        if machine.is_deleted:
            raise InvalidStateError(f"Machine {machine_id} has already been destroyed",
                                    machine.actual_status.value)
        deployment = self._orchestrator.submit(DeploymentType.DESTROY, machine_id, {}, initiated_by,
                                               desired_status=MachineStatus.TERMINATED)
        self._audit.record(AuditEvent.by(
            initiated_by, AuditAction.MACHINE_DESTROY, AuditOutcome.PENDING, "machine", machine_id,
            deployment_id=deployment.deployment_id
        ))
        return deployment

    def get_machine(self, machine_id: str) -> Machine:
        machine = self._repository.find_by_id(machine_id)
        if machine is None:
            raise MachineNotFoundError(machine_id)
        return machine

    def list_machines(self,
                      status: Optional[str] = None,
                      provider: Optional[str] = None,
                      region: Optional[str] = None,
                      search: Optional[str] = None,
                      include_deleted: bool = False) -> List[Machine]:
        machines = self._repository.find_all() if include_deleted else self._repository.find_active()
        if status:
            machines = [m for m in machines if m.actual_status.value == status]
        if provider:
            machines = [m for m in machines if m.provider.value == provider]
        if region:
            machines = [m for m in machines if m.region == region]
        if search:
            needle = search.lower()
            machines = [
                m for m in machines
                if needle in m.name.lower()
                or needle in (m.public_ip or "")
                or needle in m.machine_id.lower()
            ]
        return machines
