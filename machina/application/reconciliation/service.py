# machina/application/reconciliation/service.py
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from machina.application.provider.credentials import resolve_credentials
from machina.domain.audit.audit_event import AuditAction, AuditEvent, AuditOutcome
from machina.domain.audit.repository import AuditRepository
from machina.domain.core.exceptions import MachinaError
from machina.domain.deployment.repository import DeploymentRepository
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.repository import MachineRepository
from machina.domain.machine.value_objects import MachineStatus, TerraformStateStatus
from machina.infrastructure.exceptions import ConcurrencyError
from machina.infrastructure.locking.machine_lock import MachineLockRegistry
from machina.infrastructure.logging.logger import get_logger
from machina.infrastructure.vault.secret_store import SecretStore
from machina.providers.registry import ProviderRegistry


class SyncAction(str, Enum):
    NO_CHANGE = "no_change"
    UPDATED = "updated"
    SKIPPED_ACTIVE_DEPLOYMENT = "skipped_active_deployment"


@dataclass(frozen=True)
class SyncResult:
    machine_id: str
    name: str
    previous_status: str
    new_status: str
    action: SyncAction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine_id": self.machine_id,
            "name": self.name,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "action": self.action.value,
        }


@dataclass
class SyncSummary:
    synced: int = 0
    unchanged: int = 0
    skipped: int = 0
    results: List[SyncResult] = field(default_factory=list)

    def add(self, result: SyncResult) -> None:
        self.results.append(result)
        if result.action == SyncAction.UPDATED:
            self.synced += 1
        elif result.action == SyncAction.NO_CHANGE:
            self.unchanged += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": self.synced,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


class ReconciliationService:
    """
    Compares stored machines with what their providers report.

    Machines owned by an active deployment are left alone. A pass that
    observes nothing new writes nothing.
    """

    def __init__(self,
                 machine_repository: MachineRepository,
                 deployment_repository: DeploymentRepository,
                 audit_repository: AuditRepository,
                 secret_store: SecretStore,
                 providers: ProviderRegistry,
                 locks: MachineLockRegistry):
        self._machines = machine_repository
        self._deployments = deployment_repository
        self._audit = audit_repository
        self._secret_store = secret_store
        self._providers = providers
        self._locks = locks
        self._logger = get_logger(__name__)

    def sync(self, actor_id: str = "system") -> SyncSummary:
        """
        Reconcile every non-deleted machine.

        Raises:
            DecryptionFailedError: If account credentials cannot be decrypted
            ProviderError: If a provider call fails
        """
        summary = SyncSummary()
        credentials_cache: Dict[str, Any] = {}
        for listed in self._machines.find_active():
            # earlier provider calls can take long enough for a deployment to finish
            machine = self._machines.find_by_id(listed.machine_id)
            if machine is None or machine.is_deleted:
                continue
            summary.add(self._reconcile(machine, credentials_cache, actor_id))
        self._logger.info("Reconciliation pass finished",
                          synced=summary.synced, unchanged=summary.unchanged, skipped=summary.skipped)
        return summary

    def _is_busy(self, machine: Machine) -> bool:
        if self._locks.is_locked(machine.machine_id):
            return True
        return self._deployments.find_active_for_machine(machine.machine_id) is not None

    def _credentials(self, machine: Machine, cache: Dict[str, Any]):
        if machine.provider_account_id not in cache:
            cache[machine.provider_account_id] = resolve_credentials(
                self._secret_store, machine.provider_account_id, machine.provider.value
            )
        return cache[machine.provider_account_id]

    @staticmethod
    def _drift(machine: Machine, observed: MachineStatus) -> TerraformStateStatus:
        if observed != machine.desired_status and not observed.is_transitional:
            return TerraformStateStatus.DRIFTED
        return TerraformStateStatus.IN_SYNC

    def _reconcile(self, machine: Machine, credentials_cache: Dict[str, Any], actor_id: str) -> SyncResult:
        previous = machine.actual_status
        if self._is_busy(machine):
            return SyncResult(machine.machine_id, machine.name, previous.value, previous.value,
                              SyncAction.SKIPPED_ACTIVE_DEPLOYMENT)

        if not machine.provider_resource_id:
            if previous in (MachineStatus.PENDING, MachineStatus.PROVISIONING):
                changed = machine.record_observation(
                    MachineStatus.ERROR, TerraformStateStatus.UNKNOWN,
                    reason="No provider resource was recorded for this machine"
                )
            else:
                changed = False
        else:
            adapter = self._providers.get(machine.provider)
            credentials = self._credentials(machine, credentials_cache)
            description = adapter.describe_resource(credentials, machine.provider_resource_id, machine.region)
            if description is None:
                changed = machine.record_observation(
                    MachineStatus.TERMINATED,
                    self._drift(machine, MachineStatus.TERMINATED),
                    reason="Resource no longer exists at the provider"
                )
            else:
                changed = machine.record_observation(
                    description.status,
                    self._drift(machine, description.status),
                    public_ip=description.public_ip,
                    private_ip=description.private_ip,
                    reason=f"Provider reports {description.raw_status}"
                )

        if not changed:
            return SyncResult(machine.machine_id, machine.name, previous.value, previous.value,
                              SyncAction.NO_CHANGE)

        # A deployment may have started while the provider was being queried
        if self._locks.is_locked(machine.machine_id):
            return SyncResult(machine.machine_id, machine.name, previous.value, previous.value,
                              SyncAction.SKIPPED_ACTIVE_DEPLOYMENT)

        try:
            self._machines.save(machine)
        except ConcurrencyError:
            self._logger.info("Machine changed during reconciliation, leaving it for the next pass",
                              machine_id=machine.machine_id)
            return SyncResult(machine.machine_id, machine.name, previous.value, previous.value,
                              SyncAction.SKIPPED_ACTIVE_DEPLOYMENT)
        self._audit.record(AuditEvent.by(
            actor_id, AuditAction.MACHINE_RECONCILE, AuditOutcome.SUCCESS, "machine", machine.machine_id,
            previous_status=previous.value,
            new_status=machine.actual_status.value,
            terraform_state_status=machine.terraform_state_status.value,
        ))
        self._logger.info("Machine reconciled",
                          machine_id=machine.machine_id,
                          previous_status=previous.value,
                          new_status=machine.actual_status.value)
        return SyncResult(machine.machine_id, machine.name, previous.value, machine.actual_status.value,
                          SyncAction.UPDATED)


class ReconciliationScheduler:
    """Runs reconciliation and the approval-timeout sweep on a fixed interval."""

    def __init__(self, service: ReconciliationService, interval_seconds: int, orchestrator=None):
        self._service = service
        self._interval = interval_seconds
        self._orchestrator = orchestrator
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._logger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reconciliation", daemon=True)
        self._thread.start()
        self._logger.info("Reconciliation scheduler started", interval_seconds=self._interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> Optional[SyncSummary]:
        try:
            if self._orchestrator is not None:
                self._orchestrator.expire_stale_approvals()
            return self._service.sync()
        except MachinaError as e:
            self._logger.error("Scheduled reconciliation failed", error_code=e.code, error=e.message)
            return None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self.run_once()
