# machina/application/deployment/service.py
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from machina.application.deployment.approval import ApprovalPolicy
from machina.application.deployment.log_stream import (
    DeploymentLogStream,
    LogSubscription,
    finished_subscription,
)
from machina.application.deployment.scheduler import JobScheduler
from machina.application.deployment.service_agent import ServiceAgent, UnavailableServiceAgent
from machina.application.provider.credentials import resolve_credentials
from machina.config.schemas.app_schema import OrchestratorConfig
from machina.domain.audit.audit_event import AuditAction, AuditEvent, AuditOutcome
from machina.domain.audit.repository import AuditRepository
from machina.domain.core.common_types import utcnow
from machina.domain.core.exceptions import (
    ExecutionFailedError,
    InvalidStateError,
    MachinaError,
    UnsupportedProviderError,
    ValidationError,
)
from machina.domain.deployment.deployment_aggregate import Deployment
from machina.domain.deployment.exceptions import ActiveDeploymentConflictError, DeploymentNotFoundError
from machina.domain.deployment.repository import DeploymentLogRepository, DeploymentRepository
from machina.domain.deployment.value_objects import (
    DeploymentLog,
    DeploymentState,
    DeploymentType,
    LogLevel,
    LogSource,
    PlanSummary,
)
from machina.domain.machine.exceptions import MachineNotFoundError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.repository import MachineRepository
from machina.domain.machine.value_objects import MachineStatus, TerraformStateStatus
from machina.infrastructure.exceptions import ConcurrencyError
from machina.infrastructure.locking.machine_lock import MachineLockRegistry
from machina.infrastructure.logging.logger import get_logger
from machina.infrastructure.terraform.executor import TerraformExecutor
from machina.infrastructure.vault.secret_store import SecretStore
from machina.providers.registry import ProviderRegistry

REQUIRED_PARAMETERS = {
    DeploymentType.CREATE: ("name", "provider_account_id", "region", "size", "image"),
    DeploymentType.RESTART_SERVICE: ("service_name",),
}

MACHINE_AUDIT_ACTIONS = {
    DeploymentType.CREATE: AuditAction.MACHINE_CREATE,
    DeploymentType.DESTROY: AuditAction.MACHINE_DESTROY,
    DeploymentType.REBOOT: AuditAction.MACHINE_REBOOT,
}

WORKSPACE_PREFIX = "machine-"

MACHINE_WRITE_ATTEMPTS = 3


class _Cancelled(Exception):
    """Stops a running job once cancellation has been observed."""

    def __init__(self, message: str, recorded: bool = False):
        super().__init__(message)
        self.message = message
        self.recorded = recorded


@dataclass
class RecoveryReport:
    failed_deployments: List[str] = field(default_factory=list)
    cleaned_workspaces: List[str] = field(default_factory=list)
    purged_workspaces: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failed_deployments": list(self.failed_deployments),
            "cleaned_workspaces": list(self.cleaned_workspaces),
            "purged_workspaces": list(self.purged_workspaces),
        }


class DeploymentOrchestrator:
    """
    Deployment state machine.

    Owns every Deployment record. ``submit`` takes the machine lock and
    queues a job; the job plans, waits for approval when the policy asks for
    it, applies, and writes the outcome back to the machine. Each state
    change is persisted under the transition lock before anything else can
    observe it.
    """

    def __init__(self,
                 deployment_repository: DeploymentRepository,
                 log_repository: DeploymentLogRepository,
                 machine_repository: MachineRepository,
                 audit_repository: AuditRepository,
                 secret_store: SecretStore,
                 providers: ProviderRegistry,
                 executor: TerraformExecutor,
                 locks: MachineLockRegistry,
                 scheduler: JobScheduler,
                 config: Optional[OrchestratorConfig] = None,
                 service_agent: Optional[ServiceAgent] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self._deployments = deployment_repository
        self._log_repository = log_repository
        self._machines = machine_repository
        self._audit = audit_repository
        self._secret_store = secret_store
        self._providers = providers
        self._executor = executor
        self._locks = locks
        self._scheduler = scheduler
        self._config = config or OrchestratorConfig()
        self._policy = ApprovalPolicy.from_config(self._config)
        self._agent = service_agent or UnavailableServiceAgent()
        self._sleep = sleep
        self._transition_lock = threading.RLock()
        self._streams_lock = threading.Lock()
        self._streams: Dict[str, DeploymentLogStream] = {}
        self._approvals: Dict[str, threading.Event] = {}
        self._logger = get_logger(__name__)

    @property
    def locks(self) -> MachineLockRegistry:
        return self._locks

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def submit(self,
               deployment_type,
               machine_id: str,
               parameters: Optional[Dict[str, Any]] = None,
               initiated_by: str = "system",
               desired_status: Optional[MachineStatus] = None) -> Deployment:
        """
        Create a deployment for a machine and queue its job.

        Args:
            deployment_type: A :class:`DeploymentType` or its value
            machine_id: Target machine
            parameters: Type-specific parameters
            initiated_by: Acting user id
            desired_status: User intent recorded on the machine once the
                deployment is accepted

        Raises:
            ValidationError: Unknown type or missing required parameters
            MachineNotFoundError: No such machine
            InvalidStateError: The machine cannot take this deployment
            ActiveDeploymentConflictError: Another deployment is active
        """
        try:
            deployment_type = DeploymentType(deployment_type)
        except ValueError:
            raise ValidationError(f"Unknown deployment type: {deployment_type}",
                                  {"allowed": [t.value for t in DeploymentType]})
        parameters = dict(parameters or {})

        machine = self._machines.find_by_id(machine_id)
        if machine is None:
            raise MachineNotFoundError(machine_id)
        self._validate(deployment_type, machine, parameters)

        deployment = Deployment.create(
            deployment_type,
            machine.machine_id,
            parameters=parameters,
            initiated_by=initiated_by,
            terraform_workspace=machine.terraform_workspace,
        )

        if not self._locks.try_acquire(machine.machine_id, deployment.deployment_id):
            raise ActiveDeploymentConflictError(machine.machine_id, self._locks.owner(machine.machine_id))
        try:
            existing = self._deployments.find_active_for_machine(machine.machine_id)
            if existing is not None:
                raise ActiveDeploymentConflictError(machine.machine_id, existing.deployment_id)
            with self._transition_lock:
                self._deployments.save(deployment)
            if desired_status is not None:
                self._update_machine(machine.machine_id, lambda m: m.request_status(desired_status))
        except BaseException:
            self._locks.release(machine.machine_id, deployment.deployment_id)
            raise

        self._record_audit(initiated_by, AuditAction.DEPLOYMENT_CREATE, AuditOutcome.PENDING,
                           "deployment", deployment.deployment_id,
                           type=deployment_type.value, machine_id=machine.machine_id)
        self._log(deployment.deployment_id, f"Deployment {deployment_type.value} queued by {initiated_by}")
        self._logger.info("Deployment queued",
                          deployment_id=deployment.deployment_id,
                          type=deployment_type.value,
                          machine_id=machine.machine_id)

        self._scheduler.submit(self._run, deployment.deployment_id)
        return deployment

    def approve(self, deployment_id: str, approved_by: str = "system") -> Deployment:
        """Approve a plan waiting for approval."""
        with self._transition_lock:
            deployment = self.get(deployment_id)
            if deployment.state != DeploymentState.AWAITING_APPROVAL:
                raise InvalidStateError(
                    f"Deployment {deployment_id} is {deployment.state.value}, not awaiting approval",
                    deployment.state.value
                )
            deployment.update_state(DeploymentState.APPLYING, f"Plan approved by {approved_by}")
            self._deployments.save(deployment)
            event = self._approvals.get(deployment_id)

        self._record_audit(approved_by, AuditAction.DEPLOYMENT_APPROVE, AuditOutcome.SUCCESS,
                           "deployment", deployment_id, machine_id=deployment.machine_id)
        self._log(deployment_id, f"Plan approved by {approved_by}")
        if event is not None:
            event.set()
        return deployment

    def cancel(self, deployment_id: str, cancelled_by: str = "system") -> Deployment:
        """
        Cancel a deployment.

        Queued and awaiting-approval deployments are cancelled at once. A
        planning or applying deployment is flagged, its Terraform process is
        signalled, and the job records ``cancelled`` after the process exits.
        """
        with self._transition_lock:
            deployment = self.get(deployment_id)
            if deployment.is_terminal:
                raise InvalidStateError(
                    f"Deployment {deployment_id} is already {deployment.state.value}",
                    deployment.state.value
                )
            previous_state = deployment.state
            if previous_state in (DeploymentState.QUEUED, DeploymentState.AWAITING_APPROVAL):
                deployment.cancel(f"Cancelled by {cancelled_by}")
            else:
                deployment.request_cancel()
            self._deployments.save(deployment)
            event = self._approvals.get(deployment_id)

        self._record_audit(cancelled_by, AuditAction.DEPLOYMENT_CANCEL, AuditOutcome.SUCCESS,
                           "deployment", deployment_id, previous_state=previous_state.value)

        if previous_state == DeploymentState.QUEUED:
            self._log(deployment_id, f"Deployment cancelled by {cancelled_by} before it started")
            self._finalize(deployment)
        elif previous_state == DeploymentState.AWAITING_APPROVAL:
            self._log(deployment_id, f"Deployment cancelled by {cancelled_by} while awaiting approval")
            if event is not None:
                event.set()
            else:
                self._finalize(deployment)
        else:
            self._log(deployment_id, f"Cancellation requested by {cancelled_by}", LogLevel.WARN)
            if deployment.type.uses_terraform and deployment.terraform_workspace:
                self._executor.terminate(deployment.terraform_workspace)
        return deployment

    def get(self, deployment_id: str) -> Deployment:
        deployment = self._deployments.find_by_id(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(deployment_id)
        return deployment

    def list(self,
             machine_id: Optional[str] = None,
             deployment_type: Optional[str] = None,
             state: Optional[str] = None,
             limit: int = 50,
             offset: int = 0) -> List[Deployment]:
        try:
            if deployment_type is not None:
                DeploymentType(deployment_type)
            if state is not None:
                DeploymentState(state)
        except ValueError as e:
            raise ValidationError(str(e))
        return self._deployments.search(machine_id=machine_id, deployment_type=deployment_type,
                                        state=state, limit=limit, offset=offset)

    def get_logs(self, deployment_id: str) -> List[DeploymentLog]:
        self.get(deployment_id)
        return self._log_repository.find_by_deployment(deployment_id)

    def subscribe(self, deployment_id: str) -> LogSubscription:
        """Buffered lines first, then live lines until the deployment is terminal."""
        with self._streams_lock:
            deployment = self.get(deployment_id)
            stream = self._streams.get(deployment_id)
            if stream is None:
                if deployment.is_terminal:
                    return finished_subscription(self._log_repository.find_by_deployment(deployment_id))
                stream = self._open_stream(deployment_id)
            return stream.subscribe()

    def recover(self) -> RecoveryReport:
        """
        Repair state left by a previous process.

        Non-terminal deployments are failed and their machines flagged for
        re-verification. Workspaces with no active owner are cleaned, and
        workspaces of deleted or unknown machines are removed.
        """
        report = RecoveryReport()
        with self._transition_lock:
            for deployment in self._deployments.find_active():
                deployment.fail("Orchestrator restarted while the deployment was active")
                self._deployments.save(deployment)
                if deployment.machine_id:
                    self._update_machine(deployment.machine_id, Machine.mark_unknown)
                self._log(deployment.deployment_id, "Deployment failed: orchestrator restarted", LogLevel.ERROR)
                self._finalize(deployment)
                report.failed_deployments.append(deployment.deployment_id)

        active = {d.terraform_workspace for d in self._deployments.find_active() if d.terraform_workspace}
        for workspace in self._executor.find_orphaned_workspaces(active):
            machine = None
            if workspace.startswith(WORKSPACE_PREFIX):
                machine = self._machines.find_by_id(workspace[len(WORKSPACE_PREFIX):])
            if machine is None or machine.is_deleted:
                self._executor.cleanup(workspace, purge=True)
                report.purged_workspaces.append(workspace)
            else:
                self._executor.cleanup(workspace)
                report.cleaned_workspaces.append(workspace)

        self._logger.info("Recovery complete",
                          failed=len(report.failed_deployments),
                          cleaned=len(report.cleaned_workspaces),
                          purged=len(report.purged_workspaces))
        return report

    def expire_stale_approvals(self) -> List[str]:
        """Cancel deployments that have waited longer than the approval timeout."""
        timeout = self._config.approval_timeout_seconds
        now = utcnow()
        expired = []
        for deployment in self._deployments.search(state=DeploymentState.AWAITING_APPROVAL.value, limit=1000):
            since = deployment.approval_requested_at or deployment.created_at
            if (now - since).total_seconds() < timeout:
                continue
            with self._transition_lock:
                current = self._deployments.find_by_id(deployment.deployment_id)
                if current is None or current.state != DeploymentState.AWAITING_APPROVAL:
                    continue
                current.cancel(f"Approval timed out after {timeout}s")
                self._deployments.save(current)
                event = self._approvals.get(current.deployment_id)
            self._log(current.deployment_id, f"Approval timed out after {timeout}s", LogLevel.WARN)
            if event is not None:
                event.set()
            else:
                self._finalize(current)
            expired.append(current.deployment_id)
        return expired

    def shutdown(self, wait: bool = True) -> None:
        self._scheduler.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def _run(self, deployment_id: str) -> None:
        deployment = None
        try:
            deployment = self._start(deployment_id)
            if deployment is None:
                return
            self._execute(deployment)
        except Exception as e:
            self._logger.exception("Deployment job crashed", deployment_id=deployment_id)
            self._mark_failed(deployment_id, f"Internal error: {type(e).__name__}: {e}")
        finally:
            self._finalize(deployment or self._deployments.find_by_id(deployment_id))

    def _start(self, deployment_id: str) -> Optional[Deployment]:
        with self._transition_lock:
            deployment = self._deployments.find_by_id(deployment_id)
            if deployment is None or deployment.is_terminal:
                return None
            deployment.update_state(DeploymentState.PLANNING)
            self._deployments.save(deployment)
        self._log(deployment_id, "Planning started")
        return deployment

    def _execute(self, deployment: Deployment) -> None:
        deployment_id = deployment.deployment_id
        handlers = {
            DeploymentType.CREATE: self._run_terraform,
            DeploymentType.UPDATE: self._run_terraform,
            DeploymentType.REFRESH: self._run_terraform,
            DeploymentType.DESTROY: self._run_terraform,
            DeploymentType.REBOOT: self._run_reboot,
            DeploymentType.RESTART_SERVICE: self._run_restart_service,
        }
        try:
            machine = self._machines.find_by_id(deployment.machine_id)
            if machine is None:
                raise MachineNotFoundError(deployment.machine_id)
            handlers[deployment.type](deployment, machine)
        except _Cancelled as e:
            if not e.recorded:
                self._mark_cancelled(deployment_id, e.message)
        except MachinaError as e:
            current = self._deployments.find_by_id(deployment_id)
            if current is not None and current.cancel_requested and not current.is_terminal:
                self._mark_cancelled(deployment_id, "Cancelled by request")
            else:
                # streamed lines are already in the deployment log
                unseen = None if getattr(e, "streamed", False) else getattr(e, "output_tail", None)
                self._mark_failed(deployment_id, e.message, unseen)

    def _run_terraform(self, deployment: Deployment, machine: Machine) -> None:
        deployment_id = deployment.deployment_id
        adapter = self._providers.get(machine.provider)
        if not adapter.terraform_module:
            raise UnsupportedProviderError(machine.provider.value, "terraform provisioning")
        credentials = resolve_credentials(self._secret_store, machine.provider_account_id,
                                          machine.provider.value)
        variables, sensitive = adapter.terraform_variables(machine, credentials, deployment.parameters)
        workspace = deployment.terraform_workspace
        on_output = self._terraform_output(deployment_id)
        destroy = deployment.type == DeploymentType.DESTROY

        with self._executor.session(workspace), self._cancel_watch(deployment_id, workspace):
            self._executor.init(workspace, adapter.terraform_module, on_output)
            self._check_cancel(deployment_id)
            plan = self._executor.plan(
                workspace,
                variables,
                destroy=destroy,
                refresh_only=deployment.type == DeploymentType.REFRESH,
                sensitive=sensitive,
                on_output=on_output,
            )
            self._record_plan(deployment_id, plan.summary, plan.raw_plan)
            self._check_cancel(deployment_id)
            self._await_approval(deployment_id, plan.summary, deployment.type)
            self._check_cancel(deployment_id)
            self._log(deployment_id, "Applying plan")
            if destroy:
                self._executor.destroy(workspace, on_output)
                outputs: Dict[str, Any] = {}
            else:
                outputs = self._executor.apply(workspace, on_output)

        if destroy:
            self._complete(deployment_id, outputs, delete=True)
            self._executor.cleanup(workspace, purge=True)
        else:
            self._complete(deployment_id, outputs, observation=adapter.parse_outputs(outputs))

    def _run_reboot(self, deployment: Deployment, machine: Machine) -> None:
        deployment_id = deployment.deployment_id
        adapter = self._providers.get(machine.provider)
        credentials = resolve_credentials(self._secret_store, machine.provider_account_id,
                                          machine.provider.value)
        self._record_plan(deployment_id, PlanSummary(), None)
        self._await_approval(deployment_id, PlanSummary(), deployment.type)

        adapter.reboot_resource(credentials, machine.provider_resource_id, machine.region)
        self._log(deployment_id, f"Reboot requested for {machine.provider_resource_id}", source=LogSource.PROVIDER)

        attempts = self._config.reboot_poll_attempts
        for attempt in range(1, attempts + 1):
            self._sleep(self._config.reboot_poll_interval)
            self._check_cancel(deployment_id)
            description = adapter.describe_resource(credentials, machine.provider_resource_id, machine.region)
            if description is None:
                raise ExecutionFailedError(f"Resource {machine.provider_resource_id} disappeared during reboot")
            self._log(deployment_id, f"Poll {attempt}/{attempts}: provider reports {description.raw_status}",
                      source=LogSource.PROVIDER)
            if description.status == MachineStatus.RUNNING:
                self._complete(
                    deployment_id,
                    {"status": description.raw_status, "public_ip": description.public_ip},
                    observation={
                        "actual_status": description.status,
                        "public_ip": description.public_ip,
                        "private_ip": description.private_ip,
                    },
                )
                return
        raise ExecutionFailedError(f"Machine did not report running after {attempts} status checks")

    def _run_restart_service(self, deployment: Deployment, machine: Machine) -> None:
        deployment_id = deployment.deployment_id
        service_name = deployment.parameters["service_name"]
        self._record_plan(deployment_id, PlanSummary(), None)
        self._await_approval(deployment_id, PlanSummary(), deployment.type)
        result = self._agent.restart_service(
            machine, service_name, lambda line: self._log(deployment_id, line, source=LogSource.PROVIDER)
        )
        self._complete(deployment_id, dict(result or {}, service_name=service_name))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_cancel(self, deployment_id: str) -> None:
        current = self._deployments.find_by_id(deployment_id)
        if current is not None and current.cancel_requested:
            raise _Cancelled("Cancelled by request")

    def _record_plan(self, deployment_id: str, summary: PlanSummary, raw_plan: Optional[str]) -> None:
        with self._transition_lock:
            deployment = self.get(deployment_id)
            deployment.record_plan(summary, raw_plan)
            self._deployments.save(deployment)
        self._log(
            deployment_id,
            f"Plan: {summary.resources_to_add} to add, {summary.resources_to_change} to change, "
            f"{summary.resources_to_destroy} to destroy"
        )

    def _await_approval(self, deployment_id: str, summary: PlanSummary, deployment_type: DeploymentType) -> None:
        decision = self._policy.evaluate(summary, deployment_type)
        with self._transition_lock:
            deployment = self.get(deployment_id)
            if deployment.cancel_requested:
                raise _Cancelled("Cancelled by request")
            if decision.auto_approved:
                deployment.update_state(DeploymentState.APPLYING, decision.reason)
            else:
                deployment.update_state(DeploymentState.AWAITING_APPROVAL, decision.reason)
                event = self._approvals.setdefault(deployment_id, threading.Event())
            self._deployments.save(deployment)

        self._log(deployment_id, decision.reason)
        if decision.auto_approved:
            return

        timeout = self._config.approval_timeout_seconds
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            # approvals and cancels from another process only reach the store
            event.wait(min(remaining, self._config.state_poll_interval))
            if self.get(deployment_id).state != DeploymentState.AWAITING_APPROVAL:
                break
        with self._transition_lock:
            self._approvals.pop(deployment_id, None)
            deployment = self.get(deployment_id)
            if deployment.state == DeploymentState.APPLYING:
                return
            if deployment.state == DeploymentState.AWAITING_APPROVAL:
                deployment.cancel(f"Approval timed out after {timeout}s")
                self._deployments.save(deployment)
                self._log(deployment_id, f"Approval timed out after {timeout}s", LogLevel.WARN)
        raise _Cancelled(deployment.message, recorded=True)

    def _complete(self,
                  deployment_id: str,
                  outputs: Dict[str, Any],
                  observation: Optional[Dict[str, Any]] = None,
                  delete: bool = False) -> None:
        """Persist success, then write the outcome to the machine."""
        with self._transition_lock:
            deployment = self.get(deployment_id)
            if deployment.cancel_requested:
                self._log(deployment_id, "Cancellation arrived after the change completed", LogLevel.WARN)
            deployment.succeed(outputs)
            self._deployments.save(deployment)

        def write_outcome(machine: Machine) -> None:
            if delete:
                machine.mark_deleted()
            elif observation is not None:
                machine.record_observation(
                    observation["actual_status"],
                    terraform_state_status=(TerraformStateStatus.IN_SYNC if deployment.type.uses_terraform
                                            else None),
                    public_ip=observation.get("public_ip"),
                    private_ip=observation.get("private_ip"),
                    provider_resource_id=observation.get("provider_resource_id"),
                    reason=f"Deployment {deployment_id} succeeded",
                )

        if deployment.machine_id:
            self._update_machine(deployment.machine_id, write_outcome)

        self._log(deployment_id, "Deployment succeeded")
        self._logger.info("Deployment succeeded", deployment_id=deployment_id, type=deployment.type.value)
        self._audit_outcome(deployment, AuditOutcome.SUCCESS)

    def _mark_failed(self, deployment_id: str, message: str, output_tail: Optional[List[str]] = None) -> None:
        with self._transition_lock:
            deployment = self._deployments.find_by_id(deployment_id)
            if deployment is None or deployment.is_terminal:
                return
            was_applying = deployment.state == DeploymentState.APPLYING
            deployment.fail(message)
            self._deployments.save(deployment)

        if was_applying and deployment.machine_id:
            self._update_machine(deployment.machine_id, Machine.mark_unknown)
        for line in output_tail or []:
            self._log(deployment_id, line, LogLevel.ERROR, LogSource.TERRAFORM)
        self._log(deployment_id, f"Deployment failed: {message}", LogLevel.ERROR)
        self._logger.error("Deployment failed", deployment_id=deployment_id, error=message)
        self._audit_outcome(deployment, AuditOutcome.FAILURE, error=message)

    def _mark_cancelled(self, deployment_id: str, message: str) -> None:
        with self._transition_lock:
            deployment = self._deployments.find_by_id(deployment_id)
            if deployment is None or deployment.is_terminal:
                return
            deployment.cancel(message)
            self._deployments.save(deployment)
        if deployment.machine_id and deployment.type.uses_terraform:
            self._update_machine(deployment.machine_id, Machine.mark_unknown)
        self._log(deployment_id, f"Deployment cancelled: {message}", LogLevel.WARN)

    def _finalize(self, deployment: Optional[Deployment]) -> None:
        """Release the machine lock and end log streams once a deployment is terminal."""
        if deployment is None:
            return
        current = self._deployments.find_by_id(deployment.deployment_id) or deployment
        if not current.is_terminal:
            return
        if current.machine_id:
            self._locks.release(current.machine_id, current.deployment_id)
        with self._transition_lock:
            self._approvals.pop(current.deployment_id, None)
        with self._streams_lock:
            stream = self._streams.pop(current.deployment_id, None)
        if stream is not None:
            stream.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, deployment_type: DeploymentType, machine: Machine, parameters: Dict[str, Any]) -> None:
        missing = [name for name in REQUIRED_PARAMETERS.get(deployment_type, ())
                   if parameters.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required parameters for {deployment_type.value}: {', '.join(missing)}",
                {"missing": missing}
            )
        if machine.is_deleted:
            raise InvalidStateError(f"Machine {machine.machine_id} has been destroyed", machine.actual_status.value)
        if deployment_type == DeploymentType.REBOOT and not machine.provider_resource_id:
            raise InvalidStateError(f"Machine {machine.machine_id} has no provider resource to reboot",
                                    machine.actual_status.value)
        if deployment_type.uses_terraform and not machine.terraform_workspace:
            raise InvalidStateError(f"Machine {machine.machine_id} has no Terraform workspace",
                                    machine.actual_status.value)

    def _update_machine(self, machine_id: str, change: Callable[[Machine], None]) -> Optional[Machine]:
        """Apply ``change`` to a fresh copy of the machine, re-reading it if another writer got in first."""
        for attempt in range(1, MACHINE_WRITE_ATTEMPTS + 1):
            machine = self._machines.find_by_id(machine_id)
            if machine is None:
                return None
            change(machine)
            try:
                self._machines.save(machine)
                return machine
            except ConcurrencyError:
                if attempt == MACHINE_WRITE_ATTEMPTS:
                    raise
                self._logger.debug("Machine changed during write, retrying", machine_id=machine_id, attempt=attempt)
        return None

    @contextmanager
    def _cancel_watch(self, deployment_id: str, workspace: str) -> Iterator[None]:
        """Signal Terraform when a cancel for this deployment is recorded by another process."""
        stop = threading.Event()

        def watch() -> None:
            while not stop.wait(self._config.state_poll_interval):
                try:
                    current = self._deployments.find_by_id(deployment_id)
                except MachinaError as e:
                    self._logger.warning("Cancel watch stopped", deployment_id=deployment_id, error=e.message)
                    return
                if current is not None and current.cancel_requested:
                    self._executor.terminate(workspace)
                    return

        watcher = threading.Thread(target=watch, name=f"cancel-watch-{deployment_id}", daemon=True)
        watcher.start()
        try:
            yield
        finally:
            stop.set()
            watcher.join()

    def _open_stream(self, deployment_id: str) -> DeploymentLogStream:
        stream = DeploymentLogStream(
            deployment_id,
            self._log_repository,
            max_buffer=self._config.log_buffer_lines,
            initial=self._log_repository.find_by_deployment(deployment_id),
        )
        self._streams[deployment_id] = stream
        return stream

    def _log(self, deployment_id: str, message: str, level: LogLevel = LogLevel.INFO,
             source: LogSource = LogSource.SYSTEM) -> DeploymentLog:
        with self._streams_lock:
            stream = self._streams.get(deployment_id)
            if stream is None:
                stream = self._open_stream(deployment_id)
        return stream.write(message, level, source)

    def _terraform_output(self, deployment_id: str) -> Callable[[str, LogLevel], None]:
        def on_output(line: str, level: LogLevel) -> None:
            self._log(deployment_id, line, level, LogSource.TERRAFORM)
        return on_output

    def _audit_outcome(self, deployment: Deployment, outcome: AuditOutcome, **details: Any) -> None:
        action = MACHINE_AUDIT_ACTIONS.get(deployment.type)
        if action is None or not deployment.machine_id:
            return
        self._record_audit(deployment.initiated_by, action, outcome, "machine", deployment.machine_id,
                           deployment_id=deployment.deployment_id, **details)

    def _record_audit(self, actor_id: str, action: AuditAction, outcome: AuditOutcome,
                      target_type: str, target_id: str, **details: Any) -> None:
        self._audit.record(AuditEvent.by(actor_id, action, outcome, target_type, target_id, **details))
