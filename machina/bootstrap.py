"""Application bootstrap: builds the object graph from configuration."""

from __future__ import annotations

from typing import Optional

from machina.application.deployment.scheduler import JobScheduler, ThreadPoolJobScheduler
from machina.application.deployment.service import DeploymentOrchestrator, RecoveryReport
from machina.application.deployment.service_agent import ServiceAgent
from machina.application.machine.service import MachineApplicationService
from machina.application.provider.service import ProviderAccountService
from machina.application.reconciliation.service import ReconciliationScheduler, ReconciliationService
from machina.config import AppConfig, ConfigurationManager
from machina.infrastructure.locking.machine_lock import MachineLockRegistry
from machina.infrastructure.logging.logger import get_logger, setup_logging
from machina.infrastructure.persistence.repositories import (
    SQLiteAuditRepository,
    SQLiteDeploymentLogRepository,
    SQLiteDeploymentRepository,
    SQLiteMachineRepository,
    SQLiteProviderAccountRepository,
)
from machina.infrastructure.terraform.executor import TerraformExecutor
from machina.infrastructure.vault.credential_vault import CredentialVault, load_master_key
from machina.infrastructure.vault.secret_store import SecretStore
from machina.providers.registry import ProviderRegistry


class Application:
    """
    Wires repositories, the vault, adapters and services together.

    Collaborators that touch the outside world (executor, providers,
    scheduler, service agent) can be passed in to replace the defaults.
    """

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 config_path: Optional[str] = None,
                 executor: Optional[TerraformExecutor] = None,
                 providers: Optional[ProviderRegistry] = None,
                 scheduler: Optional[JobScheduler] = None,
                 service_agent: Optional[ServiceAgent] = None,
                 master_key: Optional[bytes] = None,
                 configure_logging: bool = True) -> None:
        if config is None:
            config = ConfigurationManager(config_path).app_config
        self.config = config
        if configure_logging:
            setup_logging(config.logging)
        self.logger = get_logger(__name__)

        db_path = config.storage.db_path
        wal = config.storage.enable_wal
        self.machines = SQLiteMachineRepository(db_path, wal)
        self.deployments = SQLiteDeploymentRepository(db_path, wal)
        self.deployment_logs = SQLiteDeploymentLogRepository(db_path, wal)
        self.accounts = SQLiteProviderAccountRepository(db_path, wal)
        self.audit = SQLiteAuditRepository(db_path, wal)

        key = master_key or load_master_key(config.vault.key_env_var, config.vault.key_file)
        self.vault = CredentialVault(key, config.vault.key_version)
        self.secret_store = SecretStore(self.vault, db_path, wal)

        self.providers = providers or ProviderRegistry.from_config(config.providers)
        self.executor = executor or TerraformExecutor(config.terraform)
        self.locks = MachineLockRegistry()
        self.scheduler = scheduler or ThreadPoolJobScheduler(config.orchestrator.max_workers)

        self.orchestrator = DeploymentOrchestrator(
            deployment_repository=self.deployments,
            log_repository=self.deployment_logs,
            machine_repository=self.machines,
            audit_repository=self.audit,
            secret_store=self.secret_store,
            providers=self.providers,
            executor=self.executor,
            locks=self.locks,
            scheduler=self.scheduler,
            config=config.orchestrator,
            service_agent=service_agent,
        )
        self.machine_service = MachineApplicationService(
            self.machines, self.accounts, self.orchestrator, self.providers, self.audit
        )
        self.provider_service = ProviderAccountService(
            self.accounts, self.machines, self.secret_store, self.providers, self.audit
        )
        self.reconciliation = ReconciliationService(
            self.machines, self.deployments, self.audit, self.secret_store, self.providers, self.locks
        )
        self.reconciliation_scheduler = ReconciliationScheduler(
            self.reconciliation, config.reconciliation.interval_seconds, self.orchestrator
        )
        self._started = False

    def start(self, background: bool = True) -> RecoveryReport:
        """Recover from a previous run and start background reconciliation."""
        report = self.orchestrator.recover()
        if background and self.config.reconciliation.enabled:
            self.reconciliation_scheduler.start()
        self._started = True
        self.logger.info("Application started", environment=self.config.environment)
        return report

    def shutdown(self) -> None:
        self.reconciliation_scheduler.stop()
        self.orchestrator.shutdown(wait=True)
        for store in (self.machines, self.deployments, self.deployment_logs,
                      self.accounts, self.audit, self.secret_store):
            store.close()
        self._started = False
        self.logger.info("Application stopped")
