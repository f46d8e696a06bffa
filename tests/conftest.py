import os
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pytest

from machina.application.deployment.scheduler import ManualJobScheduler
from machina.bootstrap import Application
from machina.config import AppConfig
from machina.domain.deployment.value_objects import LogLevel, PlanSummary, ResourceAction, ResourceChange
from machina.domain.machine.value_objects import MachineStatus, ProviderType
from machina.infrastructure.terraform.executor import PlanResult
from machina.providers.base.adapter import (
    CredentialCheck,
    ProviderAdapter,
    ProvisionRequest,
    ResourceDescription,
)
from machina.providers.registry import ProviderRegistry

DO_TOKEN = "dop_v1_" + "a1b2c3d4" * 8


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


def _droplet_create() -> PlanSummary:
    return PlanSummary.from_changes([
        ResourceChange("digitalocean_droplet.machine", ResourceAction.CREATE, "digitalocean_droplet", "machine"),
    ])


class FakeExecutor:
    """In-memory stand-in for TerraformExecutor that records every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.plan_summary = _droplet_create()
        self.outputs: Dict[str, Any] = {
            "resource_id": 424242,
            "public_ip": "203.0.113.10",
            "private_ip": "10.10.0.5",
            "status": "active",
        }
        self.plan_error: Optional[Exception] = None
        self.apply_error: Optional[Exception] = None
        self.variables: Dict[str, Any] = {}
        self.sensitive: List[str] = []
        self.workspaces = set()
        self.terminated: List[str] = []

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def init(self, workspace, module, on_output=None):
        self.calls.append(("init", workspace, module))
        self.workspaces.add(workspace)
        if on_output:
            on_output("Terraform has been successfully initialized!", LogLevel.INFO)

    def plan(self, workspace, variables, destroy=False, refresh_only=False, sensitive=(), on_output=None):
        self.calls.append(("plan", workspace, destroy, refresh_only))
        self.variables = dict(variables)
        self.sensitive = list(sensitive)
        if self.plan_error is not None:
            raise self.plan_error
        summary = self.plan_summary
        if on_output:
            on_output(f"Plan: {summary.resources_to_add} to add, {summary.resources_to_change} to change, "
                      f"{summary.resources_to_destroy} to destroy.", LogLevel.INFO)
        return PlanResult(summary=summary, raw_plan="terraform plan output")

    def apply(self, workspace, on_output=None):
        self.calls.append(("apply", workspace))
        if self.apply_error is not None:
            raise self.apply_error
        if on_output:
            on_output("Apply complete! Resources: 1 added, 0 changed, 0 destroyed.", LogLevel.INFO)
        return dict(self.outputs)

    def destroy(self, workspace, on_output=None):
        self.calls.append(("destroy", workspace))
        if self.apply_error is not None:
            raise self.apply_error

    def terminate(self, workspace):
        self.terminated.append(workspace)
        return True

    def cleanup(self, workspace, purge=False):
        self.calls.append(("cleanup", workspace, purge))
        if purge:
            self.workspaces.discard(workspace)

    @contextmanager
    def session(self, workspace, purge_on_exit=False):
        try:
            yield workspace
        finally:
            self.cleanup(workspace, purge=purge_on_exit)

    def list_workspaces(self):
        return sorted(self.workspaces)

    def find_orphaned_workspaces(self, active_workspaces):
        active = set(active_workspaces)
        return [w for w in self.list_workspaces() if w not in active]


class FakeDigitalOceanAdapter(ProviderAdapter):
    """Adapter double keyed on the digitalocean provider type."""

    provider_type = ProviderType.DIGITALOCEAN
    terraform_module = "digitalocean"
    STATUS_MAP = {
        "new": MachineStatus.PROVISIONING,
        "active": MachineStatus.RUNNING,
        "off": MachineStatus.STOPPED,
        "archive": MachineStatus.TERMINATED,
    }

    def __init__(self):
        self.valid = True
        self.resources: Dict[str, ResourceDescription] = {}
        self.reboots: List[str] = []
        self.describe_calls = 0

    def set_resource(self, resource_id: str, raw_status: str, public_ip: str = "203.0.113.10") -> None:
        self.resources[str(resource_id)] = ResourceDescription(
            resource_id=str(resource_id),
            status=self.map_status(raw_status),
            raw_status=raw_status,
            public_ip=public_ip,
            private_ip="10.10.0.5",
        )

    def validate_credentials(self, credentials):
        if not self.valid:
            return CredentialCheck(valid=False, message="DigitalOcean API token is invalid or expired")
        return CredentialCheck(valid=True, message="ok", account={"email": "ops@example.com"})

    def create_resource(self, credentials, request: ProvisionRequest):
        raise NotImplementedError

    def destroy_resource(self, credentials, resource_id, region=None):
        self.resources.pop(str(resource_id), None)

    def describe_resource(self, credentials, resource_id, region=None):
        self.describe_calls += 1
        return self.resources.get(str(resource_id))

    def reboot_resource(self, credentials, resource_id, region=None):
        self.reboots.append(str(resource_id))

    def terraform_variables(self, machine, credentials, parameters):
        return {
            "do_token": credentials.api_token.get_secret_value(),
            "name": machine.name,
            "region": machine.region,
        }, ["do_token"]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def fake_adapter():
    return FakeDigitalOceanAdapter()


@pytest.fixture
def app_factory(tmp_path, fake_executor, fake_adapter):
    """Build an Application on a temporary database with fakes at the edges."""
    created = []

    def factory(service_agent=None, **orchestrator):
        settings = {"approval_timeout_seconds": 30, "reboot_poll_interval": 0.0, "reboot_poll_attempts": 3}
        settings.update(orchestrator)
        config = AppConfig.from_dict({
            "environment": "testing",
            "storage": {"db_path": str(tmp_path / f"machina-{len(created)}.db"), "enable_wal": False},
            "terraform": {"workspaces_dir": str(tmp_path / "workspaces")},
            "reconciliation": {"enabled": False},
            "orchestrator": settings,
        })
        application = Application(
            config=config,
            executor=fake_executor,
            providers=ProviderRegistry({ProviderType.DIGITALOCEAN: fake_adapter}),
            scheduler=ManualJobScheduler(),
            service_agent=service_agent,
            master_key=os.urandom(32),
            configure_logging=False,
        )
        created.append(application)
        return application

    yield factory
    for application in created:
        application.shutdown()


@pytest.fixture
def app(app_factory):
    return app_factory()


@pytest.fixture
def account(app):
    return app.provider_service.create_account("digitalocean", "Primary", {"api_token": DO_TOKEN})


@pytest.fixture
def create_machine(app, account):
    """Create a machine record and return it with its queued create deployment."""
    def _create(name="web-1", **kwargs):
        return app.machine_service.create_machine(
            name=name,
            provider_account_id=account.provider_account_id,
            region=kwargs.pop("region", "nyc3"),
            size=kwargs.pop("size", "s-1vcpu-1gb"),
            image=kwargs.pop("image", "ubuntu-22-04-x64"),
            **kwargs
        )
    return _create


@pytest.fixture
def running_machine(app, create_machine):
    """A machine whose create deployment has already succeeded."""
    machine, _ = create_machine()
    app.scheduler.run_pending()
    return app.machine_service.get_machine(machine.machine_id)


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return wait_until
