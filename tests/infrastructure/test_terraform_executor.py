import json
import os
import stat
import sys
import threading

import pytest

from machina.config import TerraformConfig
from machina.domain.core.exceptions import ExecutionFailedError, ValidationError
from machina.domain.deployment.value_objects import LogLevel
from machina.infrastructure.terraform.executor import TFVARS_FILE, TerraformExecutor, classify_line

pytestmark = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses a POSIX shell script")

FAKE_TERRAFORM = r"""#!/bin/sh
if [ "$FAKE_TF_SLOW" = "$1" ]; then
  exec sleep 30
fi
if [ "$FAKE_TF_FAIL" = "$1" ]; then
  echo "Error: simulated $1 failure"
  exit 1
fi
case "$1" in
  init)
    echo "Initializing provider plugins..."
    echo "Terraform has been successfully initialized!"
    ;;
  plan)
    echo "token in use: $FAKE_TF_ECHO"
    echo "Plan: 1 to add, 0 to change, 0 to destroy."
    touch tfplan
    ;;
  show)
    echo '{"resource_changes":[{"address":"digitalocean_droplet.machine","type":"digitalocean_droplet","name":"machine","change":{"actions":["create"]}}]}'
    ;;
  apply)
    echo "Apply complete! Resources: 1 added, 0 changed, 0 destroyed."
    ;;
  destroy)
    echo "Destroy complete! Resources: 1 destroyed."
    ;;
  output)
    echo '{"resource_id":{"value":"424242"},"public_ip":{"value":"203.0.113.10"}}'
    ;;
esac
exit 0
"""

SECRET = "dop_v1_supersecretvalue"


@pytest.fixture
def terraform_binary(tmp_path):
    path = tmp_path / "bin" / "terraform"
    path.parent.mkdir()
    path.write_text(FAKE_TERRAFORM)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def executor(tmp_path, terraform_binary):
    return TerraformExecutor(TerraformConfig(
        binary=terraform_binary,
        workspaces_dir=str(tmp_path / "workspaces"),
        output_tail_lines=5,
    ))


@pytest.fixture
def lines():
    collected = []

    def on_output(line, level):
        collected.append((line, level))

    on_output.collected = collected
    return on_output


def test_classify_line():
    assert classify_line("Error: quota exceeded") == LogLevel.ERROR
    assert classify_line("Warning: deprecated attribute") == LogLevel.WARN
    assert classify_line("Plan: 1 to add") == LogLevel.INFO


def test_init_copies_module_files(executor, lines):
    # Act
    path = executor.init("machine-mach_1", "digitalocean", lines)

    # Assert
    assert (path / "main.tf").exists()
    assert (path / "variables.tf").exists()
    assert ("Terraform has been successfully initialized!", LogLevel.INFO) in lines.collected


def test_plan_apply_outputs(executor, lines):
    # Arrange
    executor.init("machine-mach_1", "digitalocean")

    # Act
    plan = executor.plan("machine-mach_1", {"do_token": SECRET, "name": "web-1"}, on_output=lines)
    outputs = executor.apply("machine-mach_1", lines)

    # Assert
    assert plan.summary.resources_to_add == 1
    assert "Plan: 1 to add" in plan.raw_plan
    assert outputs == {"resource_id": "424242", "public_ip": "203.0.113.10"}


def test_variables_file_is_owner_only(executor):
    executor.init("machine-mach_1", "digitalocean")

    path = executor.write_variables("machine-mach_1", {"do_token": SECRET}, ["do_token"])

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert json.loads(path.read_text())["do_token"] == SECRET


def test_sensitive_values_are_redacted_from_output(executor, lines, monkeypatch):
    # Arrange
    monkeypatch.setenv("FAKE_TF_ECHO", SECRET)
    executor.init("machine-mach_1", "digitalocean")

    # Act
    executor.plan("machine-mach_1", {"do_token": SECRET}, sensitive=["do_token"], on_output=lines)

    # Assert
    text = "\n".join(line for line, _ in lines.collected)
    assert SECRET not in text
    assert "token in use: ***" in text


def test_failure_carries_exit_code_and_tail(executor, lines, monkeypatch):
    # Arrange
    executor.init("machine-mach_1", "digitalocean")
    executor.plan("machine-mach_1", {"name": "web-1"})
    monkeypatch.setenv("FAKE_TF_FAIL", "apply")

    # Act
    with pytest.raises(ExecutionFailedError) as exc_info:
        executor.apply("machine-mach_1", lines)

    # Assert
    assert exc_info.value.exit_code == 1
    assert exc_info.value.output_tail == ["Error: simulated apply failure"]
    assert exc_info.value.streamed
    assert ("Error: simulated apply failure", LogLevel.ERROR) in lines.collected


def test_session_removes_sensitive_files(executor):
    # Arrange
    executor.init("machine-mach_1", "digitalocean")

    # Act
    with executor.session("machine-mach_1") as path:
        executor.plan("machine-mach_1", {"do_token": SECRET}, sensitive=["do_token"])
        assert (path / TFVARS_FILE).exists()

    # Assert
    assert not (path / TFVARS_FILE).exists()
    assert not (path / "tfplan").exists()
    assert (path / "main.tf").exists()


def test_destroy_applies_saved_destroy_plan(executor, lines):
    executor.init("machine-mach_1", "digitalocean")
    executor.plan("machine-mach_1", {"name": "web-1"}, destroy=True)

    executor.destroy("machine-mach_1", lines)

    assert any("Apply complete!" in line for line, _ in lines.collected)


def test_purge_removes_workspace(executor):
    path = executor.init("machine-mach_1", "digitalocean")

    executor.cleanup("machine-mach_1", purge=True)

    assert not path.exists()
    assert executor.list_workspaces() == []


def test_orphaned_workspaces(executor):
    executor.init("machine-a", "digitalocean")
    executor.init("machine-b", "digitalocean")

    assert executor.find_orphaned_workspaces(["machine-a"]) == ["machine-b"]


def test_workspace_names_are_validated(executor):
    with pytest.raises(ValidationError):
        executor.workspace_path("../escape")


def test_missing_binary_is_reported(tmp_path):
    executor = TerraformExecutor(TerraformConfig(
        binary="terraform-not-installed-here",
        workspaces_dir=str(tmp_path / "workspaces"),
    ))

    with pytest.raises(ExecutionFailedError, match="not found"):
        executor.init("machine-mach_1", "digitalocean")


def test_unknown_module_is_reported(executor):
    with pytest.raises(ExecutionFailedError, match="module"):
        executor.init("machine-mach_1", "gcp")


def test_terminate_signals_running_process(executor, monkeypatch):
    # Arrange
    executor.init("machine-mach_1", "digitalocean")
    executor.plan("machine-mach_1", {"name": "web-1"})
    monkeypatch.setenv("FAKE_TF_SLOW", "apply")
    errors = []

    def run_apply():
        try:
            executor.apply("machine-mach_1")
        except ExecutionFailedError as e:
            errors.append(e)

    worker = threading.Thread(target=run_apply)
    worker.start()
    deadline = 50
    while not executor.is_running("machine-mach_1") and deadline:
        worker.join(0.1)
        deadline -= 1

    # Act
    signalled = executor.terminate("machine-mach_1")
    worker.join(10)

    # Assert
    assert signalled
    assert not worker.is_alive()
    assert len(errors) == 1
    assert not executor.is_running("machine-mach_1")


def test_terminate_before_spawn_stops_next_process(executor, monkeypatch):
    # Arrange
    executor.init("machine-mach_1", "digitalocean")
    executor.plan("machine-mach_1", {"name": "web-1"})
    monkeypatch.setenv("FAKE_TF_SLOW", "apply")

    # Act
    signalled = executor.terminate("machine-mach_1")
    with pytest.raises(ExecutionFailedError) as exc_info:
        executor.apply("machine-mach_1")

    # Assert
    assert signalled is False
    assert exc_info.value.exit_code != 0


def test_pending_terminate_is_dropped_by_cleanup(executor, lines):
    executor.init("machine-mach_1", "digitalocean")
    executor.plan("machine-mach_1", {"name": "web-1"})
    executor.terminate("machine-mach_1")

    executor.cleanup("machine-mach_1")
    executor.plan("machine-mach_1", {"name": "web-1"}, on_output=lines)

    assert any("Plan: 1 to add" in line for line, _ in lines.collected)


def test_new_session_drops_stale_terminate(executor, lines):
    executor.terminate("machine-mach_1")

    with executor.session("machine-mach_1"):
        executor.init("machine-mach_1", "digitalocean", lines)

    assert ("Terraform has been successfully initialized!", LogLevel.INFO) in lines.collected
