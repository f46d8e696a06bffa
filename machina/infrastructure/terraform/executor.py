"""
Terraform execution wrapper.

Runs the ``terraform`` binary against one working directory per machine.
Output is streamed line by line to a callback while the process runs, with
sensitive variable values redacted. Failures raise
:class:`ExecutionFailedError` carrying the exit code and the last lines of
output.
"""
import json
import os
import re
import shutil
import signal
import subprocess
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

from machina.config.schemas.app_schema import TerraformConfig
from machina.domain.core.exceptions import ExecutionFailedError, ValidationError
from machina.domain.deployment.value_objects import LogLevel, PlanSummary
from machina.infrastructure.logging.logger import get_logger
from machina.infrastructure.terraform.plan_parser import parse_plan

TFVARS_FILE = "terraform.tfvars.json"
PLAN_FILE = "tfplan"
SENSITIVE_FILES = (TFVARS_FILE, PLAN_FILE, "terraform.tfstate.backup")

DEFAULT_MODULES_DIR = Path(__file__).resolve().parents[2] / "terraform" / "modules"

_WORKSPACE_NAME = re.compile(r"^[A-Za-z0-9_-]+$")

OutputCallback = Callable[[str, LogLevel], None]


def classify_line(line: str) -> LogLevel:
    if "Error" in line:
        return LogLevel.ERROR
    if "Warning" in line:
        return LogLevel.WARN
    return LogLevel.INFO


@dataclass(frozen=True)
class PlanResult:
    summary: PlanSummary
    raw_plan: str


class TerraformExecutor:
    """Wraps Terraform CLI invocations for per-machine workspaces."""

    def __init__(self, config: TerraformConfig):
        self._binary = config.binary
        self._root = Path(os.path.expandvars(config.workspaces_dir))
        self._modules_dir = Path(config.modules_dir) if config.modules_dir else DEFAULT_MODULES_DIR
        self._tail_lines = config.output_tail_lines
        self._timeouts = {
            "init": config.init_timeout,
            "plan": config.plan_timeout,
            "apply": config.apply_timeout,
        }
        self._lock = threading.Lock()
        self._processes: Dict[str, subprocess.Popen] = {}
        self._terminate_requested: Set[str] = set()
        self._redactions: Dict[str, Set[str]] = {}
        self._logger = get_logger(__name__)

    @property
    def workspaces_root(self) -> Path:
        return self._root

    def workspace_path(self, workspace: str) -> Path:
        if not _WORKSPACE_NAME.match(workspace or ""):
            raise ValidationError(f"Invalid workspace name: {workspace!r}")
        return self._root / workspace

    def _resolve_binary(self) -> str:
        binary = shutil.which(self._binary)
        if binary is None:
            raise ExecutionFailedError(
                f"Terraform binary '{self._binary}' was not found on PATH; install Terraform "
                f"or set terraform.binary in the configuration"
            )
        return binary

    def _environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        return env

    def redact(self, workspace: str, line: str) -> str:
        for secret in self._redactions.get(workspace, ()):
            line = line.replace(secret, "***")
        return line

    def _stream(self,
                workspace: str,
                args: List[str],
                on_output: Optional[OutputCallback],
                timeout: int) -> List[str]:
        """Run a Terraform command, streaming merged stdout/stderr line by line."""
        cwd = self.workspace_path(workspace)
        if not cwd.is_dir():
            raise ExecutionFailedError(f"Workspace {workspace} has not been initialized")
        command = [self._resolve_binary()] + args
        self._logger.info("Running terraform", workspace=workspace, command=" ".join(["terraform"] + args))

        tail: deque = deque(maxlen=self._tail_lines)
        lines: List[str] = []
        process = subprocess.Popen(
            command,
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
            env=self._environment(),
        )
        with self._lock:
            self._processes[workspace] = process
            terminate_now = workspace in self._terminate_requested
        if terminate_now:
            self._logger.warning("Terminating terraform process requested before start",
                                 workspace=workspace, pid=process.pid)
            process.send_signal(signal.SIGTERM)

        timed_out = threading.Event()

        def _kill() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(timeout, _kill)
        timer.daemon = True
        timer.start()
        try:
            for raw in process.stdout:
                line = self.redact(workspace, raw.rstrip("\n"))
                tail.append(line)
                lines.append(line)
                if on_output is not None:
                    on_output(line, classify_line(line))
            exit_code = process.wait()
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            timer.cancel()
            process.stdout.close()
            with self._lock:
                self._processes.pop(workspace, None)

        if timed_out.is_set():
            raise ExecutionFailedError(
                f"terraform {args[0]} timed out after {timeout}s", exit_code, list(tail),
                streamed=on_output is not None
            )
        if exit_code != 0:
            raise ExecutionFailedError(
                f"terraform {args[0]} exited with code {exit_code}", exit_code, list(tail),
                streamed=on_output is not None
            )
        return lines

    def _capture(self, workspace: str, args: List[str]) -> str:
        """Run a Terraform command and return its stdout."""
        cwd = self.workspace_path(workspace)
        try:
            result = subprocess.run(
                [self._resolve_binary()] + args,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self._timeouts["plan"],
                env=self._environment(),
            )
        except subprocess.TimeoutExpired:
            raise ExecutionFailedError(f"terraform {args[0]} timed out")
        if result.returncode != 0:
            tail = [self.redact(workspace, l) for l in result.stderr.splitlines()[-self._tail_lines:]]
            raise ExecutionFailedError(
                f"terraform {args[0]} exited with code {result.returncode}", result.returncode, tail
            )
        return result.stdout

    def init(self, workspace: str, module: str, on_output: Optional[OutputCallback] = None) -> Path:
        """Create the workspace, copy the provider module into it and run ``terraform init``."""
        source = self._modules_dir / module
        if not source.is_dir():
            raise ExecutionFailedError(f"Terraform module '{module}' not found in {self._modules_dir}")
        path = self.workspace_path(workspace)
        path.mkdir(parents=True, exist_ok=True)
        for tf_file in sorted(source.glob("*.tf")):
            shutil.copy2(tf_file, path / tf_file.name)
        self._stream(workspace, ["init", "-no-color", "-input=false"], on_output, self._timeouts["init"])
        return path

    def write_variables(self, workspace: str, variables: Dict[str, Any],
                        sensitive: Iterable[str] = ()) -> Path:
        """Write ``terraform.tfvars.json`` readable only by the owner."""
        path = self.workspace_path(workspace) / TFVARS_FILE
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(variables, f, indent=2)
        secrets = {str(variables[k]) for k in sensitive if variables.get(k)}
        with self._lock:
            self._redactions[workspace] = {s for s in secrets if len(s) >= 4}
        return path

    def plan(self,
             workspace: str,
             variables: Dict[str, Any],
             destroy: bool = False,
             refresh_only: bool = False,
             sensitive: Iterable[str] = (),
             on_output: Optional[OutputCallback] = None) -> PlanResult:
        """Produce a saved plan and its normalized summary."""
        self.write_variables(workspace, variables, sensitive)
        args = ["plan", "-no-color", "-input=false", f"-var-file={TFVARS_FILE}", f"-out={PLAN_FILE}"]
        if destroy:
            args.append("-destroy")
        if refresh_only:
            args.append("-refresh-only")
        lines = self._stream(workspace, args, on_output, self._timeouts["plan"])
        plan_json = self._capture(workspace, ["show", "-json", PLAN_FILE])
        return PlanResult(summary=parse_plan(plan_json), raw_plan="\n".join(lines))

    def apply(self, workspace: str, on_output: Optional[OutputCallback] = None) -> Dict[str, Any]:
        """Apply the saved plan and return the workspace outputs."""
        self._stream(workspace, ["apply", "-no-color", "-input=false", "-auto-approve", PLAN_FILE],
                     on_output, self._timeouts["apply"])
        return self.outputs(workspace)

    def destroy(self, workspace: str, on_output: Optional[OutputCallback] = None) -> None:
        """Destroy all resources, applying the saved destroy plan when one exists."""
        path = self.workspace_path(workspace)
        if (path / PLAN_FILE).exists():
            args = ["apply", "-no-color", "-input=false", "-auto-approve", PLAN_FILE]
        else:
            args = ["destroy", "-no-color", "-input=false", "-auto-approve", f"-var-file={TFVARS_FILE}"]
        self._stream(workspace, args, on_output, self._timeouts["apply"])

    def outputs(self, workspace: str) -> Dict[str, Any]:
        raw = self._capture(workspace, ["output", "-json"])
        try:
            data = json.loads(raw or "{}")
        except json.JSONDecodeError as e:
            raise ExecutionFailedError(f"Terraform outputs are not valid JSON: {e}")
        return {key: value.get("value") for key, value in data.items()}

    def terminate(self, workspace: str) -> bool:
        """
        Send SIGTERM to the running process for a workspace.

        When no process is running the request is remembered, and the next
        process started in the workspace is signalled as soon as it spawns.
        The request is dropped when a new session opens on the workspace or
        the workspace is cleaned up.

        Returns:
            True if a running process was signalled
        """
        with self._lock:
            self._terminate_requested.add(workspace)
            process = self._processes.get(workspace)
        if process is None or process.poll() is not None:
            self._logger.info("Termination requested with no running terraform process", workspace=workspace)
            return False
        self._logger.warning("Terminating terraform process", workspace=workspace, pid=process.pid)
        process.send_signal(signal.SIGTERM)
        return True

    def is_running(self, workspace: str) -> bool:
        with self._lock:
            process = self._processes.get(workspace)
        return process is not None and process.poll() is None

    def cleanup(self, workspace: str, purge: bool = False) -> None:
        """Remove sensitive temporary files, or the whole workspace when ``purge`` is set."""
        path = self.workspace_path(workspace)
        with self._lock:
            self._redactions.pop(workspace, None)
            self._terminate_requested.discard(workspace)
        if not path.exists():
            return
        if purge:
            shutil.rmtree(path)
            self._logger.info("Purged workspace", workspace=workspace)
            return
        for name in SENSITIVE_FILES:
            target = path / name
            if target.exists():
                target.unlink()

    @contextmanager
    def session(self, workspace: str, purge_on_exit: bool = False) -> Iterator[Path]:
        """Scope a series of Terraform calls. Cleanup runs on every exit path."""
        with self._lock:
            self._terminate_requested.discard(workspace)
        try:
            yield self.workspace_path(workspace)
        finally:
            self.cleanup(workspace, purge=purge_on_exit)

    def list_workspaces(self) -> List[str]:
        if not self._root.exists():
            return []
        return sorted(p.name for p in self._root.iterdir() if p.is_dir())

    def find_orphaned_workspaces(self, active_workspaces: Iterable[str]) -> List[str]:
        """Workspaces on disk with no owning active deployment."""
        active = set(active_workspaces)
        return [name for name in self.list_workspaces() if name not in active]
