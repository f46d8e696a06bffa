"""On-machine agent used by ``restart_service`` deployments."""
from abc import ABC, abstractmethod
from typing import Callable, Dict, Any

from machina.domain.core.exceptions import ExecutionFailedError
from machina.domain.machine.machine_aggregate import Machine

AgentOutput = Callable[[str], None]


class ServiceAgent(ABC):
    """Restarts services on a running machine through an agent installed on it."""

    @abstractmethod
    def restart_service(self, machine: Machine, service_name: str, on_output: AgentOutput) -> Dict[str, Any]:
        """Restart ``service_name`` and return details for the deployment outputs."""


class UnavailableServiceAgent(ServiceAgent):
    """Used when no agent transport is configured."""

    def restart_service(self, machine: Machine, service_name: str, on_output: AgentOutput) -> Dict[str, Any]:
        raise ExecutionFailedError(
            f"Cannot restart '{service_name}' on {machine.name}: no machine agent is connected"
        )
