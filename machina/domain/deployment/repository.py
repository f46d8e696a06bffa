"""Deployment repository interfaces."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from machina.domain.deployment.deployment_aggregate import Deployment
from machina.domain.deployment.value_objects import DeploymentLog


class DeploymentRepository(ABC):
    """Repository interface for deployment aggregates."""

    @abstractmethod
    def save(self, deployment: Deployment) -> None:
        """Persist a deployment."""

    @abstractmethod
    def find_by_id(self, deployment_id: str) -> Optional[Deployment]:
        """Find deployment by ID."""

    @abstractmethod
    def find_active(self) -> List[Deployment]:
        """Find all non-terminal deployments."""

    @abstractmethod
    def find_active_for_machine(self, machine_id: str) -> Optional[Deployment]:
        """Find the non-terminal deployment for a machine, if any."""

    @abstractmethod
    def search(self,
               machine_id: Optional[str] = None,
               deployment_type: Optional[str] = None,
               state: Optional[str] = None,
               created_after: Optional[datetime] = None,
               created_before: Optional[datetime] = None,
               limit: int = 50,
               offset: int = 0) -> List[Deployment]:
        """Find deployments matching filters, newest first."""


class DeploymentLogRepository(ABC):
    """Append-only store of deployment log lines."""

    @abstractmethod
    def append(self, entry: DeploymentLog) -> DeploymentLog:
        """Append a line and return it with its sequence number."""

    @abstractmethod
    def find_by_deployment(self, deployment_id: str) -> List[DeploymentLog]:
        """Return all lines for a deployment in order."""
