"""Machine repository interface - contract for machine data access."""

from abc import ABC, abstractmethod
from typing import List, Optional

from machina.domain.machine.machine_aggregate import Machine


class MachineRepository(ABC):
    """Repository interface for machine aggregates."""

    @abstractmethod
    def save(self, machine: Machine) -> None:
        """Persist a machine."""

    @abstractmethod
    def find_by_id(self, machine_id: str) -> Optional[Machine]:
        """Find machine by ID."""

    @abstractmethod
    def find_all(self) -> List[Machine]:
        """Find all machines, including soft-deleted ones."""

    @abstractmethod
    def find_active(self) -> List[Machine]:
        """Find machines that have not been soft-deleted."""

    @abstractmethod
    def find_by_provider_account(self, provider_account_id: str) -> List[Machine]:
        """Find non-deleted machines linked to a provider account."""
