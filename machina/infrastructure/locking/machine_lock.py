"""Per-machine exclusive locks owned by deployments."""
import threading
from typing import Dict, Optional


class MachineLockRegistry:
    """
    Non-blocking registry of machine locks.

    A lock is held by exactly one deployment id. Acquisition never waits:
    a second caller is told immediately that the machine is busy.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._owners: Dict[str, str] = {}

    def try_acquire(self, machine_id: str, deployment_id: str) -> bool:
        with self._guard:
            owner = self._owners.get(machine_id)
            if owner is not None and owner != deployment_id:
                return False
            self._owners[machine_id] = deployment_id
            return True

    def release(self, machine_id: str, deployment_id: str) -> bool:
        """Release if held by ``deployment_id``. Returns False when held by someone else."""
        with self._guard:
            if self._owners.get(machine_id) != deployment_id:
                return False
            del self._owners[machine_id]
            return True

    def owner(self, machine_id: str) -> Optional[str]:
        with self._guard:
            return self._owners.get(machine_id)

    def is_locked(self, machine_id: str) -> bool:
        return self.owner(machine_id) is not None
