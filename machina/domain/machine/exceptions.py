"""Machine domain exceptions."""

from machina.domain.core.exceptions import NotFoundError


class MachineNotFoundError(NotFoundError):
    """Raised when a machine is not found."""

    def __init__(self, machine_id: str):
        super().__init__("Machine", machine_id)
