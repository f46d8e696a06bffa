from .service import MachineApplicationService

__all__ = ["MachineApplicationService"]
