"""Machine locks."""

from .machine_lock import MachineLockRegistry

__all__ = ["MachineLockRegistry"]
