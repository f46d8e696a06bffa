from typing import Optional, Any, Dict

from machina.domain.core.exceptions import MachinaError


class InfrastructureError(MachinaError):
    """Base exception for infrastructure-related errors."""
    code = "INFRASTRUCTURE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class StorageError(InfrastructureError):
    """Raised when storage operations fail."""
    code = "STORAGE_ERROR"


class ConcurrencyError(StorageError):
    """Raised when an entity was modified by another writer."""
    code = "CONFLICT"
