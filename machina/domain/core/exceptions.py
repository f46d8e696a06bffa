# machina/domain/core/exceptions.py
from typing import Any, Dict, Optional


class MachinaError(Exception):
    """Base exception for all orchestrator errors.

    Every error carries a stable machine-readable ``code`` that the REST
    layer maps onto an HTTP status.
    """
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(MachinaError):
    """Raised when input validation fails."""
    code = "VALIDATION_ERROR"


class ConflictError(MachinaError):
    """Raised when an operation conflicts with an active operation."""
    code = "CONFLICT"


class NotFoundError(MachinaError):
    """Raised when a requested resource cannot be found."""
    code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID {resource_id} not found",
            {"resource_type": resource_type, "resource_id": resource_id}
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidCredentialsError(MachinaError):
    """Raised when provider credentials are rejected or malformed."""
    code = "INVALID_CREDENTIALS"


class DecryptionFailedError(MachinaError):
    """Raised when a secret cannot be decrypted or fails authentication."""
    code = "DECRYPTION_FAILED"


class ExecutionFailedError(MachinaError):
    """Raised when the Terraform process exits unsuccessfully.

    ``streamed`` is set when every line of ``output_tail`` was already passed
    to the caller's output callback.
    """
    code = "EXECUTION_FAILED"

    def __init__(self, message: str, exit_code: Optional[int] = None, output_tail: Optional[list] = None,
                 streamed: bool = False):
        super().__init__(message, {"exit_code": exit_code, "output_tail": output_tail or []})
        self.exit_code = exit_code
        self.output_tail = output_tail or []
        self.streamed = streamed


class ProviderError(MachinaError):
    """Raised when an upstream provider API call fails."""
    code = "PROVIDER_ERROR"

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(
            f"{provider} API error: {message}",
            {"provider": provider, "status_code": status_code}
        )
        self.provider = provider
        self.status_code = status_code


class UnsupportedProviderError(MachinaError):
    """Raised for provider types without an adapter implementation."""
    code = "UNSUPPORTED_PROVIDER"

    def __init__(self, provider: str, operation: Optional[str] = None):
        message = f"Provider '{provider}' is not supported"
        if operation:
            message = f"Provider '{provider}' does not support {operation}"
        super().__init__(message, {"provider": provider, "operation": operation})
        self.provider = provider


class InvalidStateError(MachinaError):
    """Raised when an operation is not allowed in the current state."""
    code = "INVALID_STATE"

    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(message, {"current_state": current_state} if current_state else None)
        self.current_state = current_state


class InvalidStateTransitionError(InvalidStateError):
    """Raised when attempting an invalid state transition."""

    def __init__(self, current_state: str, attempted_state: str):
        super().__init__(
            f"Cannot transition from {current_state} to {attempted_state}",
            current_state
        )
        self.details["attempted_state"] = attempted_state
        self.attempted_state = attempted_state


class ConfigurationError(MachinaError):
    """Raised when there's an issue with configuration."""
    code = "CONFIGURATION_ERROR"
