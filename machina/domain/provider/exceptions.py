"""Provider account domain exceptions."""

from machina.domain.core.exceptions import NotFoundError, ConflictError


class ProviderAccountNotFoundError(NotFoundError):
    """Raised when a provider account is not found."""

    def __init__(self, provider_account_id: str):
        super().__init__("ProviderAccount", provider_account_id)


class ProviderHasMachinesError(ConflictError):
    """Raised when deleting an account that machines still reference."""

    def __init__(self, provider_account_id: str, machine_count: int):
        super().__init__(
            f"Provider account {provider_account_id} is used by {machine_count} machine(s)",
            {"provider_account_id": provider_account_id, "machine_count": machine_count}
        )
