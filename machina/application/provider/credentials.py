"""Loading decrypted provider credentials for an account."""
from machina.domain.core.exceptions import ValidationError
from machina.domain.provider.credentials import parse_credentials
from machina.infrastructure.vault.secret_store import SecretStore


def resolve_credentials(secret_store: SecretStore, provider_account_id: str, provider_type: str):
    """
    Decrypt and validate the stored credentials of a provider account.

    Raises:
        ValidationError: If the account has no stored credentials
        DecryptionFailedError: If the stored secret cannot be decrypted
    """
    data = secret_store.get_credentials(provider_account_id)
    if data is None:
        raise ValidationError(
            f"Provider account {provider_account_id} has no stored credentials",
            {"reason": "NO_CREDENTIALS", "provider_account_id": provider_account_id}
        )
    return parse_credentials(data, provider_type)
