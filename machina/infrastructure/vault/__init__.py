"""Credential vault and encrypted secret storage."""

from .credential_vault import (
    CredentialVault,
    EncryptedSecret,
    generate_master_key,
    load_master_key,
)
from .secret_store import SecretStore

__all__ = [
    "CredentialVault",
    "EncryptedSecret",
    "generate_master_key",
    "load_master_key",
    "SecretStore",
]
