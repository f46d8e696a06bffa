"""Encrypted secret storage backed by SQLite."""
import json
from typing import Any, Dict, Optional

from machina.domain.core.common_types import utcnow
from machina.domain.core.exceptions import DecryptionFailedError
from machina.infrastructure.persistence.sqlite_repository import SQLiteStore
from machina.infrastructure.vault.credential_vault import CredentialVault, EncryptedSecret

SCOPE_PROVIDER_CREDENTIALS = "provider_credentials"
SCOPE_SSH_PRIVATE_KEY = "ssh_private_key"


class SecretStore(SQLiteStore):
    """
    Stores :class:`EncryptedSecret` records keyed by ``(scope, owner_id)``.

    Plaintext only exists in memory for the duration of a call. The owner
    id is bound as associated data.
    """

    def __init__(self, vault: CredentialVault, db_path: str, enable_wal: bool = True):
        super().__init__(db_path, enable_wal)
        self._vault = vault
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS secrets (
                    scope TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (scope, owner_id)
                )
            """)

    @staticmethod
    def _context(scope: str, owner_id: str) -> str:
        return f"{scope}:{owner_id}"

    def put(self, scope: str, owner_id: str, plaintext: bytes) -> None:
        secret = self._vault.encrypt(plaintext, self._context(scope, owner_id))
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO secrets (scope, owner_id, data, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(scope, owner_id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (scope, owner_id, json.dumps(secret.to_dict()), utcnow().isoformat())
            )
        self._logger.info("Stored secret", scope=scope, owner_id=owner_id)

    def get(self, scope: str, owner_id: str) -> Optional[bytes]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT data FROM secrets WHERE scope = ? AND owner_id = ?",
                (scope, owner_id)
            ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row[0])
        except json.JSONDecodeError:
            raise DecryptionFailedError(f"Stored secret for {owner_id} is corrupt")
        secret = EncryptedSecret.from_dict(payload)
        return self._vault.decrypt(secret, self._context(scope, owner_id))

    def exists(self, scope: str, owner_id: str) -> bool:
        with self._read() as conn:
            row = conn.execute(
                "SELECT 1 FROM secrets WHERE scope = ? AND owner_id = ?",
                (scope, owner_id)
            ).fetchone()
        return row is not None

    def delete(self, scope: str, owner_id: str) -> None:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM secrets WHERE scope = ? AND owner_id = ?", (scope, owner_id))

    # Provider credentials

    def store_credentials(self, provider_account_id: str, credentials: Dict[str, Any]) -> None:
        self.put(SCOPE_PROVIDER_CREDENTIALS, provider_account_id,
                 json.dumps(credentials).encode("utf-8"))

    def get_credentials(self, provider_account_id: str) -> Optional[Dict[str, Any]]:
        plaintext = self.get(SCOPE_PROVIDER_CREDENTIALS, provider_account_id)
        if plaintext is None:
            return None
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise DecryptionFailedError(f"Decrypted credentials for {provider_account_id} are not valid JSON")

    def delete_credentials(self, provider_account_id: str) -> None:
        self.delete(SCOPE_PROVIDER_CREDENTIALS, provider_account_id)

    def has_credentials(self, provider_account_id: str) -> bool:
        return self.exists(SCOPE_PROVIDER_CREDENTIALS, provider_account_id)

    # SSH keys

    def store_private_key(self, ssh_key_id: str, private_key: str) -> None:
        self.put(SCOPE_SSH_PRIVATE_KEY, ssh_key_id, private_key.encode("utf-8"))

    def get_private_key(self, ssh_key_id: str) -> Optional[str]:
        plaintext = self.get(SCOPE_SSH_PRIVATE_KEY, ssh_key_id)
        return plaintext.decode("utf-8") if plaintext is not None else None
