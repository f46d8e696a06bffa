"""
Credential vault.

Secrets are sealed with AES-256-GCM under a process-wide master key. The
vault only encrypts and decrypts; callers decide where the resulting
:class:`EncryptedSecret` is stored. An optional context string is bound as
associated data, so a ciphertext copied to another owner fails to decrypt.
"""
from __future__ import annotations
import base64
import binascii
import os
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from machina.domain.core.exceptions import ConfigurationError, DecryptionFailedError
from machina.infrastructure.logging.logger import get_logger

ALGORITHM = "AES-256-GCM"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16

logger = get_logger(__name__)


@dataclass(frozen=True)
class EncryptedSecret:
    """Sealed secret. Never log it and never return it from the API."""
    algorithm: str
    key_version: int
    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def __repr__(self) -> str:
        return f"EncryptedSecret(algorithm={self.algorithm!r}, key_version={self.key_version})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "key_version": self.key_version,
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "tag": base64.b64encode(self.tag).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EncryptedSecret:
        try:
            return cls(
                algorithm=data["algorithm"],
                key_version=int(data["key_version"]),
                nonce=base64.b64decode(data["nonce"], validate=True),
                ciphertext=base64.b64decode(data["ciphertext"], validate=True),
                tag=base64.b64decode(data["tag"], validate=True),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise DecryptionFailedError(f"Malformed encrypted secret: {type(e).__name__}")


class CredentialVault:
    """Encrypts and decrypts secrets with AES-256-GCM."""

    def __init__(self, master_key: bytes, key_version: int = 1):
        if len(master_key) != KEY_BYTES:
            raise ConfigurationError(f"Master key must be {KEY_BYTES} bytes, got {len(master_key)}")
        self._aead = AESGCM(master_key)
        self._key_version = key_version

    def __repr__(self) -> str:
        return f"CredentialVault(key_version={self._key_version})"

    @property
    def key_version(self) -> int:
        return self._key_version

    def encrypt(self, plaintext: bytes, context: str = "") -> EncryptedSecret:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext, context.encode("utf-8") or None)
        return EncryptedSecret(
            algorithm=ALGORITHM,
            key_version=self._key_version,
            nonce=nonce,
            ciphertext=sealed[:-TAG_BYTES],
            tag=sealed[-TAG_BYTES:],
        )

    def decrypt(self, secret: EncryptedSecret, context: str = "") -> bytes:
        """
        Authenticate and decrypt a secret.

        Raises:
            DecryptionFailedError: On algorithm or key-version mismatch, or
                when authentication fails (tampering, wrong key, wrong context)
        """
        if secret.algorithm != ALGORITHM:
            raise DecryptionFailedError(f"Unsupported algorithm: {secret.algorithm}")
        if secret.key_version != self._key_version:
            raise DecryptionFailedError(
                f"Secret was sealed with key version {secret.key_version}, "
                f"vault holds version {self._key_version}"
            )
        if len(secret.nonce) != NONCE_BYTES or len(secret.tag) != TAG_BYTES:
            raise DecryptionFailedError("Malformed encrypted secret")
        try:
            return self._aead.decrypt(
                secret.nonce,
                secret.ciphertext + secret.tag,
                context.encode("utf-8") or None
            )
        except InvalidTag:
            raise DecryptionFailedError("Secret failed authentication")


def generate_master_key() -> str:
    """New random master key as 64 hex characters."""
    return secrets.token_hex(KEY_BYTES)


def _decode_key(value: str, source: str) -> bytes:
    try:
        key = bytes.fromhex(value.strip())
    except ValueError:
        raise ConfigurationError(f"Master key from {source} is not valid hex")
    if len(key) != KEY_BYTES:
        raise ConfigurationError(f"Master key from {source} must be {KEY_BYTES * 2} hex characters")
    return key


def load_master_key(env_var: str = "MACHINA_ENCRYPTION_KEY", key_file: Optional[str] = None) -> bytes:
    """
    Load the master key once at process start.

    The environment variable wins. Otherwise the key file is read, and
    created with mode 0600 when it does not exist yet.

    Raises:
        ConfigurationError: If no source is available or the key is malformed
    """
    value = os.environ.get(env_var)
    if value:
        logger.info("Master key loaded from environment", env_var=env_var)
        return _decode_key(value, env_var)

    if not key_file:
        raise ConfigurationError(f"No master key: set {env_var} or configure a key file")

    if os.path.exists(key_file):
        with open(key_file, "r", encoding="ascii") as f:
            key = _decode_key(f.read(), key_file)
        logger.info("Master key loaded from file", key_file=key_file)
        return key

    key_dir = os.path.dirname(key_file)
    if key_dir:
        os.makedirs(key_dir, exist_ok=True)
    hex_key = generate_master_key()
    fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(hex_key)
    logger.warning("Generated new master key file", key_file=key_file)
    return bytes.fromhex(hex_key)
