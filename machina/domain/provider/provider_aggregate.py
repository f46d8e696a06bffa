from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from machina.domain.machine.value_objects import ProviderType
from machina.domain.core.common_types import utcnow, parse_datetime, format_datetime
import secrets


class CredentialStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    UNCHECKED = "unchecked"


@dataclass
class ProviderAccount:
    """A linked cloud provider account.

    The record never carries credentials; those live encrypted in the
    secret store under ``provider_account_id``.
    """
    provider_account_id: str
    provider_type: ProviderType
    label: str
    credential_status: CredentialStatus = CredentialStatus.UNCHECKED
    last_verified_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = field(default=0, repr=False, compare=False)

    @classmethod
    def create(cls, provider_type: ProviderType, label: str,
               metadata: Optional[Dict[str, Any]] = None) -> ProviderAccount:
        return cls(
            provider_account_id=f"pa_{provider_type.value}_{secrets.token_hex(4)}",
            provider_type=provider_type,
            label=label,
            metadata=dict(metadata or {})
        )

    def rename(self, label: str) -> None:
        self.label = label
        self.updated_at = utcnow()

    def record_verification(self, status: CredentialStatus) -> None:
        now = utcnow()
        self.credential_status = status
        self.last_verified_at = now
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_account_id": self.provider_account_id,
            "provider_type": self.provider_type.value,
            "label": self.label,
            "credential_status": self.credential_status.value,
            "last_verified_at": format_datetime(self.last_verified_at),
            "metadata": self.metadata,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProviderAccount:
        return cls(
            provider_account_id=data["provider_account_id"],
            provider_type=ProviderType(data["provider_type"]),
            label=data["label"],
            credential_status=CredentialStatus(data.get("credential_status", "unchecked")),
            last_verified_at=parse_datetime(data.get("last_verified_at")),
            metadata=data.get("metadata", {}),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
        )
