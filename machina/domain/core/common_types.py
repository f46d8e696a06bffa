# machina/domain/core/common_types.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
import secrets


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def generate_id(prefix: str, length: int) -> str:
    """Generate ``<prefix>_<hex>`` identifiers with ``length`` hex characters."""
    return f"{prefix}_{secrets.token_hex((length + 1) // 2)[:length]}"


@dataclass(frozen=True)
class Tags:
    """Collection of tags with helper methods."""
    items: Dict[str, str] = field(default_factory=dict)

    def add(self, key: str, value: str) -> Tags:
        new_items = self.items.copy()
        new_items[key] = value
        return Tags(new_items)

    def remove(self, key: str) -> Tags:
        new_items = self.items.copy()
        new_items.pop(key, None)
        return Tags(new_items)

    def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def to_dict(self) -> Dict[str, str]:
        return self.items.copy()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, str]]) -> Tags:
        return cls(items=dict(data or {}))

    def to_label_list(self) -> List[str]:
        """Convert tags to ``key:value`` labels (DigitalOcean format)."""
        return [f"{k}:{v}" for k, v in self.items.items()]

    def to_aws_format(self) -> List[Dict[str, str]]:
        """Convert tags to AWS API format."""
        return [{"Key": k, "Value": v} for k, v in self.items.items()]

    @classmethod
    def from_aws_format(cls, tags: List[Dict[str, str]]) -> Tags:
        """Create Tags from AWS API format."""
        return cls(items={t["Key"]: t["Value"] for t in tags})

    def __str__(self) -> str:
        return ";".join(f"{k}={v}" for k, v in self.items.items())
