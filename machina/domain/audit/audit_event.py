from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from machina.domain.core.common_types import utcnow, parse_datetime


class AuditAction(str, Enum):
    MACHINE_CREATE = "machine.create"
    MACHINE_DESTROY = "machine.destroy"
    MACHINE_REBOOT = "machine.reboot"
    MACHINE_RECONCILE = "machine.reconcile"
    DEPLOYMENT_CREATE = "deployment.create"
    DEPLOYMENT_APPROVE = "deployment.approve"
    DEPLOYMENT_CANCEL = "deployment.cancel"
    PROVIDER_CREATE = "provider.create"
    PROVIDER_UPDATE = "provider.update"
    PROVIDER_DELETE = "provider.delete"
    PROVIDER_VERIFY = "provider.verify"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of who did what to which resource."""
    action: AuditAction
    outcome: AuditOutcome
    target_type: str
    target_id: str
    actor_id: str = "system"
    actor_type: str = "system"
    details: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:16]}")
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def by(cls, actor_id: Optional[str], action: AuditAction, outcome: AuditOutcome,
           target_type: str, target_id: str, **details: Any) -> AuditEvent:
        actor = actor_id or "system"
        return cls(
            action=action,
            outcome=outcome,
            target_type=target_type,
            target_id=target_id,
            actor_id=actor,
            actor_type="system" if actor == "system" else "user",
            details=details
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "action": self.action.value,
            "outcome": self.outcome.value,
            "actor_id": self.actor_id,
            "actor_type": self.actor_type,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AuditEvent:
        return cls(
            action=AuditAction(data["action"]),
            outcome=AuditOutcome(data["outcome"]),
            target_type=data["target_type"],
            target_id=data["target_id"],
            actor_id=data.get("actor_id", "system"),
            actor_type=data.get("actor_type", "system"),
            details=data.get("details", {}),
            event_id=data["event_id"],
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
        )
