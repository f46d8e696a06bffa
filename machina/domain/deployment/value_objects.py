"""Deployment value objects."""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from machina.domain.core.common_types import utcnow, parse_datetime


class DeploymentType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    REBOOT = "reboot"
    RESTART_SERVICE = "restart_service"
    REFRESH = "refresh"

    @property
    def uses_terraform(self) -> bool:
        return self not in (DeploymentType.REBOOT, DeploymentType.RESTART_SERVICE)


class DeploymentState(str, Enum):
    QUEUED = "queued"
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentState.SUCCEEDED, DeploymentState.FAILED, DeploymentState.CANCELLED)


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogSource(str, Enum):
    TERRAFORM = "terraform"
    SYSTEM = "system"
    PROVIDER = "provider"


class ResourceAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"
    READ = "read"


@dataclass(frozen=True)
class ResourceChange:
    address: str
    action: ResourceAction
    resource_type: str
    resource_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "resource_type": self.resource_type,
            "resource_name": self.resource_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ResourceChange:
        return cls(
            address=data["address"],
            action=ResourceAction(data["action"]),
            resource_type=data.get("resource_type", ""),
            resource_name=data.get("resource_name", ""),
        )


@dataclass(frozen=True)
class PlanSummary:
    """Normalized summary of a Terraform plan.

    A replace counts both as an addition and as a destruction.
    """
    resources_to_add: int = 0
    resources_to_change: int = 0
    resources_to_destroy: int = 0
    resource_changes: List[ResourceChange] = field(default_factory=list)

    @classmethod
    def from_changes(cls, changes: List[ResourceChange]) -> PlanSummary:
        add = change = destroy = 0
        for item in changes:
            if item.action == ResourceAction.CREATE:
                add += 1
            elif item.action == ResourceAction.UPDATE:
                change += 1
            elif item.action == ResourceAction.DELETE:
                destroy += 1
            elif item.action == ResourceAction.REPLACE:
                add += 1
                destroy += 1
        return cls(add, change, destroy, list(changes))

    @property
    def is_empty(self) -> bool:
        return self.resources_to_add == 0 and self.resources_to_change == 0 and self.resources_to_destroy == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resources_to_add": self.resources_to_add,
            "resources_to_change": self.resources_to_change,
            "resources_to_destroy": self.resources_to_destroy,
            "resource_changes": [c.to_dict() for c in self.resource_changes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PlanSummary:
        return cls(
            resources_to_add=data.get("resources_to_add", 0),
            resources_to_change=data.get("resources_to_change", 0),
            resources_to_destroy=data.get("resources_to_destroy", 0),
            resource_changes=[ResourceChange.from_dict(c) for c in data.get("resource_changes", [])],
        )


@dataclass(frozen=True)
class DeploymentLog:
    """A single line of deployment output."""
    deployment_id: str
    message: str
    level: LogLevel = LogLevel.INFO
    source: LogSource = LogSource.SYSTEM
    timestamp: datetime = field(default_factory=utcnow)
    sequence: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "source": self.source.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeploymentLog:
        return cls(
            deployment_id=data["deployment_id"],
            message=data["message"],
            level=LogLevel(data.get("level", "info")),
            source=LogSource(data.get("source", "system")),
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
            sequence=data.get("sequence"),
        )
