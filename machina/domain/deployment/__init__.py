"""Deployment bounded context."""

from .deployment_aggregate import Deployment, VALID_TRANSITIONS
from .value_objects import (
    DeploymentType,
    DeploymentState,
    DeploymentLog,
    LogLevel,
    LogSource,
    PlanSummary,
    ResourceAction,
    ResourceChange,
)
from .exceptions import DeploymentNotFoundError, ActiveDeploymentConflictError

__all__ = [
    "Deployment",
    "VALID_TRANSITIONS",
    "DeploymentType",
    "DeploymentState",
    "DeploymentLog",
    "LogLevel",
    "LogSource",
    "PlanSummary",
    "ResourceAction",
    "ResourceChange",
    "DeploymentNotFoundError",
    "ActiveDeploymentConflictError",
]
