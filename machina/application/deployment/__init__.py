"""Deployment state machine."""

from .approval import ApprovalDecision, ApprovalPolicy
from .log_stream import DeploymentLogStream, LogSubscription
from .scheduler import JobScheduler, ManualJobScheduler, ThreadPoolJobScheduler
from .service import DeploymentOrchestrator, RecoveryReport
from .service_agent import ServiceAgent, UnavailableServiceAgent

__all__ = [
    "ApprovalDecision",
    "ApprovalPolicy",
    "DeploymentLogStream",
    "LogSubscription",
    "JobScheduler",
    "ManualJobScheduler",
    "ThreadPoolJobScheduler",
    "DeploymentOrchestrator",
    "RecoveryReport",
    "ServiceAgent",
    "UnavailableServiceAgent",
]
