from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from machina.domain.deployment.value_objects import DeploymentType, DeploymentState, PlanSummary
from machina.domain.core.common_types import utcnow, generate_id, parse_datetime, format_datetime
from machina.domain.core.exceptions import InvalidStateError, InvalidStateTransitionError
from machina.domain.core.events import ResourceStateChangedEvent

# Terminal states have no outgoing transitions
VALID_TRANSITIONS = {
    DeploymentState.QUEUED: {
        DeploymentState.PLANNING: "Deployment picked up",
        DeploymentState.CANCELLED: "Deployment cancelled before start",
        DeploymentState.FAILED: "Deployment failed before start"
    },
    DeploymentState.PLANNING: {
        DeploymentState.AWAITING_APPROVAL: "Plan requires approval",
        DeploymentState.APPLYING: "Plan auto-approved",
        DeploymentState.CANCELLED: "Deployment cancelled during planning",
        DeploymentState.FAILED: "Planning failed"
    },
    DeploymentState.AWAITING_APPROVAL: {
        DeploymentState.APPLYING: "Plan approved",
        DeploymentState.CANCELLED: "Deployment cancelled while awaiting approval",
        DeploymentState.FAILED: "Deployment failed while awaiting approval"
    },
    DeploymentState.APPLYING: {
        DeploymentState.SUCCEEDED: "Apply completed successfully",
        DeploymentState.FAILED: "Apply failed",
        DeploymentState.CANCELLED: "Deployment cancelled during apply"
    },
    DeploymentState.SUCCEEDED: {},
    DeploymentState.FAILED: {},
    DeploymentState.CANCELLED: {}
}


@dataclass
class Deployment:
    """Deployment aggregate root.

    A deployment is owned exclusively by the orchestrator and becomes
    immutable once it reaches a terminal state.
    """
    deployment_id: str
    type: DeploymentType
    machine_id: Optional[str]
    state: DeploymentState = DeploymentState.QUEUED
    terraform_workspace: Optional[str] = None
    plan_summary: Optional[PlanSummary] = None
    terraform_plan: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    initiated_by: str = "system"
    error_message: Optional[str] = None
    message: str = ""
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    approval_requested_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    version: int = field(default=0, repr=False, compare=False)
    _events: List[ResourceStateChangedEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(cls,
               deployment_type: DeploymentType,
               machine_id: Optional[str],
               parameters: Optional[Dict[str, Any]] = None,
               initiated_by: str = "system",
               terraform_workspace: Optional[str] = None) -> Deployment:
        return cls(
            deployment_id=generate_id("deploy", 12),
            type=deployment_type,
            machine_id=machine_id,
            parameters=dict(parameters or {}),
            initiated_by=initiated_by,
            terraform_workspace=terraform_workspace
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_active(self) -> bool:
        return not self.state.is_terminal

    @property
    def events(self) -> List[ResourceStateChangedEvent]:
        return self._events.copy()

    def clear_events(self) -> None:
        self._events.clear()

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise InvalidStateError(
                f"Deployment {self.deployment_id} is {self.state.value} and can no longer change",
                self.state.value
            )

    def update_state(self, new_state: DeploymentState, message: Optional[str] = None) -> None:
        """Move to ``new_state`` following the transition table."""
        self._ensure_mutable()
        if self.state == new_state:
            return

        if new_state not in VALID_TRANSITIONS.get(self.state, {}):
            raise InvalidStateTransitionError(self.state.value, new_state.value)

        old_state = self.state
        self.state = new_state
        self.message = message or VALID_TRANSITIONS[old_state][new_state]

        now = utcnow()
        if new_state == DeploymentState.PLANNING:
            self.started_at = now
        if new_state == DeploymentState.AWAITING_APPROVAL:
            self.approval_requested_at = now
        if new_state.is_terminal:
            self.finished_at = now

        self._events.append(
            ResourceStateChangedEvent(
                resource_id=self.deployment_id,
                resource_type="Deployment",
                old_state=old_state.value,
                new_state=new_state.value,
                details={"message": message, "machine_id": self.machine_id} if message else None
            )
        )

    def record_plan(self, summary: PlanSummary, raw_plan: Optional[str] = None) -> None:
        self._ensure_mutable()
        self.plan_summary = summary
        self.terraform_plan = raw_plan

    def request_cancel(self) -> None:
        self._ensure_mutable()
        self.cancel_requested = True

    def succeed(self, outputs: Optional[Dict[str, Any]] = None) -> None:
        self._ensure_mutable()
        self.outputs = dict(outputs or {})
        self.update_state(DeploymentState.SUCCEEDED)

    def fail(self, error_message: str) -> None:
        self._ensure_mutable()
        self.error_message = error_message
        self.update_state(DeploymentState.FAILED, error_message)

    def cancel(self, message: Optional[str] = None) -> None:
        self.update_state(DeploymentState.CANCELLED, message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert deployment to dictionary."""
        return {
            "deployment_id": self.deployment_id,
            "type": self.type.value,
            "state": self.state.value,
            "machine_id": self.machine_id,
            "terraform_workspace": self.terraform_workspace,
            "plan_summary": self.plan_summary.to_dict() if self.plan_summary else None,
            "terraform_plan": self.terraform_plan,
            "parameters": self.parameters,
            "outputs": self.outputs,
            "initiated_by": self.initiated_by,
            "error_message": self.error_message,
            "message": self.message,
            "cancel_requested": self.cancel_requested,
            "created_at": format_datetime(self.created_at),
            "started_at": format_datetime(self.started_at),
            "approval_requested_at": format_datetime(self.approval_requested_at),
            "finished_at": format_datetime(self.finished_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Deployment:
        """Create deployment from dictionary."""
        plan = data.get("plan_summary")
        return cls(
            deployment_id=data["deployment_id"],
            type=DeploymentType(data["type"]),
            state=DeploymentState(data["state"]),
            machine_id=data.get("machine_id"),
            terraform_workspace=data.get("terraform_workspace"),
            plan_summary=PlanSummary.from_dict(plan) if plan else None,
            terraform_plan=data.get("terraform_plan"),
            parameters=data.get("parameters", {}),
            outputs=data.get("outputs", {}),
            initiated_by=data.get("initiated_by", "system"),
            error_message=data.get("error_message"),
            message=data.get("message", ""),
            cancel_requested=data.get("cancel_requested", False),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            started_at=parse_datetime(data.get("started_at")),
            approval_requested_at=parse_datetime(data.get("approval_requested_at")),
            finished_at=parse_datetime(data.get("finished_at")),
        )
