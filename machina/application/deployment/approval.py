"""Plan approval policy."""
from dataclasses import dataclass

from machina.config.schemas.app_schema import OrchestratorConfig
from machina.domain.deployment.value_objects import DeploymentType, PlanSummary


@dataclass(frozen=True)
class ApprovalDecision:
    auto_approved: bool
    reason: str


class ApprovalPolicy:
    """
    Decides whether a plan may be applied without a human.

    A plan is auto-approved only when auto-approval is enabled, it destroys
    nothing (replacements count as destruction) and it adds or changes fewer
    than ``max_resources`` resources. Destroy deployments always wait.
    """

    def __init__(self, auto_approve: bool = True, max_resources: int = 10):
        self.auto_approve = auto_approve
        self.max_resources = max_resources

    @classmethod
    def from_config(cls, config: OrchestratorConfig) -> "ApprovalPolicy":
        return cls(config.auto_approve, config.max_auto_approve_resources)

    def evaluate(self, summary: PlanSummary, deployment_type: DeploymentType) -> ApprovalDecision:
        if not self.auto_approve:
            return ApprovalDecision(False, "Auto-approval is disabled")
        if deployment_type == DeploymentType.DESTROY:
            return ApprovalDecision(False, "Destroy deployments require approval")
        if summary.resources_to_destroy > 0:
            return ApprovalDecision(
                False, f"Plan destroys {summary.resources_to_destroy} resource(s)"
            )
        touched = summary.resources_to_add + summary.resources_to_change
        if touched >= self.max_resources:
            return ApprovalDecision(
                False, f"Plan touches {touched} resources (limit {self.max_resources})"
            )
        return ApprovalDecision(True, "Plan auto-approved")
