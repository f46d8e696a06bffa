"""Deployment domain exceptions."""

from machina.domain.core.exceptions import NotFoundError, ConflictError


class DeploymentNotFoundError(NotFoundError):
    """Raised when a deployment is not found."""

    def __init__(self, deployment_id: str):
        super().__init__("Deployment", deployment_id)


class ActiveDeploymentConflictError(ConflictError):
    """Raised when a machine already has a non-terminal deployment."""

    def __init__(self, machine_id: str, active_deployment_id: str = None):
        super().__init__(
            f"Machine {machine_id} already has an active deployment",
            {"machine_id": machine_id, "active_deployment_id": active_deployment_id}
        )
        self.machine_id = machine_id
        self.active_deployment_id = active_deployment_id
