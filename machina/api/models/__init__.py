from .requests import (
    CreateMachineRequest,
    CreateProviderAccountRequest,
    SubmitDeploymentRequest,
    UpdateProviderAccountRequest,
)

__all__ = [
    "CreateMachineRequest",
    "CreateProviderAccountRequest",
    "SubmitDeploymentRequest",
    "UpdateProviderAccountRequest",
]
