"""Request bodies for the REST API."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BaseRequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateMachineRequest(BaseRequestModel):
    """Body of ``POST /machines``."""

    name: str = Field(..., min_length=1, max_length=63, description="Machine name")
    provider_account_id: str = Field(..., min_length=1, description="Linked provider account")
    region: str = Field(..., min_length=1, description="Provider region slug")
    size: str = Field(..., min_length=1, description="Provider size slug")
    image: str = Field(..., min_length=1, description="Provider image slug")
    tags: Dict[str, str] = Field(default_factory=dict, description="Key/value tags")
    ssh_key_ids: List[str] = Field(default_factory=list, description="SSH keys to install")
    firewall_profile_id: Optional[str] = Field(None, description="Firewall profile")
    bootstrap_profile_id: Optional[str] = Field(None, description="Bootstrap profile")
    parameters: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra module inputs such as user_data, provider_ssh_key_ids or firewall_rules",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError("name must be non-empty and contain no whitespace")
        return v


class SubmitDeploymentRequest(BaseRequestModel):
    """Body of ``POST /deployments``."""

    type: str = Field(..., description="Deployment type")
    machine_id: str = Field(..., min_length=1, description="Target machine")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Type-specific parameters")


class CreateProviderAccountRequest(BaseRequestModel):
    """Body of ``POST /providers/accounts``."""

    provider_type: str = Field(..., description="Provider type")
    label: str = Field(..., min_length=1, max_length=100, description="Display label")
    credentials: Dict[str, Any] = Field(..., description="Provider credentials")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Non-sensitive metadata")


class UpdateProviderAccountRequest(BaseRequestModel):
    """Body of ``PUT /providers/accounts/{id}``."""

    label: Optional[str] = Field(None, min_length=1, max_length=100, description="New label")
    credentials: Optional[Dict[str, Any]] = Field(None, description="Replacement credentials")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Metadata to merge")
