"""Main application configuration schema."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .logging_schema import LoggingConfig
from .server_schema import ServerConfig


class StorageConfig(BaseModel):
    """SQLite storage configuration."""

    db_path: str = Field("data/machina.db", description="SQLite database file")
    enable_wal: bool = Field(True, description="Enable write-ahead logging")


class VaultConfig(BaseModel):
    """Credential vault configuration."""

    key_env_var: str = Field("MACHINA_ENCRYPTION_KEY", description="Environment variable holding the hex master key")
    key_file: str = Field("data/.encryption_key", description="Key file used when the variable is unset")
    key_version: int = Field(1, description="Version stamped on newly encrypted secrets")


class TerraformConfig(BaseModel):
    """Terraform execution wrapper configuration."""

    binary: str = Field("terraform", description="Terraform executable name or path")
    workspaces_dir: str = Field("data/terraform-workspaces", description="Root of per-machine workspaces")
    modules_dir: Optional[str] = Field(None, description="Module root; defaults to the bundled modules")
    output_tail_lines: int = Field(40, description="Output lines kept for error reports")
    init_timeout: int = Field(300, description="Timeout for terraform init in seconds")
    plan_timeout: int = Field(600, description="Timeout for terraform plan in seconds")
    apply_timeout: int = Field(1800, description="Timeout for terraform apply/destroy in seconds")

    @field_validator("output_tail_lines")
    @classmethod
    def validate_tail(cls, v: int) -> int:
        if v < 1:
            raise ValueError("output_tail_lines must be at least 1")
        return v


class OrchestratorConfig(BaseModel):
    """Deployment state machine configuration."""

    max_workers: int = Field(4, description="Concurrent deployment jobs")
    auto_approve: bool = Field(True, description="Allow non-destructive small plans to skip approval")
    max_auto_approve_resources: int = Field(10, description="Add+change count at which approval is required")
    approval_timeout_seconds: int = Field(3600, description="Awaiting-approval deployments are cancelled after this")
    state_poll_interval: float = Field(
        1.0, description="Seconds between store checks for approvals and cancels recorded by another process"
    )
    reboot_poll_interval: float = Field(5.0, description="Seconds between reboot status polls")
    reboot_poll_attempts: int = Field(30, description="Status polls before a reboot is failed")
    log_buffer_lines: int = Field(5000, description="In-memory log lines kept per deployment")

    @field_validator("max_workers", "max_auto_approve_resources")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("state_poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("state_poll_interval must be greater than 0")
        return v


class ReconciliationConfig(BaseModel):
    """Reconciliation engine configuration."""

    enabled: bool = Field(True, description="Run reconciliation on a fixed interval")
    interval_seconds: int = Field(300, description="Seconds between reconciliation passes")


class ProvidersConfig(BaseModel):
    """Provider API configuration."""

    digitalocean_api_url: str = Field("https://api.digitalocean.com/v2", description="DigitalOcean API base URL")
    request_timeout: float = Field(30.0, description="HTTP timeout for provider APIs in seconds")
    aws_retry_attempts: int = Field(3, description="botocore retry attempts")
    aws_connect_timeout_ms: int = Field(1000, description="botocore connect timeout")


class AppConfig(BaseModel):
    """Application configuration."""

    version: str = Field("1.0.0", description="Configuration version")
    environment: str = Field("development", description="Environment")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    terraform: TerraformConfig = Field(default_factory=TerraformConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """
        Validate environment.

        Raises:
            ValueError: If environment is invalid
        """
        valid_environments = ["development", "testing", "staging", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}")
        return v

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        return cls.model_validate(data or {})
