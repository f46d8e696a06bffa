"""Configuration package."""

from .schemas.app_schema import (
    AppConfig,
    StorageConfig,
    VaultConfig,
    TerraformConfig,
    OrchestratorConfig,
    ReconciliationConfig,
    ProvidersConfig,
)
from .schemas.logging_schema import LoggingConfig
from .schemas.server_schema import ServerConfig
from .manager import ConfigurationManager

__all__ = [
    "AppConfig",
    "StorageConfig",
    "VaultConfig",
    "TerraformConfig",
    "OrchestratorConfig",
    "ReconciliationConfig",
    "ProvidersConfig",
    "LoggingConfig",
    "ServerConfig",
    "ConfigurationManager",
]
