"""Unified configuration management for the application."""
from __future__ import annotations
import json
import os
import threading
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from machina.config.schemas.app_schema import AppConfig
from machina.config.utils.env_expansion import expand_config_env_vars
from machina.domain.core.exceptions import ConfigurationError

CONFIG_ENV_VAR = "MACHINA_CONFIG"


class ConfigurationManager:
    """
    Single source of truth for application configuration.

    Configuration is read from a YAML or JSON file (explicit path, or the
    file named by ``MACHINA_CONFIG``), environment references are expanded,
    and the result is validated into :class:`AppConfig`. With no file the
    defaults apply. Loading is lazy and thread-safe.
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or os.environ.get(CONFIG_ENV_VAR)
        self._lock = threading.RLock()
        self._app_config: Optional[AppConfig] = None

    @property
    def config_file(self) -> Optional[str]:
        return self._config_file

    @property
    def app_config(self) -> AppConfig:
        """Lazy load application configuration."""
        if self._app_config is None:
            with self._lock:
                if self._app_config is None:
                    self._app_config = self._load_app_config()
        return self._app_config

    def reload(self) -> AppConfig:
        with self._lock:
            self._app_config = None
            return self.app_config

    def _load_app_config(self) -> AppConfig:
        data: Dict[str, Any] = {}
        if self._config_file:
            data = self.load_file(self._config_file)
        data = expand_config_env_vars(data)
        try:
            return AppConfig.from_dict(data)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration: {e.error_count()} error(s)",
                {"errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ]}
            )

    @staticmethod
    def load_file(path: str) -> Dict[str, Any]:
        """Read a YAML or JSON configuration file into a dictionary."""
        if not os.path.exists(path):
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.endswith(".json"):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read configuration file {path}: {e}")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        return data
