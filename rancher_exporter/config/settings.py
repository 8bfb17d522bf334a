"""
Configuration for the Rancher exporter.

Values come from a YAML file, from environment variables, or both; the
environment always wins over the file.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from rancher_exporter.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Field name -> environment variable
ENV_VARS: Dict[str, str] = {
    "rancher_url": "CATTLE_URL",
    "access_key": "CATTLE_ACCESS_KEY",
    "secret_key": "CATTLE_SECRET_KEY",
    "hide_system": "HIDE_SYS",
    "update_interval": "UPDATE_INTERVAL",
    "listen_address": "LISTEN_ADDRESS",
    "listen_port": "LISTEN_PORT",
    "verify_ssl": "VERIFY_SSL",
    "request_timeout": "REQUEST_TIMEOUT",
    "stop_timeout": "STOP_TIMEOUT",
    "log_level": "LOG_LEVEL",
}

REQUIRED_FIELDS = ("rancher_url", "access_key", "secret_key")


class ExporterConfig(BaseModel):
    """Complete exporter configuration."""

    rancher_url: str = Field(default="", description="Rancher API URL, e.g. http://host:8080/v1")
    access_key: str = Field(default="", description="Rancher API access key")
    secret_key: str = Field(default="", description="Rancher API secret key")
    hide_system: bool = Field(default=True, description="Hide system stacks and services")
    update_interval: float = Field(default=10, gt=0, description="Seconds between cycles")
    listen_address: str = Field(default="0.0.0.0", description="Metrics server bind address")
    listen_port: int = Field(default=9173, ge=1, le=65535, description="Metrics server port")
    verify_ssl: bool = Field(
        default=True, description="Verify Rancher TLS certificates (false is insecure)"
    )
    request_timeout: float = Field(default=10, gt=0, description="HTTP request timeout")
    stop_timeout: float = Field(default=5, ge=0, description="Grace period on shutdown")
    log_level: str = Field(default="INFO", description="Console log level")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value}")
        return level

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, base: Optional[Dict[str, Any]] = None
    ) -> "ExporterConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)
            base: Values to start from, overridden by the environment

        Raises:
            ConfigurationError: a value does not validate
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = dict(base or {})
        for field_name, env_name in ENV_VARS.items():
            if environ.get(env_name) not in (None, ""):
                values[field_name] = environ[env_name]

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(
        cls, config_path: str, environ: Optional[Mapping[str, str]] = None
    ) -> "ExporterConfig":
        """
        Load configuration from a YAML file, then apply environment overrides.

        Raises:
            ConfigurationError: unreadable file or invalid values
        """
        path = Path(config_path)
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration {path} must be a mapping")

        logger.debug(f"Loaded configuration from {path}")
        return cls.from_env(environ, base=data)

    def save(self, config_path: str) -> None:
        """Write configuration to a YAML file, without the secret key."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude={"secret_key"})
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)

    def missing_credentials(self) -> List[str]:
        """Environment variable names of required values that are not set."""
        return [ENV_VARS[name] for name in REQUIRED_FIELDS if not getattr(self, name)]

    def require_credentials(self) -> None:
        """
        Raises:
            ConfigurationError: naming every missing required variable
        """
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )
