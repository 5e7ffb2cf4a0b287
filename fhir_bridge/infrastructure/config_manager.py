"""Configuration Manager for the FHIR Server Connection.

This module loads and validates the settings needed to talk to the remote
FHIR store: base URL, identifier systems, timeouts and credentials.

Security Impact:
    - The bearer token is held as SecretStr and never logged
    - Configuration is validated before any connection is attempted
    - Invalid configuration is a start-up failure, not a runtime surprise

Architecture:
    - Infrastructure layer, isolated from the domain core
    - Type-safe configuration using Pydantic models
    - Two sources: environment variables (``FB_`` prefix) and JSON files
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

from fhir_bridge.domain.converters import (
    OBSERVATION_IDENTIFIER_SYSTEM,
    ORGANIZATION_IDENTIFIER_SYSTEM,
    PATIENT_IDENTIFIER_SYSTEM,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "FB_"


class FhirServerConfig(BaseModel):
    """Connection settings for the remote FHIR R4 server.

    Parameters:
        base_url: Service base URL (e.g. ``https://fhir.example.org/fhir``)
        timeout_seconds: Total timeout for a single request
        identifier_system: System URI of patient business identifiers
        observation_identifier_system: System URI of observation identifiers
        organization_identifier_system: System URI of organization identifiers
        verify_ssl: Verify the server's TLS certificate
        auth_token: Bearer token (SecretStr - never logged)
        page_size: Default page size for list calls
    """

    base_url: str = Field(..., description="FHIR service base URL")
    timeout_seconds: float = Field(default=30, gt=0, description="Request timeout in seconds")
    identifier_system: str = Field(default=PATIENT_IDENTIFIER_SYSTEM)
    observation_identifier_system: str = Field(default=OBSERVATION_IDENTIFIER_SYSTEM)
    organization_identifier_system: str = Field(default=ORGANIZATION_IDENTIFIER_SYSTEM)
    verify_ssl: bool = Field(default=True)
    auth_token: Optional[SecretStr] = Field(None, description="Bearer token (secret)")
    page_size: int = Field(default=10, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an absolute http(s) URL; strip the trailing slash."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"base_url must be an absolute http(s) URL, got '{v}'")
        return v.rstrip("/")


class ConfigManager:
    """Loads FhirServerConfig from the environment or a JSON file.

    Example Usage:
        ```python
        config = ConfigManager.from_environment()
        server = config.get_fhir_config()

        config = ConfigManager.from_file("fhir-bridge.json")
        server = config.get_fhir_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._fhir_config: Optional[FhirServerConfig] = None

    @classmethod
    def from_environment(cls) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - FB_FHIR_BASE_URL: Service base URL
            - FB_FHIR_TIMEOUT: Request timeout in seconds
            - FB_IDENTIFIER_SYSTEM: Patient identifier system URI
            - FB_OBSERVATION_IDENTIFIER_SYSTEM: Observation identifier system URI
            - FB_ORGANIZATION_IDENTIFIER_SYSTEM: Organization identifier system URI
            - FB_VERIFY_SSL: ``true``/``false``
            - FB_AUTH_TOKEN: Bearer token (secret)
            - FB_PAGE_SIZE: Default page size

        A ``.env`` file in the working directory is loaded first if present.
        """
        env_path = Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        def env(name: str) -> Optional[str]:
            return os.getenv(f"{ENV_PREFIX}{name}")

        fhir = {
            "base_url": env("FHIR_BASE_URL") or "http://localhost:8080/fhir",
            "timeout_seconds": env("FHIR_TIMEOUT"),
            "identifier_system": env("IDENTIFIER_SYSTEM"),
            "observation_identifier_system": env("OBSERVATION_IDENTIFIER_SYSTEM"),
            "organization_identifier_system": env("ORGANIZATION_IDENTIFIER_SYSTEM"),
            "verify_ssl": env("VERIFY_SSL"),
            "auth_token": env("AUTH_TOKEN"),
            "page_size": env("PAGE_SIZE"),
        }
        # Unset variables fall back to the model defaults
        return cls({"fhir": {k: v for k, v in fhir.items() if v is not None}})

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file with a ``fhir`` section.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not valid JSON
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_file.stat().st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 when it holds a token."
            )

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        return cls(config_data)

    def get_fhir_config(self) -> FhirServerConfig:
        """Validated server configuration (cached after the first call).

        Raises:
            pydantic.ValidationError: If the configuration is invalid
        """
        if self._fhir_config is None:
            self._fhir_config = FhirServerConfig(**self._config_data.get("fhir", {}))
        return self._fhir_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw configuration value by dotted key (e.g. ``fhir.base_url``)."""
        value: Any = self._config_data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default


def get_fhir_config() -> FhirServerConfig:
    """Server configuration from the environment."""
    return ConfigManager.from_environment().get_fhir_config()
