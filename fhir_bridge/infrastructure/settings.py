"""Application Settings.

Application-wide settings that combine the server configuration from the
configuration manager with process-level options read from the environment.

Security Impact:
    - Server credentials are managed via FhirServerConfig (SecretStr)
    - Settings never log their values
"""

import os
from pathlib import Path
from typing import Optional

from fhir_bridge.infrastructure.config_manager import ConfigManager, FhirServerConfig

APP_NAME = "fhir-bridge"
APP_VERSION = "1.0.0"

STORE_BACKENDS = ("fhir", "memory")
CONVERSION_POLICIES = ("fail_batch", "skip_and_report")

DEFAULT_CITIZENSHIP_TABLE = Path(__file__).parent / "data" / "citizenships.csv"


class Settings:
    """Application settings loaded from the environment.

    Environment Variables:
        - FB_APP_NAME: Application name shown by the CLI
        - FB_LOG_LEVEL: Logging level (default INFO)
        - FB_JSON_LOGS: Emit JSON log lines (``true``/``false``)
        - FB_STORE_BACKEND: ``fhir`` or ``memory``
        - FB_CONVERSION_POLICY: ``fail_batch`` or ``skip_and_report``
        - FB_CITIZENSHIP_TABLE: Path to the citizenship reference CSV
    """

    def __init__(self):
        self._fhir_config: Optional[FhirServerConfig] = None
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("FB_APP_NAME", APP_NAME)
        self.log_level = os.getenv("FB_LOG_LEVEL", "INFO")
        self.json_logs = os.getenv("FB_JSON_LOGS", "false").lower() == "true"

        self.store_backend = os.getenv("FB_STORE_BACKEND", "fhir").lower()
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(f"FB_STORE_BACKEND must be one of {STORE_BACKENDS}, got '{self.store_backend}'")

        self.conversion_policy = os.getenv("FB_CONVERSION_POLICY", "fail_batch").lower()
        if self.conversion_policy not in CONVERSION_POLICIES:
            raise ValueError(
                f"FB_CONVERSION_POLICY must be one of {CONVERSION_POLICIES}, got '{self.conversion_policy}'"
            )

        self.citizenship_table = Path(os.getenv("FB_CITIZENSHIP_TABLE", str(DEFAULT_CITIZENSHIP_TABLE)))

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def fhir_config(self) -> FhirServerConfig:
        """Server configuration, loaded lazily on first access."""
        if self._fhir_config is None:
            self._fhir_config = self.config_manager.get_fhir_config()
        return self._fhir_config


# Global settings instance
settings = Settings()
