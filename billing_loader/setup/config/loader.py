"""
Configuration loader with environment variable mapping.

Values come from (lowest to highest precedence) model defaults, a ``.env``
file, ``BILLING_*`` environment variables and explicit overrides such as
parsed CLI arguments.
"""

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from ...core.exceptions import ConfigurationError
from .models import AppConfig, DatabaseConfig, Environment, LoadingConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "BILLING_"
LOADING_ENV_FIELDS = {
    "workers": "WORKERS",
    "batch_size": "BATCH_SIZE",
    "merge_policy": "MERGE_POLICY",
    "target_table": "TARGET_TABLE",
    "staging_table": "STAGING_TABLE",
    "key_column": "KEY_COLUMN",
    "flag_column": "FLAG_COLUMN",
    "show_progress": "SHOW_PROGRESS",
}


class ConfigLoader:
    """Configuration loader with environment variable mapping and validation."""

    def __init__(self, env_file: Optional[str] = None):
        self.env_file = env_file or ".env"
        self._loaded_config: Optional[AppConfig] = None

    def load_configuration(
        self,
        descriptor: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> AppConfig:
        """
        Load configuration from the environment.

        Args:
            descriptor: Connection descriptor; falls back to BILLING_DATABASE.
            overrides: LoadingConfig fields that win over the environment.
                ``None`` values are ignored.

        Returns:
            Validated AppConfig instance

        Raises:
            ConfigurationError: On any invalid value.
        """
        self._load_env_file()

        loading_data = self._load_loading_env()
        loading_data.update({k: v for k, v in (overrides or {}).items() if v is not None})

        descriptor = descriptor or os.getenv(f"{ENV_PREFIX}DATABASE")
        database = DatabaseConfig.from_descriptor(descriptor) if descriptor else None

        try:
            config = AppConfig(
                environment=os.getenv("ENVIRONMENT", Environment.DEVELOPMENT.value),
                database=database,
                loading=LoadingConfig(**loading_data),
            )
        except ValidationError as e:
            raise ConfigurationError(self._format_validation_error(e)) from e

        self._loaded_config = config
        return config

    def get_loaded_config(self) -> Optional[AppConfig]:
        return self._loaded_config

    def _load_env_file(self):
        if os.path.exists(self.env_file):
            load_dotenv(self.env_file, override=False)
            logger.debug(f"Loaded environment variables from {self.env_file}")

    def _load_loading_env(self) -> Dict[str, Any]:
        data = {}
        for field_name, suffix in LOADING_ENV_FIELDS.items():
            value = os.getenv(f"{ENV_PREFIX}{suffix}")
            if value is not None and value.strip() != "":
                data[field_name] = value.strip()
        return data

    @staticmethod
    def _format_validation_error(error: ValidationError) -> str:
        problems = []
        for item in error.errors():
            location = ".".join(str(part) for part in item.get("loc", ()))
            problems.append(f"{location}: {item.get('msg')}")
        return "; ".join(problems)


def load_config(descriptor: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                env_file: Optional[str] = None) -> AppConfig:
    """Convenience wrapper around ConfigLoader."""
    return ConfigLoader(env_file=env_file).load_configuration(descriptor=descriptor, overrides=overrides)
