"""
Pydantic configuration system for the billing loader.
"""

from .models import (
    CONNECTION_RE,
    Environment,
    MergePolicy,
    DatabaseConfig,
    LoadingConfig,
    AppConfig,
)
from .loader import ConfigLoader, load_config


def get_config(descriptor=None, **overrides) -> AppConfig:
    """
    Load the application configuration.

    Args:
        descriptor: ``user:password@host:port/database`` connection descriptor
        **overrides: LoadingConfig fields taking precedence over the environment

    Returns:
        AppConfig: Fully configured application settings
    """
    return load_config(descriptor=descriptor, overrides=overrides)


__all__ = [
    "CONNECTION_RE",
    "Environment",
    "MergePolicy",
    "DatabaseConfig",
    "LoadingConfig",
    "AppConfig",
    "ConfigLoader",
    "load_config",
    "get_config",
]
