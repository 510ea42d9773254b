"""Configuration loading and validation package."""

from .loader import ConfigResolver, RecoveryReport, deep_merge, restore_placeholders, substitute_env
from .models import (
    ApiConfig,
    ConductorConfig,
    FilePathsConfig,
    GitConfig,
    LoggingConfig,
    ModeConfig,
    SecurityConfig,
    UserPreferencesConfig,
    default_config_dict,
)

__all__ = [
    "ApiConfig",
    "ConductorConfig",
    "ConfigResolver",
    "FilePathsConfig",
    "GitConfig",
    "LoggingConfig",
    "ModeConfig",
    "RecoveryReport",
    "SecurityConfig",
    "UserPreferencesConfig",
    "deep_merge",
    "default_config_dict",
    "restore_placeholders",
    "substitute_env",
]
