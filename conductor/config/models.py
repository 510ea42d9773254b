"""Typed configuration models for the Conductor runtime.

The resolver merges defaults, the base file and the user file into one
mapping and validates it here. Every section forbids unknown keys so that a
misspelled setting is reported instead of silently ignored.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from conductor.core.enums import EditorPreference, LogLevel, ModeName
from conductor.core.time_utils import isoformat, now_utc
from conductor.storage.models import DEFAULT_MAX_SIZE

DEFAULT_CONFIG_VERSION = "1.0.0"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FilePathsConfig(_Section):
    """Root-relative locations of project artifacts."""

    project_file: str = Field(..., min_length=1)
    templates_dir: str = Field(..., min_length=1)
    notes_dir: str = Field(..., min_length=1)
    state_dir: str = Field(..., min_length=1)


class LoggingConfig(_Section):
    level: LogLevel
    file: str = Field(..., min_length=1)

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class SecurityConfig(_Section):
    """Security policy flags; ``max_file_size`` caps file primitives in bytes."""

    require_api_key: bool
    allow_local_files: bool
    max_file_size: PositiveInt


class UserPreferencesConfig(_Section):
    auto_save: bool
    confirm_on_mode_switch: bool
    show_hints: bool
    editor_preference: EditorPreference


class GitConfig(_Section):
    enabled: bool
    auto_commit: bool
    commit_prefix: str


class ApiConfig(_Section):
    """Language-model settings carried for collaborators.

    The runtime itself never authenticates; ``api_key`` may be a resolved
    ``${VAR}`` placeholder or ``None``.
    """

    model: str = Field(..., min_length=1)
    max_tokens: PositiveInt
    api_key: Optional[str] = None


class ConductorConfig(_Section):
    """Fully merged and validated runtime configuration."""

    version: str = Field(..., min_length=1)
    default_mode: ModeName
    file_paths: FilePathsConfig
    logging: LoggingConfig
    security: SecurityConfig
    user_preferences: UserPreferencesConfig
    git: GitConfig
    api: ApiConfig
    created: datetime
    last_modified: datetime

    def to_json_dict(self) -> Dict[str, Any]:
        """Plain mapping suitable for ``json.dumps`` (enums and datetimes as text)."""

        return self.model_dump(mode="json")


class ModeConfig(_Section):
    """Per-mode settings persisted at ``modes/<mode_id>/config.json``."""

    version: str = Field(..., min_length=1)
    enabled: bool = True
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)


def default_config_dict() -> Dict[str, Any]:
    """Hard-coded defaults; the lowest layer of every merge."""

    stamp = isoformat(now_utc())
    return {
        "version": DEFAULT_CONFIG_VERSION,
        "default_mode": ModeName.DISCOVERY.value,
        "file_paths": {
            "project_file": "project.md",
            "templates_dir": "templates",
            "notes_dir": "notes",
            "state_dir": "state",
        },
        "logging": {
            "level": LogLevel.INFO.value,
            "file": "logs/conductor.log",
        },
        "security": {
            "require_api_key": False,
            "allow_local_files": True,
            "max_file_size": DEFAULT_MAX_SIZE,
        },
        "user_preferences": {
            "auto_save": True,
            "confirm_on_mode_switch": True,
            "show_hints": True,
            "editor_preference": EditorPreference.INTERNAL.value,
        },
        "git": {
            "enabled": True,
            "auto_commit": False,
            "commit_prefix": "[conductor]",
        },
        "api": {
            "model": "claude-3-5-sonnet-latest",
            "max_tokens": 4096,
            "api_key": None,
        },
        "created": stamp,
        "last_modified": stamp,
    }


__all__ = [
    "ApiConfig",
    "ConductorConfig",
    "DEFAULT_CONFIG_VERSION",
    "FilePathsConfig",
    "GitConfig",
    "LoggingConfig",
    "ModeConfig",
    "SecurityConfig",
    "UserPreferencesConfig",
    "default_config_dict",
]
