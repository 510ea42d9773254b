"""Layered configuration resolution.

Layers, lowest precedence first:

1. hard-coded defaults from :func:`conductor.config.models.default_config_dict`;
2. the base file (``config/default.json``; ``.yml``/``.yaml`` are read as YAML);
3. the user file (``config/config.json``), created from the merge when absent;
4. ``${VAR}`` placeholders in string values, resolved from the ``.env`` file
   first and the process environment second.

The merged mapping is validated by :class:`ConductorConfig` and cached per
resolver. Substituted values only live in memory; ``save`` and ``update``
persist the mapping with its placeholders intact.
:meth:`ConfigResolver.validate_and_recover` resets a corrupted configuration
to defaults while still reporting what was wrong.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from conductor.core.errors import (
    ConfigurationError,
    ConfigValidationError,
    NotFoundError,
    ValidationFailedError,
)
from conductor.core.time_utils import file_safe_stamp, isoformat, now_utc
from conductor.storage.files import FileOperations

from .models import ConductorConfig, default_config_dict

logger = logging.getLogger("conductor.config")

DEFAULT_BASE_NAME = "config/default.json"
DEFAULT_USER_NAME = "config/config.json"

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(slots=True)
class RecoveryReport:
    valid: bool
    recovered: bool
    errors: List[str] = field(default_factory=list)


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``.

    Nested mappings merge key by key; scalars and lists are replaced. ``None``
    in ``override`` never replaces an existing value.
    """

    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        if value is None:
            merged.setdefault(key, None)
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def substitute_env(value: Any, environment: Mapping[str, str]) -> Any:
    """Replace ``${VAR}`` in every string of ``value``; unknown names stay literal."""

    if isinstance(value, str):
        def _replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name in environment:
                return environment[name]
            logger.warning("Unresolved configuration placeholder", extra={"variable": name})
            return match.group(0)

        return _PLACEHOLDER.sub(_replace, value)
    if isinstance(value, Mapping):
        return {key: substitute_env(item, environment) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_env(item, environment) for item in value]
    return value


def restore_placeholders(value: Any, raw: Any, environment: Mapping[str, str]) -> Any:
    """Put back the ``${VAR}`` text of ``raw`` wherever ``value`` still equals its substitution."""

    if isinstance(value, Mapping) and isinstance(raw, Mapping):
        return {
            key: restore_placeholders(item, raw[key], environment) if key in raw else item
            for key, item in value.items()
        }
    if isinstance(value, list) and isinstance(raw, list) and len(value) == len(raw):
        return [restore_placeholders(item, original, environment) for item, original in zip(value, raw)]
    if isinstance(raw, str) and _PLACEHOLDER.search(raw) and substitute_env(raw, environment) == value:
        return raw
    return value


def format_validation_errors(exc: ValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        errors.append(f"{location}: {err.get('msg')}")
    return errors


class ConfigResolver:
    """Load, cache, save and self-heal the runtime configuration."""

    def __init__(
        self,
        files: FileOperations,
        *,
        env_file: Path | str | None = None,
        base_name: str = DEFAULT_BASE_NAME,
        user_name: str = DEFAULT_USER_NAME,
    ) -> None:
        self.files = files
        self.env_file = Path(env_file) if env_file is not None else files.root / ".env"
        self.base_name = base_name
        self.user_name = user_name
        self._cache: ConductorConfig | None = None
        # Merged layers before substitution; the only form ever persisted.
        self._raw: Dict[str, Any] | None = None

    # ------------------------------------------------------------------
    def load(self) -> ConductorConfig:
        """Merge every layer, validate the result and cache it."""

        merged = default_config_dict()
        base = self._read_layer(self.base_name)
        if base is not None:
            merged = deep_merge(merged, base)
        user = self._read_layer(self.user_name)
        if user is None:
            self._write(merged)
            logger.info("Created user configuration from defaults", extra={"path": self.user_name})
        else:
            merged = deep_merge(merged, user)

        config = self._validate(substitute_env(merged, self._environment()))
        self._raw = merged
        self._cache = config
        logger.debug("Configuration loaded", extra={"version": config.version})
        return config

    def get(self) -> ConductorConfig:
        if self._cache is None:
            return self.load()
        return self._cache

    def reload(self) -> ConductorConfig:
        self._cache = None
        self._raw = None
        return self.load()

    def save(self, config: ConductorConfig | Mapping[str, Any]) -> ConductorConfig:
        """Validate ``config``, bump ``last_modified`` and persist it atomically.

        A mapping is written as given. A :class:`ConductorConfig` holds
        substituted values, so fields still equal to the substitution of a
        stored placeholder are written back as that placeholder.
        """

        environment = self._environment()
        if isinstance(config, ConductorConfig):
            data = restore_placeholders(config.to_json_dict(), self._raw or {}, environment)
        else:
            data = copy.deepcopy(dict(config))
        data["last_modified"] = isoformat(now_utc())
        validated = self._validate(substitute_env(data, environment))
        self._write(data)
        self._raw = data
        self._cache = validated
        logger.info("Configuration saved", extra={"path": self.user_name})
        return validated

    def update(self, changes: Mapping[str, Any]) -> ConductorConfig:
        """Merge ``changes`` into the unsubstituted configuration and save it."""

        if self._raw is None:
            self.load()
        return self.save(deep_merge(self._raw or {}, changes))

    def reset(self) -> ConductorConfig:
        logger.warning("Resetting configuration to defaults", extra={"path": self.user_name})
        return self.save(default_config_dict())

    def validate_and_recover(self) -> RecoveryReport:
        """Reload; on a parse or validation failure reset to defaults.

        A base file that fails on its own is moved aside to
        ``<base>.corrupt.<stamp>`` first so the reset holds for later loads.
        Errors raised by the reset itself propagate.
        """

        try:
            self.reload()
        except ConfigValidationError as exc:
            errors = exc.errors
        except (ConfigurationError, ValidationFailedError) as exc:
            errors = [str(exc)]
        else:
            return RecoveryReport(valid=True, recovered=False)

        logger.warning("Configuration invalid, recovering", extra={"errors": errors})
        if not self._base_layer_is_valid():
            self._quarantine_base()
        self.reset()
        self.reload()
        return RecoveryReport(valid=True, recovered=True, errors=errors)

    # ------------------------------------------------------------------
    def _read_layer(self, name: str) -> Dict[str, Any] | None:
        try:
            text = self.files.read(name).content
        except NotFoundError:
            return None
        try:
            if name.endswith((".yml", ".yaml")):
                data = yaml.safe_load(text) or {}
            else:
                data = json.loads(text) if text.strip() else {}
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to parse {name}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Configuration root must be a mapping in {name}")
        return dict(data)

    def _base_layer_is_valid(self) -> bool:
        try:
            base = self._read_layer(self.base_name)
            if base is not None:
                self._validate(substitute_env(deep_merge(default_config_dict(), base), self._environment()))
        except (ConfigurationError, ValidationFailedError):
            return False
        return True

    def _quarantine_base(self) -> None:
        target = f"{self.base_name}.corrupt.{file_safe_stamp()}"
        self.files.move(self.base_name, target)
        logger.warning("Moved invalid base configuration aside", extra={"path": self.base_name, "target": target})

    def _environment(self) -> Dict[str, str]:
        environment: Dict[str, str] = {}
        if self.env_file.is_file():
            environment.update(
                {key: value for key, value in dotenv_values(self.env_file).items() if value is not None}
            )
        for key, value in os.environ.items():
            environment.setdefault(key, value)
        return environment

    def _write(self, data: Mapping[str, Any]) -> None:
        self.files.write(self.user_name, json.dumps(data, indent=2, ensure_ascii=False))

    @staticmethod
    def _validate(data: Mapping[str, Any]) -> ConductorConfig:
        try:
            return ConductorConfig.model_validate(data)
        except ValidationError as exc:
            errors = format_validation_errors(exc)
            logger.error("Configuration validation failed", extra={"errors": errors})
            raise ConfigValidationError(errors) from exc


__all__ = [
    "ConfigResolver",
    "DEFAULT_BASE_NAME",
    "DEFAULT_USER_NAME",
    "RecoveryReport",
    "deep_merge",
    "restore_placeholders",
    "substitute_env",
]
