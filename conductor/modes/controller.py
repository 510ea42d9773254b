"""Lifecycle controller driving one mode behaviour.

The controller is a template method around :class:`ModeBehavior`:

``initialize`` checks dependencies, prepares directories, reads configuration
and prompt overrides, then calls the behaviour hook. ``execute_with_result``
wraps before/execute/after hooks with timing and turns any exception into a
failure result so a driving loop can keep a conversation alive. ``cleanup``
propagates errors because a failed teardown means leaked resources.

Lifecycle::

    UNINITIALIZED -> INITIALIZED <-> EXECUTING
                     INITIALIZED -> CLEANED_UP -> INITIALIZED
"""
from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Sequence

from pydantic import ValidationError

from conductor.config.loader import ConfigResolver, deep_merge, format_validation_errors
from conductor.config.models import ConductorConfig, ModeConfig
from conductor.core.enums import LifecycleState
from conductor.core.errors import (
    ConfigurationError,
    ConfigValidationError,
    DependencyMissingError,
    ModeExecutionError,
    ModeLifecycleError,
    NotFoundError,
)
from conductor.runtime.state import StateRecord, StateStore
from conductor.storage.files import FileOperations

from .base import ModeBehavior, ModeResult
from .prompts import PromptTemplates

if TYPE_CHECKING:  # pragma: no cover
    from .registry import ModeRegistry

logger = logging.getLogger("conductor.modes")

_TRANSITIONS: Dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.UNINITIALIZED: frozenset({LifecycleState.INITIALIZED}),
    LifecycleState.INITIALIZED: frozenset({LifecycleState.EXECUTING, LifecycleState.CLEANED_UP}),
    LifecycleState.EXECUTING: frozenset({LifecycleState.INITIALIZED}),
    LifecycleState.CLEANED_UP: frozenset({LifecycleState.INITIALIZED}),
}


class ModeController:
    """Owns the lifecycle flag and hook order for a single mode instance."""

    def __init__(
        self,
        behavior: ModeBehavior,
        files: FileOperations,
        *,
        registry: "ModeRegistry | None" = None,
        config_resolver: ConfigResolver | None = None,
        dependencies: Sequence[str] | None = None,
        enabled: bool = True,
    ) -> None:
        self.behavior = behavior
        self.files = files
        self.registry = registry
        self.config_resolver = config_resolver
        self.mode_id: str = behavior.mode_id
        self.dependencies: List[str] = list(dependencies if dependencies is not None else behavior.dependencies)
        self.state = LifecycleState.UNINITIALIZED
        self.last_error: Exception | None = None
        self.runtime_config: ConductorConfig | None = None
        self.mode_config = ModeConfig(
            version=behavior.version,
            enabled=enabled,
            description=behavior.description,
            dependencies=list(self.dependencies),
        )
        self.prompts = PromptTemplates(self.mode_id, behavior.default_prompts)
        self._state_store: StateStore | None = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    @property
    def mode_dir(self) -> str:
        return f"modes/{self.mode_id}"

    @property
    def prompts_path(self) -> str:
        return f"{self.mode_dir}/prompts.json"

    @property
    def config_path(self) -> str:
        return f"{self.mode_dir}/config.json"

    @property
    def state_dir(self) -> str:
        if self.runtime_config is not None:
            return self.runtime_config.file_paths.state_dir
        if self.config_resolver is not None:
            return self.config_resolver.get().file_paths.state_dir
        return "state"

    @property
    def initialized(self) -> bool:
        return self.state in (LifecycleState.INITIALIZED, LifecycleState.EXECUTING)

    @property
    def state_store(self) -> StateStore:
        if self._state_store is None:
            self._state_store = StateStore(
                self.files,
                self.mode_id,
                self.behavior.version,
                validator=self.behavior.do_validate_state,
                migrator=self.behavior.do_migrate_state,
                state_dir=self.state_dir,
            )
        return self._state_store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Prepare the mode; a no-op when already initialized."""

        if self.initialized:
            logger.debug("Mode already initialized", extra={"mode_id": self.mode_id})
            return

        logger.info("Initializing mode", extra={"mode_id": self.mode_id, "version": self.behavior.version})
        try:
            if self.registry is not None:
                missing = self.registry.missing_from(self.dependencies)
                if missing:
                    raise DependencyMissingError(self.mode_id, missing)
            self.files.ensure_dir(self.mode_dir)
            self.files.ensure_dir(f"{self.state_dir}/{self.mode_id}")
            if self.config_resolver is not None:
                self.runtime_config = self.config_resolver.get()
            self.mode_config = self._load_mode_config()
            self.prompts.reset()
            self.prompts.load(self.files, self.prompts_path)
            self.behavior.do_initialize(self)
        except Exception as exc:
            logger.error("Failed to initialize mode", extra={"mode_id": self.mode_id, "error": str(exc)})
            raise

        self._transition(LifecycleState.INITIALIZED)
        logger.info("Mode initialized", extra={"mode_id": self.mode_id})

    def execute_with_result(
        self,
        input_text: str,
        context: Mapping[str, Any] | None = None,
    ) -> ModeResult[Any]:
        """Run one turn; exceptions become ``ModeResult(success=False)``."""

        if self.state is LifecycleState.EXECUTING:
            raise ModeLifecycleError(f"Mode {self.mode_id} is already executing")
        if not self.initialized:
            self.initialize()

        self._transition(LifecycleState.EXECUTING)
        started = time.perf_counter()
        logger.debug("Executing mode", extra={"mode_id": self.mode_id, "input": input_text[:100]})
        try:
            self.behavior.on_before_execute(self, input_text, context)
            outcome = self.behavior.do_execute(self, input_text, context)
            result = outcome if isinstance(outcome, ModeResult) else ModeResult.ok(outcome)
            result.metadata.execution_time_ms = _elapsed_ms(started)
            self.behavior.on_after_execute(self, result)
            self.last_error = None
        except Exception as exc:
            self.last_error = exc
            logger.error("Mode execution failed", extra={"mode_id": self.mode_id, "error": str(exc)})
            try:
                self.behavior.on_error(self, exc)
            except Exception as hook_exc:
                logger.error(
                    "Mode error hook failed",
                    extra={"mode_id": self.mode_id, "error": str(hook_exc)},
                )
            result = ModeResult.fail(str(exc) or exc.__class__.__name__)
            result.metadata.execution_time_ms = _elapsed_ms(started)
        finally:
            self._transition(LifecycleState.INITIALIZED)

        logger.debug(
            "Mode executed",
            extra={
                "mode_id": self.mode_id,
                "success": result.success,
                "execution_time_ms": result.metadata.execution_time_ms,
            },
        )
        return result

    def execute(self, input_text: str) -> str:
        result = self.execute_with_result(input_text)
        if not result.success:
            raise ModeExecutionError(result.error or "Mode execution failed")
        return "" if result.data is None else str(result.data)

    def validate(self) -> ModeResult[bool]:
        """Check enablement, dependencies and the mode's own rules; never raises."""

        warnings: List[str] = []
        try:
            if not self.mode_config.enabled:
                return ModeResult.fail(f"Mode {self.mode_id} is disabled")
            if self.registry is None:
                if self.dependencies:
                    warnings.append("No registry attached; dependencies were not checked")
            else:
                missing = self.registry.missing_from(self.dependencies)
                if missing:
                    return ModeResult.fail(f"Missing dependencies: {', '.join(missing)}")
                for dependency in self.dependencies:
                    if not self.registry.is_available(dependency):
                        warnings.append(f"Dependency {dependency} is disabled")

            own = self.behavior.do_validate(self)
        except Exception as exc:
            logger.error("Mode validation failed", extra={"mode_id": self.mode_id, "error": str(exc)})
            return ModeResult.fail(str(exc), warnings=warnings)

        result: ModeResult[bool] = ModeResult(
            success=own.success,
            data=own.success,
            error=own.error,
        )
        result.metadata.warnings = warnings + list(own.metadata.warnings)
        return result

    def cleanup(self) -> None:
        """Run the cleanup hook and allow re-initialization; errors propagate."""

        if not self.initialized:
            logger.debug("Cleanup skipped, mode not initialized", extra={"mode_id": self.mode_id})
            return
        if self.state is LifecycleState.EXECUTING:
            raise ModeLifecycleError(f"Cannot clean up mode {self.mode_id} while executing")

        logger.info("Cleaning up mode", extra={"mode_id": self.mode_id})
        try:
            self.behavior.do_cleanup(self)
        except Exception as exc:
            logger.error("Failed to clean up mode", extra={"mode_id": self.mode_id, "error": str(exc)})
            raise
        self.prompts.clear()
        self._transition(LifecycleState.CLEANED_UP)
        logger.info("Mode cleaned up", extra={"mode_id": self.mode_id})

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def configure(self, **changes: Any) -> ModeConfig:
        """Merge ``changes`` into the mode config and persist it immediately."""

        merged = deep_merge(self.mode_config.model_dump(), changes)
        try:
            updated = ModeConfig.model_validate(merged)
        except ValidationError as exc:
            raise ConfigValidationError(format_validation_errors(exc)) from exc
        self.files.write(self.config_path, json.dumps(updated.model_dump(mode="json"), indent=2))
        self.mode_config = updated
        logger.debug("Updated mode configuration", extra={"mode_id": self.mode_id, "keys": sorted(changes)})
        return updated

    def _load_mode_config(self) -> ModeConfig:
        try:
            text = self.files.read(self.config_path).content
        except NotFoundError:
            return self.mode_config
        try:
            return ModeConfig.model_validate(deep_merge(self.mode_config.model_dump(), json.loads(text)))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Failed to parse {self.config_path}: {exc}") from exc
        except ValidationError as exc:
            raise ConfigValidationError(format_validation_errors(exc)) from exc

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------
    def save_state(self, state: StateRecord | Mapping[str, Any]) -> StateRecord:
        """Persist ``state``, tagging it with the mode version when untagged."""

        if isinstance(state, StateRecord):
            record = state
            if record.schema_version is None:
                record = StateRecord.from_dict(record.to_dict())
                record.schema_version = self.behavior.version
        else:
            payload = dict(state)
            payload.setdefault("schema_version", self.behavior.version)
            record = StateRecord.from_dict(payload)
        return self.state_store.save(record)

    def load_state(self, state_id: str | None = None, *, migrate: bool = True) -> StateRecord | None:
        return self.state_store.load(state_id, migrate=migrate)

    def clear_state(self, state_id: str | None = None) -> int:
        return self.state_store.clear(state_id)

    # ------------------------------------------------------------------
    # Prompt helpers
    # ------------------------------------------------------------------
    def get_prompts(self) -> Dict[str, str]:
        return self.prompts.as_dict()

    def update_prompt(self, key: str, template: str) -> None:
        self.prompts.set(key, template)
        logger.debug("Updated prompt", extra={"mode_id": self.mode_id, "prompt": key})

    def render_prompt(self, key: str, **variables: Any) -> str:
        return self.prompts.render(key, **variables)

    def save_prompts(self) -> None:
        self.prompts.save(self.files, self.prompts_path)

    # ------------------------------------------------------------------
    def _transition(self, target: LifecycleState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ModeLifecycleError(
                f"Invalid lifecycle transition for mode {self.mode_id}: {self.state.value} -> {target.value}"
            )
        self.state = target


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


__all__ = ["ModeController"]
