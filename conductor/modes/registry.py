"""Mode registry and factory.

Descriptors are registered once at startup and never change afterwards. The
registry builds at most one :class:`ModeController` per mode id and wires in
the shared file primitives and configuration resolver.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from conductor.config.loader import ConfigResolver
from conductor.core.errors import (
    CircularDependencyError,
    DependencyMissingError,
    ModeDisabledError,
    ModeNotRegisteredError,
    ModeRegistrationError,
)
from conductor.storage.files import FileOperations

from .base import ModeBehavior
from .controller import ModeController
from .discovery import DiscoveryMode

logger = logging.getLogger("conductor.registry")

MIN_LOAD_PRIORITY = 0
MAX_LOAD_PRIORITY = 100


@dataclass(slots=True, frozen=True)
class ModeDescriptor:
    """Immutable registry entry; higher ``load_priority`` sorts first."""

    mode_id: str
    factory: Callable[[], ModeBehavior]
    dependencies: Tuple[str, ...] = ()
    load_priority: int = 50
    enabled: bool = True
    description: str = ""
    category: str = "core"

    def __post_init__(self) -> None:
        object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass(slots=True)
class RegistryStats:
    total: int
    enabled: int
    disabled: int
    active_instances: int
    by_category: Dict[str, int] = field(default_factory=dict)


class ModeRegistry:
    def __init__(self, files: FileOperations, config_resolver: ConfigResolver | None = None) -> None:
        self.files = files
        self.config_resolver = config_resolver
        self._descriptors: Dict[str, ModeDescriptor] = {}
        self._instances: Dict[str, ModeController] = {}

    # Registration ------------------------------------------------------
    def register(self, descriptor: ModeDescriptor) -> None:
        if not descriptor.mode_id:
            raise ModeRegistrationError("Mode id must not be empty")
        if descriptor.mode_id in self._descriptors:
            raise ModeRegistrationError(f"Mode {descriptor.mode_id} is already registered")
        if not MIN_LOAD_PRIORITY <= descriptor.load_priority <= MAX_LOAD_PRIORITY:
            raise ModeRegistrationError(
                f"Load priority for mode {descriptor.mode_id} must be between "
                f"{MIN_LOAD_PRIORITY} and {MAX_LOAD_PRIORITY}, got {descriptor.load_priority}"
            )
        self._descriptors[descriptor.mode_id] = descriptor
        logger.info(
            "Registered mode",
            extra={
                "mode_id": descriptor.mode_id,
                "load_priority": descriptor.load_priority,
                "enabled": descriptor.enabled,
            },
        )

    def unregister(self, mode_id: str) -> bool:
        if mode_id not in self._descriptors:
            return False
        self.destroy(mode_id)
        del self._descriptors[mode_id]
        logger.info("Unregistered mode", extra={"mode_id": mode_id})
        return True

    # Lookup ------------------------------------------------------------
    def is_registered(self, mode_id: str) -> bool:
        return mode_id in self._descriptors

    def is_available(self, mode_id: str) -> bool:
        descriptor = self._descriptors.get(mode_id)
        return descriptor is not None and descriptor.enabled

    def descriptor(self, mode_id: str) -> ModeDescriptor:
        try:
            return self._descriptors[mode_id]
        except KeyError as exc:
            raise ModeNotRegisteredError(f"Mode {mode_id} is not registered") from exc

    def registered(self) -> List[ModeDescriptor]:
        return list(self._descriptors.values())

    def available(self) -> List[ModeDescriptor]:
        """Enabled descriptors, highest ``load_priority`` first."""

        enabled = [descriptor for descriptor in self._descriptors.values() if descriptor.enabled]
        return sorted(enabled, key=lambda descriptor: (-descriptor.load_priority, descriptor.mode_id))

    def missing_from(self, dependencies: Iterable[str]) -> List[str]:
        return [dependency for dependency in dependencies if dependency not in self._descriptors]

    def missing_dependencies(self, mode_id: str) -> List[str]:
        return self.missing_from(self.descriptor(mode_id).dependencies)

    def find_cycle(self, mode_id: str) -> List[str] | None:
        """Return the first dependency cycle reachable from ``mode_id`` (e.g. ``[a, b, a]``)."""

        path: List[str] = []
        visited: set[str] = set()

        def visit(current: str) -> List[str] | None:
            if current in path:
                return path[path.index(current):] + [current]
            if current in visited or current not in self._descriptors:
                return None
            path.append(current)
            for dependency in self._descriptors[current].dependencies:
                cycle = visit(dependency)
                if cycle is not None:
                    return cycle
            path.pop()
            visited.add(current)
            return None

        return visit(mode_id)

    # Construction ------------------------------------------------------
    def create(self, mode_id: str) -> ModeController:
        """Return the controller for ``mode_id``, building it on first use."""

        existing = self._instances.get(mode_id)
        if existing is not None:
            return existing

        descriptor = self.descriptor(mode_id)
        if not descriptor.enabled:
            raise ModeDisabledError(f"Mode {mode_id} is disabled")
        missing = self.missing_dependencies(mode_id)
        if missing:
            raise DependencyMissingError(mode_id, missing)
        cycle = self.find_cycle(mode_id)
        if cycle is not None:
            raise CircularDependencyError(cycle)

        behavior = descriptor.factory()
        if behavior.mode_id != mode_id:
            raise ModeRegistrationError(
                f"Factory for mode {mode_id} built a behaviour for {behavior.mode_id}"
            )
        controller = ModeController(
            behavior,
            self.files,
            registry=self,
            config_resolver=self.config_resolver,
            dependencies=descriptor.dependencies,
            enabled=descriptor.enabled,
        )
        self._instances[mode_id] = controller
        logger.info("Created mode instance", extra={"mode_id": mode_id})
        return controller

    def instance(self, mode_id: str) -> ModeController | None:
        return self._instances.get(mode_id)

    def destroy(self, mode_id: str) -> bool:
        """Drop the live instance and run its cleanup; errors propagate."""

        controller = self._instances.pop(mode_id, None)
        if controller is None:
            return False
        controller.cleanup()
        logger.info("Destroyed mode instance", extra={"mode_id": mode_id})
        return True

    def destroy_all(self) -> None:
        failures: List[Exception] = []
        for mode_id in list(self._instances):
            try:
                self.destroy(mode_id)
            except Exception as exc:
                logger.error("Failed to destroy mode", extra={"mode_id": mode_id, "error": str(exc)})
                failures.append(exc)
        if failures:
            raise failures[0]

    def stats(self) -> RegistryStats:
        by_category: Dict[str, int] = {}
        for descriptor in self._descriptors.values():
            by_category[descriptor.category] = by_category.get(descriptor.category, 0) + 1
        enabled = sum(1 for descriptor in self._descriptors.values() if descriptor.enabled)
        return RegistryStats(
            total=len(self._descriptors),
            enabled=enabled,
            disabled=len(self._descriptors) - enabled,
            active_instances=len(self._instances),
            by_category=by_category,
        )


BUILTIN_MODES: Sequence[ModeDescriptor] = (
    ModeDescriptor(
        mode_id=DiscoveryMode.mode_id,
        factory=DiscoveryMode,
        load_priority=100,
        description=DiscoveryMode.description,
        category="core",
    ),
)


def build_default_registry(
    files: FileOperations,
    config_resolver: ConfigResolver | None = None,
) -> ModeRegistry:
    """Registry with every built-in mode registered."""

    registry = ModeRegistry(files, config_resolver)
    for descriptor in BUILTIN_MODES:
        registry.register(descriptor)
    return registry


__all__ = [
    "BUILTIN_MODES",
    "ModeDescriptor",
    "ModeRegistry",
    "RegistryStats",
    "build_default_registry",
]
