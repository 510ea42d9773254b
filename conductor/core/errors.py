"""Error hierarchy shared by the runtime subsystems.

Centralizing exception types lets drivers tell recoverable situations
(missing state, config needing a reset) apart from fatal ones (a mode that
cannot initialize). Submodules should raise the most specific error available.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from conductor.runtime.state import StateRecord, StateValidationResult


class CoreError(Exception):
    """Base class for all custom exceptions in the application."""


class FileOperationError(CoreError):
    """Raised when a physical read/write under the runtime root fails."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(FileOperationError):
    """Raised when the requested file or directory does not exist."""


class PermissionDeniedError(FileOperationError):
    """Raised when the OS refuses access to a path."""


class NotAFileError(FileOperationError):
    """Raised when a file operation targets a directory."""


class ValidationFailedError(CoreError):
    """Raised for size, content or schema violations."""


class StateValidationError(ValidationFailedError):
    """Raised when a stored state record is structurally invalid."""

    def __init__(self, state_id: str, errors: Sequence[str]) -> None:
        self.state_id = state_id
        self.errors = list(errors)
        super().__init__(f"State {state_id} is invalid: {'; '.join(self.errors)}")


class ConfigurationError(CoreError):
    """Raised when configuration files are missing or unreadable."""


class ConfigValidationError(ConfigurationError):
    """Raised with every violation found while validating the merged config."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        joined = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(f"Configuration validation failed:\n{joined}")


class MigrationRequired(CoreError):
    """Signal that a loaded record must be migrated before use.

    Not a failure: the record is readable, only its schema version is behind.
    """

    def __init__(self, record: "StateRecord", validation: "StateValidationResult") -> None:
        self.record = record
        self.validation = validation
        super().__init__(
            f"State {record.id} needs migration from "
            f"{validation.current_version or 'legacy'} to {validation.target_version}"
        )


class ModeError(CoreError):
    """Base class for mode registry and lifecycle failures."""


class DependencyMissingError(ModeError):
    """Raised when a mode declares dependencies that are not registered."""

    def __init__(self, mode_id: str, missing: Sequence[str]) -> None:
        self.mode_id = mode_id
        self.missing = list(missing)
        super().__init__(f"Missing dependencies for mode {mode_id}: {', '.join(self.missing)}")


class CircularDependencyError(ModeError):
    """Raised when the dependency graph of a mode contains a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Circular dependencies detected: {' -> '.join(self.cycle)}")


class ModeDisabledError(ModeError):
    """Raised when a disabled mode is asked to run."""


class ModeNotRegisteredError(ModeError):
    """Raised when a mode id is unknown to the registry."""


class ModeRegistrationError(ModeError):
    """Raised when a descriptor cannot be registered."""


class ModeLifecycleError(ModeError):
    """Raised on an invalid lifecycle transition (e.g. re-entrant execute)."""


class ModeExecutionError(ModeError):
    """Raised by ``execute`` when the underlying result reports failure."""
