"""Base contracts for modes and their typed execution results."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, List, Mapping, Sequence, TypeVar

from conductor.runtime.state import StateRecord, StateValidationResult

if TYPE_CHECKING:  # pragma: no cover
    from .controller import ModeController

T = TypeVar("T")


@dataclass(slots=True)
class ResultMetadata:
    execution_time_ms: float | None = None
    warnings: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ModeResult(Generic[T]):
    """Typed outcome of a mode call; failures carry ``error`` instead of raising."""

    success: bool
    data: T | None = None
    error: str | None = None
    metadata: ResultMetadata = field(default_factory=ResultMetadata)

    @classmethod
    def ok(
        cls,
        data: T | None = None,
        *,
        warnings: Sequence[str] = (),
        artifacts: Sequence[str] = (),
    ) -> "ModeResult[T]":
        return cls(
            success=True,
            data=data,
            metadata=ResultMetadata(warnings=list(warnings), artifacts=list(artifacts)),
        )

    @classmethod
    def fail(cls, error: str, *, warnings: Sequence[str] = ()) -> "ModeResult[T]":
        return cls(success=False, error=error, metadata=ResultMetadata(warnings=list(warnings)))


class ModeBehavior:
    """Hook interface implemented by every concrete mode.

    The :class:`~conductor.modes.controller.ModeController` owns ordering and
    error capture; a behaviour only supplies the mode-specific steps. Every hook
    receives the controller as ``runtime`` so it can reach state, prompts and
    configuration. Only :meth:`do_execute` must be overridden.
    """

    mode_id: str
    version: str = "1.0.0"
    description: str = ""
    dependencies: Sequence[str] = ()
    default_prompts: Mapping[str, str] = {}

    def __init__(self) -> None:
        self.logger = logging.getLogger("conductor.modes")

    # Lifecycle ---------------------------------------------------------
    def do_initialize(self, runtime: "ModeController") -> None:
        return None

    def do_execute(
        self,
        runtime: "ModeController",
        input_text: str,
        context: Mapping[str, Any] | None,
    ) -> ModeResult[Any] | Any:
        """Handle one turn; may return a :class:`ModeResult` or a bare payload."""

        raise NotImplementedError

    def do_validate(self, runtime: "ModeController") -> ModeResult[bool]:
        return ModeResult.ok(True)

    def do_cleanup(self, runtime: "ModeController") -> None:
        return None

    # State ---------------------------------------------------------------
    def do_validate_state(self, record: StateRecord) -> StateValidationResult:
        """Mode-specific checks merged into the store's structural validation."""

        return StateValidationResult()

    def do_migrate_state(self, record: StateRecord) -> StateRecord:
        """Reshape ``record.data`` for the current version; identity by default."""

        return record

    # Execution hooks -----------------------------------------------------
    def on_before_execute(
        self,
        runtime: "ModeController",
        input_text: str,
        context: Mapping[str, Any] | None,
    ) -> None:
        return None

    def on_after_execute(self, runtime: "ModeController", result: ModeResult[Any]) -> None:
        return None

    def on_error(self, runtime: "ModeController", error: Exception) -> None:
        return None


__all__ = ["ModeBehavior", "ModeResult", "ResultMetadata"]
