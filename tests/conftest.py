from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List, Mapping

import pytest

from conductor.config.loader import ConfigResolver
from conductor.modes.base import ModeBehavior, ModeResult
from conductor.modes.registry import ModeDescriptor, ModeRegistry
from conductor.storage.files import FileOperations


class EchoMode(ModeBehavior):
    """Test behaviour that records every hook call."""

    mode_id = "echo"
    version = "2.0.0"
    description = "Echoes input back"
    default_prompts = {"greeting": "Hello {name}"}

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[str] = []
        self.fail_initialize_times = 0
        self.fail_cleanup = False
        self.fail_error_hook = False

    def do_initialize(self, runtime) -> None:
        if self.fail_initialize_times > 0:
            self.fail_initialize_times -= 1
            raise RuntimeError("initialize failed")
        self.calls.append("initialize")

    def on_before_execute(self, runtime, input_text: str, context: Mapping[str, Any] | None) -> None:
        self.calls.append("before")

    def do_execute(self, runtime, input_text: str, context: Mapping[str, Any] | None) -> Any:
        self.calls.append("execute")
        if input_text == "boom":
            raise RuntimeError("boom")
        if input_text == "reenter":
            return runtime.execute_with_result("nested")
        if input_text == "result":
            return ModeResult.ok({"echo": input_text}, warnings=["from mode"])
        return f"echo: {input_text}"

    def on_after_execute(self, runtime, result: ModeResult[Any]) -> None:
        self.calls.append("after")

    def on_error(self, runtime, error: Exception) -> None:
        self.calls.append(f"error:{error}")
        if self.fail_error_hook:
            raise RuntimeError("error hook failed")

    def do_cleanup(self, runtime) -> None:
        self.calls.append("cleanup")
        if self.fail_cleanup:
            raise RuntimeError("cleanup failed")


@pytest.fixture
def files(tmp_path: Path) -> FileOperations:
    return FileOperations(tmp_path / "root")


@pytest.fixture
def resolver(files: FileOperations, tmp_path: Path) -> ConfigResolver:
    return ConfigResolver(files, env_file=tmp_path / "absent.env")


@pytest.fixture
def registry(files: FileOperations, resolver: ConfigResolver) -> ModeRegistry:
    return ModeRegistry(files, resolver)


@pytest.fixture
def echo_mode() -> EchoMode:
    return EchoMode()


@pytest.fixture
def behavior_factory() -> Callable[[str], type[EchoMode]]:
    """Build EchoMode subclasses bound to another mode id."""

    def _factory(mode_id: str) -> type[EchoMode]:
        return type(f"EchoMode_{mode_id}", (EchoMode,), {"mode_id": mode_id})

    return _factory


@pytest.fixture
def descriptor_factory(behavior_factory) -> Callable[..., ModeDescriptor]:
    def _factory(mode_id: str, **overrides: Any) -> ModeDescriptor:
        payload: dict[str, Any] = {"mode_id": mode_id, "factory": behavior_factory(mode_id)}
        payload.update(overrides)
        return ModeDescriptor(**payload)

    return _factory
