"""Value objects returned by the file operation primitives."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any

DEFAULT_MAX_SIZE = 10 * 1024 * 1024  # 10 MiB
SIZE_WARNING_RATIO = 0.8


@dataclass(slots=True, frozen=True)
class FileOperationOptions:
    """Per-call behaviour switches; instances are merged via :meth:`merged`."""

    encoding: str = "utf-8"
    atomic_write: bool = True
    create_dirs: bool = True
    validate_size: bool = True
    max_size: int = DEFAULT_MAX_SIZE
    backup: bool = False
    checksum: bool = False

    def merged(self, **overrides: Any) -> "FileOperationOptions":
        """Return a copy with ``overrides`` applied (unknown keys raise TypeError)."""

        if not overrides:
            return self
        return replace(self, **overrides)


@dataclass(slots=True)
class FileMetadata:
    """Stat snapshot of a file below the runtime root.

    ``path`` is always relative to the root and uses POSIX separators so the
    value is stable across platforms and safe to log or compare.
    """

    path: str
    size: int
    created: datetime
    modified: datetime
    encoding: str = "utf-8"
    checksum: str | None = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(slots=True)
class ReadResult:
    content: str
    metadata: FileMetadata


@dataclass(slots=True)
class WriteResult:
    """Outcome of a write; ``temp_path`` is set when the atomic path was used."""

    success: bool
    bytes_written: int
    final_path: Path
    temp_path: Path | None = None
    backup_path: str | None = None


__all__ = [
    "DEFAULT_MAX_SIZE",
    "FileMetadata",
    "FileOperationOptions",
    "ReadResult",
    "WriteResult",
]
