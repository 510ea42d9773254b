"""Byte-level file primitives for everything stored under the runtime root.

``FileOperations`` is the only component allowed to touch physical paths.
Every other layer addresses files by root-relative names and receives typed
results or taxonomy errors from :mod:`conductor.core.errors`.

Writes are atomic by default: bytes land in a sibling temp file, the on-disk
size is checked, and ``os.replace`` swaps it over the target. Readers see the
old file or the new file in full, never a prefix. Text is normalized to LF
line endings with a trailing newline so persisted files diff cleanly.
"""
from __future__ import annotations

import hashlib
import logging
import os
import re
import secrets
import stat as stat_module
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Pattern

from conductor.core.errors import (
    CoreError,
    FileOperationError,
    NotAFileError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from conductor.core.time_utils import file_safe_stamp

from .models import SIZE_WARNING_RATIO, FileMetadata, FileOperationOptions, ReadResult, WriteResult

logger = logging.getLogger("conductor.files")


def normalize_line_endings(content: str) -> str:
    """Convert CRLF and lone CR to LF."""

    return content.replace("\r\n", "\n").replace("\r", "\n")


def normalize_content(content: str) -> str:
    """Normalize line endings and guarantee a trailing newline on non-empty text."""

    normalized = normalize_line_endings(content)
    if normalized and not normalized.endswith("\n"):
        normalized += "\n"
    return normalized


def _translate_os_error(exc: OSError, operation: str, path: str) -> FileOperationError:
    if isinstance(exc, FileNotFoundError):
        return NotFoundError(f"File not found: {path}", path=path)
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"Permission denied: {path}", path=path)
    if isinstance(exc, IsADirectoryError):
        return NotAFileError(f"Path is not a file: {path}", path=path)
    return FileOperationError(f"Failed to {operation} {path}: {exc}", path=path)


class FileOperations:
    """Read, write, update, delete and list files below ``root``.

    Construct one instance per runtime root and pass it explicitly to the
    config resolver, the state stores and the mode registry.
    """

    def __init__(self, root: Path | str, options: FileOperationOptions | None = None) -> None:
        self.root = Path(root).expanduser().resolve()
        self.defaults = options or FileOperationOptions()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def read(self, path: str, **overrides: Any) -> ReadResult:
        """Return the normalized text content of ``path`` with its metadata."""

        opts = self.defaults.merged(**overrides)
        full_path = self._resolve(path)
        logger.debug("Reading file", extra={"path": path})
        try:
            st = full_path.stat()
            if not stat_module.S_ISREG(st.st_mode):
                raise NotAFileError(f"Path is not a file: {path}", path=path)
            if opts.validate_size and st.st_size > opts.max_size:
                raise ValidationFailedError(
                    f"File {path} size {st.st_size} exceeds maximum {opts.max_size} bytes"
                )
            if st.st_size > opts.max_size * SIZE_WARNING_RATIO:
                logger.warning(
                    "File size is approaching the maximum",
                    extra={"path": path, "size": st.st_size, "max_size": opts.max_size},
                )
            raw = full_path.read_bytes()
            try:
                content = raw.decode(opts.encoding)
            except UnicodeDecodeError as exc:
                raise ValidationFailedError(f"File {path} is not valid {opts.encoding} text") from exc
        except CoreError as exc:
            self._log_failure("read", path, exc)
            raise
        except OSError as exc:
            error = _translate_os_error(exc, "read", path)
            self._log_failure("read", path, error)
            raise error from exc

        metadata = self._metadata(full_path, st, opts.encoding)
        if opts.checksum:
            metadata.checksum = hashlib.sha256(raw).hexdigest()
        return ReadResult(content=normalize_line_endings(content), metadata=metadata)

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def stat(self, path: str, *, checksum: bool = False) -> FileMetadata:
        """Return metadata for ``path`` without reading it (unless ``checksum``)."""

        full_path = self._resolve(path)
        try:
            st = full_path.stat()
            metadata = self._metadata(full_path, st, self.defaults.encoding)
            if checksum:
                metadata.checksum = hashlib.sha256(full_path.read_bytes()).hexdigest()
        except OSError as exc:
            error = _translate_os_error(exc, "stat", path)
            self._log_failure("stat", path, error)
            raise error from exc
        return metadata

    def list(
        self,
        path: str = "",
        *,
        recursive: bool = False,
        pattern: str | Pattern[str] | None = None,
    ) -> list[FileMetadata]:
        """List files under ``path`` in lexical order.

        ``pattern`` is a regular expression searched against each file name.
        Sub-directories are walked depth-first when ``recursive`` is set.
        """

        full_path = self._resolve(path) if path else self.root
        matcher = re.compile(pattern) if isinstance(pattern, str) else pattern
        logger.debug("Listing files", extra={"path": path or ".", "recursive": recursive})
        try:
            if not full_path.exists():
                raise NotFoundError(f"Directory not found: {path or '.'}", path=path)
            if not full_path.is_dir():
                raise FileOperationError(f"Path is not a directory: {path}", path=path)
            files = self._walk(full_path, recursive, matcher)
        except CoreError as exc:
            self._log_failure("list", path, exc)
            raise
        except OSError as exc:
            error = _translate_os_error(exc, "list", path)
            self._log_failure("list", path, error)
            raise error from exc
        return sorted(files, key=lambda meta: meta.path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def write(self, path: str, content: str, **overrides: Any) -> WriteResult:
        """Write ``content`` to ``path``; atomic unless ``atomic_write=False``."""

        opts = self.defaults.merged(**overrides)
        full_path = self._resolve(path)
        logger.debug("Writing file", extra={"path": path, "chars": len(content)})
        try:
            self._validate_content(path, content, opts)
            if opts.create_dirs:
                full_path.parent.mkdir(parents=True, exist_ok=True)
            data = normalize_content(content).encode(opts.encoding)
            if opts.atomic_write:
                result = self._atomic_write(full_path, data)
            else:
                full_path.write_bytes(data)
                result = WriteResult(success=True, bytes_written=len(data), final_path=full_path)
        except CoreError as exc:
            self._log_failure("write", path, exc)
            raise
        except OSError as exc:
            error = _translate_os_error(exc, "write", path)
            self._log_failure("write", path, error)
            raise error from exc

        logger.info("Wrote file", extra={"path": path, "bytes_written": result.bytes_written})
        return result

    def update(self, path: str, transform: Callable[[str], str], **overrides: Any) -> WriteResult:
        """Read ``path``, optionally back it up, apply ``transform`` and write it back."""

        opts = self.defaults.merged(**overrides)
        logger.debug("Updating file", extra={"path": path})
        current = self.read(path, **overrides)
        backup_path = self._create_backup(path) if opts.backup else None
        result = self.write(path, transform(current.content), **overrides)
        result.backup_path = backup_path
        return result

    def delete(self, path: str) -> None:
        full_path = self._resolve(path)
        logger.debug("Deleting file", extra={"path": path})
        try:
            if not full_path.exists():
                raise NotFoundError(f"File not found: {path}", path=path)
            if not full_path.is_file():
                raise NotAFileError(f"Path is not a file: {path}", path=path)
            full_path.unlink()
        except CoreError as exc:
            self._log_failure("delete", path, exc)
            raise
        except OSError as exc:
            error = _translate_os_error(exc, "delete", path)
            self._log_failure("delete", path, error)
            raise error from exc
        logger.info("Deleted file", extra={"path": path})

    def copy(self, source: str, destination: str) -> WriteResult:
        content = self.read(source).content
        result = self.write(destination, content)
        logger.info("Copied file", extra={"source": source, "destination": destination})
        return result

    def move(self, source: str, destination: str) -> WriteResult:
        """Copy then delete; a half-finished move removes the copied destination."""

        result = self.copy(source, destination)
        try:
            self.delete(source)
        except CoreError:
            try:
                self.delete(destination)
            except CoreError as cleanup_exc:
                logger.warning(
                    "Failed to remove destination after move failure",
                    extra={"destination": destination, "error": str(cleanup_exc)},
                )
            raise
        return result

    def ensure_dir(self, path: str) -> Path:
        full_path = self._resolve(path)
        try:
            full_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            error = _translate_os_error(exc, "create directory", path)
            self._log_failure("ensure_dir", path, error)
            raise error from exc
        return full_path

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValidationFailedError(f"Path escapes the runtime root: {path}")
        return candidate

    def _relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.root).as_posix()

    def _metadata(self, full_path: Path, st: os.stat_result, encoding: str) -> FileMetadata:
        created_ts = getattr(st, "st_birthtime", None) or st.st_mtime
        return FileMetadata(
            path=self._relative(full_path),
            size=st.st_size,
            created=datetime.fromtimestamp(created_ts, tz=timezone.utc),
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            encoding=encoding,
        )

    def _walk(self, directory: Path, recursive: bool, matcher: Pattern[str] | None) -> list[FileMetadata]:
        files: list[FileMetadata] = []
        for entry in sorted(directory.iterdir(), key=lambda item: item.name):
            if entry.is_file():
                if matcher is not None and not matcher.search(entry.name):
                    continue
                try:
                    files.append(self._metadata(entry, entry.stat(), self.defaults.encoding))
                except OSError as exc:
                    logger.warning("Failed to stat file", extra={"path": str(entry), "error": str(exc)})
            elif entry.is_dir() and recursive:
                files.extend(self._walk(entry, recursive, matcher))
        return files

    @staticmethod
    def _validate_content(path: str, content: str, opts: FileOperationOptions) -> None:
        if "\0" in content:
            raise ValidationFailedError(f"Binary content not allowed in text file {path}")
        size = len(content.encode(opts.encoding))
        if opts.validate_size and size > opts.max_size:
            raise ValidationFailedError(
                f"Content size {size} for {path} exceeds maximum {opts.max_size} bytes"
            )

    def _atomic_write(self, full_path: Path, data: bytes) -> WriteResult:
        temp_path = full_path.with_name(
            f"{full_path.name}.tmp.{int(time.time() * 1000)}.{secrets.token_hex(4)}"
        )
        try:
            with temp_path.open("wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            written = temp_path.stat().st_size
            if written != len(data):
                raise FileOperationError(
                    f"Atomic write verification failed: expected {len(data)} bytes, got {written}",
                    path=self._relative(full_path),
                )
            os.replace(temp_path, full_path)
        except Exception:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.warning(
                    "Failed to clean up temp file",
                    extra={"temp_path": str(temp_path), "error": str(cleanup_exc)},
                )
            raise
        return WriteResult(
            success=True,
            bytes_written=len(data),
            final_path=full_path,
            temp_path=temp_path,
        )

    def _create_backup(self, path: str) -> str:
        backup_path = f"{path}.backup.{file_safe_stamp()}"
        self.copy(path, backup_path)
        logger.info("Created backup", extra={"path": path, "backup_path": backup_path})
        return backup_path

    @staticmethod
    def _log_failure(operation: str, path: str, exc: Exception) -> None:
        logger.error(
            "File operation failed",
            extra={"operation": operation, "path": path, "error": str(exc)},
        )


__all__ = ["FileOperations", "normalize_content", "normalize_line_endings"]
