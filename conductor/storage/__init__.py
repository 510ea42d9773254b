"""File operation primitives package."""

from .files import FileOperations, normalize_content, normalize_line_endings
from .models import FileMetadata, FileOperationOptions, ReadResult, WriteResult

__all__ = [
    "FileMetadata",
    "FileOperationOptions",
    "FileOperations",
    "ReadResult",
    "WriteResult",
    "normalize_content",
    "normalize_line_endings",
]
