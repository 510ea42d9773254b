"""Core primitives shared across all subsystems.

This module aggregates enums, time helpers and error classes.
Higher level packages import from here to avoid circular dependencies.
"""

from . import enums, errors, time_utils

__all__ = ["enums", "errors", "time_utils"]
