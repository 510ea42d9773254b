"""Enumerations shared across runtime subsystems.

They live in the core package so that config models, the registry and the
lifecycle controller can import them without introducing circular imports.
"""
from __future__ import annotations

from enum import Enum


class ModeName(str, Enum):
    """Built-in conversational stages a project moves through."""

    DISCOVERY = "discovery"
    PLANNING = "planning"
    DESIGN = "design"
    BUILD = "build"
    TEST = "test"
    POLISH = "polish"


class LogLevel(str, Enum):
    """Log levels accepted in ``logging.level``."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class EditorPreference(str, Enum):
    """Where the user prefers to edit generated documents."""

    INTERNAL = "internal"
    EXTERNAL = "external"


class LifecycleState(str, Enum):
    """Phases of a mode controller."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    EXECUTING = "executing"
    CLEANED_UP = "cleaned_up"
