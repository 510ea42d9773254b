"""Mode contracts, lifecycle controller, registry and built-in modes."""

from .base import ModeBehavior, ModeResult, ResultMetadata
from .controller import ModeController
from .discovery import DiscoveryMode
from .prompts import PromptTemplate, PromptTemplates
from .registry import BUILTIN_MODES, ModeDescriptor, ModeRegistry, RegistryStats, build_default_registry

__all__ = [
    "BUILTIN_MODES",
    "DiscoveryMode",
    "ModeBehavior",
    "ModeController",
    "ModeDescriptor",
    "ModeRegistry",
    "ModeResult",
    "PromptTemplate",
    "PromptTemplates",
    "RegistryStats",
    "ResultMetadata",
    "build_default_registry",
]
