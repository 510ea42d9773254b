"""Durable runtime state package."""

from .state import (
    LEGACY_SCHEMA_VERSION,
    StateRecord,
    StateStore,
    StateValidationResult,
    compute_checksum,
    new_state_id,
)

__all__ = [
    "LEGACY_SCHEMA_VERSION",
    "StateRecord",
    "StateStore",
    "StateValidationResult",
    "compute_checksum",
    "new_state_id",
]
