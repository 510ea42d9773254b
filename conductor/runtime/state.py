"""Durable, schema-versioned state records for a single mode.

Each record is one JSON file at ``state/<mode_id>/<state_id>.json`` written
through the atomic path of :class:`~conductor.storage.files.FileOperations`.
The *current* record is the lexically greatest file name in the namespace;
generated ids embed a sortable UTC stamp so that lexical order equals write
order.

Loading separates two outcomes that must never be conflated: a structurally
broken record (hard error) and an old-but-valid record whose
``schema_version`` lags behind the mode (migration signal). Migrated records
are handed back in memory only; callers decide whether to ``save`` them.
"""
from __future__ import annotations

import copy
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping

from conductor.core.errors import (
    MigrationRequired,
    NotFoundError,
    StateValidationError,
    ValidationFailedError,
)
from conductor.core.time_utils import isoformat, now_utc, parse_datetime, sortable_stamp
from conductor.storage.files import FileOperations

logger = logging.getLogger("conductor.state")

LEGACY_SCHEMA_VERSION = "1.0.0"
STATE_FILE_PATTERN = r"\.json$"

StateValidator = Callable[["StateRecord"], "StateValidationResult"]
StateMigrator = Callable[["StateRecord"], "StateRecord"]


def new_state_id(mode_id: str, when: datetime | None = None) -> str:
    """Return ``<mode_id>-<stamp>``; ids sort in creation order."""

    return f"{mode_id}-{sortable_stamp(when)}"


@dataclass(slots=True)
class StateRecord:
    """One persisted snapshot of a mode's progress.

    ``id`` and ``timestamp`` may be left empty on a fresh record; the store
    fills them on save. ``schema_version`` is ``None`` for legacy records.
    """

    id: str = ""
    mode_id: str = ""
    timestamp: datetime | None = None
    schema_version: str | None = None
    data: Dict[str, Any] = field(default_factory=dict)
    artifacts: List[str] = field(default_factory=list)
    checksum: str | None = None

    def to_dict(self, *, include_checksum: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "mode_id": self.mode_id,
            "timestamp": isoformat(self.timestamp) if isinstance(self.timestamp, datetime) else self.timestamp,
            "schema_version": self.schema_version,
            "data": self.data,
            "artifacts": self.artifacts,
        }
        if include_checksum:
            payload["checksum"] = self.checksum
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StateRecord":
        # Values are taken as-is; StateStore.validate reports wrong shapes.
        return cls(
            id=payload.get("id") or "",
            mode_id=payload.get("mode_id") or "",
            timestamp=parse_datetime(payload.get("timestamp")),
            schema_version=payload.get("schema_version"),
            data=payload.get("data", {}),
            artifacts=payload.get("artifacts", []),
            checksum=payload.get("checksum"),
        )


@dataclass(slots=True)
class StateValidationResult:
    """Outcome of validating a record against the owning mode."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    needs_migration: bool = False
    current_version: str | None = None
    target_version: str | None = None

    def merge(self, other: "StateValidationResult") -> "StateValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.needs_migration = self.needs_migration or other.needs_migration
        self.is_valid = not self.errors
        return self


def compute_checksum(record: StateRecord) -> str:
    """SHA-256 over the canonical JSON of ``record`` without its checksum."""

    canonical = json.dumps(
        record.to_dict(include_checksum=False),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value) and "/" not in value and "\\" not in value and value not in {".", ".."}


class StateStore:
    """Save, load, validate, migrate and clear state records of one mode."""

    def __init__(
        self,
        files: FileOperations,
        mode_id: str,
        schema_version: str,
        *,
        validator: StateValidator | None = None,
        migrator: StateMigrator | None = None,
        state_dir: str = "state",
    ) -> None:
        if not _is_valid_id(mode_id):
            raise ValidationFailedError(f"Invalid mode id for state namespace: {mode_id!r}")
        self.files = files
        self.mode_id = mode_id
        self.schema_version = schema_version
        self.validator = validator
        self.migrator = migrator
        self.namespace = f"{state_dir.rstrip('/')}/{mode_id}"

    # ------------------------------------------------------------------
    def save(self, record: StateRecord | Mapping[str, Any]) -> StateRecord:
        """Persist ``record`` atomically and return the stored copy."""

        if isinstance(record, StateRecord):
            stored = copy.deepcopy(record)
        else:
            stored = StateRecord.from_dict(record)
        if not stored.mode_id:
            stored.mode_id = self.mode_id
        elif stored.mode_id != self.mode_id:
            raise ValidationFailedError(
                f"Cannot save state of mode {stored.mode_id!r} into namespace {self.mode_id!r}"
            )
        if not stored.id:
            stored.id = new_state_id(self.mode_id)
        if stored.timestamp is None:
            stored.timestamp = now_utc()

        errors = self._structural_errors(stored)
        if errors:
            raise StateValidationError(str(stored.id), errors)

        stored.checksum = compute_checksum(stored)
        try:
            text = json.dumps(stored.to_dict(), indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StateValidationError(str(stored.id), [f"record is not JSON serializable: {exc}"]) from exc
        self.files.write(self._path(stored.id), text)
        logger.info("Saved state", extra={"mode_id": self.mode_id, "state_id": stored.id})
        return stored

    def load(self, state_id: str | None = None, *, migrate: bool = True) -> StateRecord | None:
        """Return the requested (or current) record, ``None`` when absent.

        Raises :class:`StateValidationError` for structurally invalid records
        and :class:`MigrationRequired` when ``migrate`` is false and the
        record's schema version lags behind.
        """

        target = state_id if state_id is not None else self._latest_id()
        if target is None:
            logger.debug("No state stored", extra={"mode_id": self.mode_id})
            return None
        path = self._path(target)
        if not self.files.exists(path):
            return None
        try:
            raw = self.files.read(path).content
        except NotFoundError:
            return None

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StateValidationError(target, [f"invalid JSON: {exc}"]) from exc
        if not isinstance(payload, dict):
            raise StateValidationError(target, ["record must be a JSON object"])

        record = StateRecord.from_dict(payload)
        validation = self.validate(record)
        if not validation.is_valid:
            logger.error(
                "Stored state is invalid",
                extra={"mode_id": self.mode_id, "state_id": target, "errors": validation.errors},
            )
            raise StateValidationError(target, validation.errors)
        for warning in validation.warnings:
            logger.warning(warning, extra={"mode_id": self.mode_id, "state_id": target})

        if validation.needs_migration:
            if not migrate:
                raise MigrationRequired(record, validation)
            record = self.migrate(record)
        return record

    def validate(self, record: StateRecord) -> StateValidationResult:
        result = StateValidationResult(
            current_version=record.schema_version,
            target_version=self.schema_version,
        )
        result.errors.extend(self._structural_errors(record))
        if record.checksum is None:
            result.warnings.append(f"State {record.id} has no checksum")
        elif not result.errors and record.checksum != compute_checksum(record):
            result.errors.append("checksum mismatch")
        result.needs_migration = record.schema_version != self.schema_version

        if self.validator is not None:
            result.merge(self.validator(record))
        result.is_valid = not result.errors
        return result

    def migrate(self, record: StateRecord) -> StateRecord:
        """Return a migrated copy of ``record``; nothing is written."""

        migrated = copy.deepcopy(record)
        source_version = migrated.schema_version
        if migrated.schema_version is None:
            migrated.schema_version = LEGACY_SCHEMA_VERSION
        if self.migrator is not None:
            migrated = self.migrator(migrated)
        migrated.schema_version = self.schema_version
        migrated.checksum = compute_checksum(migrated)
        logger.info(
            "Migrated state",
            extra={
                "mode_id": self.mode_id,
                "state_id": migrated.id,
                "from_version": source_version,
                "to_version": self.schema_version,
            },
        )
        return migrated

    def clear(self, state_id: str | None = None) -> int:
        """Delete one record, or every record when ``state_id`` is omitted."""

        targets = [state_id] if state_id is not None else self.list_ids()
        deleted = 0
        for target in targets:
            try:
                self.files.delete(self._path(target))
            except NotFoundError:
                continue
            deleted += 1
        logger.info("Cleared state", extra={"mode_id": self.mode_id, "deleted": deleted})
        return deleted

    def list_ids(self) -> List[str]:
        if not self.files.exists(self.namespace):
            return []
        try:
            entries = self.files.list(self.namespace, pattern=STATE_FILE_PATTERN)
        except NotFoundError:
            return []
        return [entry.name[: -len(".json")] for entry in entries]

    # ------------------------------------------------------------------
    def _latest_id(self) -> str | None:
        ids = self.list_ids()
        return ids[-1] if ids else None

    def _path(self, state_id: str) -> str:
        if not _is_valid_id(state_id):
            raise ValidationFailedError(f"Invalid state id: {state_id!r}")
        return f"{self.namespace}/{state_id}.json"

    def _structural_errors(self, record: StateRecord) -> List[str]:
        errors: List[str] = []
        if not _is_valid_id(record.id):
            errors.append("id must be a non-empty string without path separators")
        if record.mode_id != self.mode_id:
            errors.append(f"mode_id {record.mode_id!r} does not match {self.mode_id!r}")
        if not isinstance(record.timestamp, datetime):
            errors.append("timestamp must be an ISO-8601 datetime")
        if record.schema_version is not None and not isinstance(record.schema_version, str):
            errors.append("schema_version must be a string")
        if not isinstance(record.data, dict):
            errors.append("data must be a mapping")
        if not isinstance(record.artifacts, list) or not all(isinstance(item, str) for item in record.artifacts):
            errors.append("artifacts must be a list of strings")
        return errors


__all__ = [
    "LEGACY_SCHEMA_VERSION",
    "StateRecord",
    "StateStore",
    "StateValidationResult",
    "compute_checksum",
    "new_state_id",
]
