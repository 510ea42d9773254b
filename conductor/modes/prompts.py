"""Per-mode prompt templates with stored overrides.

Modes ship their default templates in code; a project may override any of
them in ``modes/<mode_id>/prompts.json``. Two file shapes are accepted:

* flat: ``{"welcome": "Hello {name}"}``
* full: ``{"version": "1.0.0", "mode_id": "...", "templates": [{"id": ..., "template": ...}]}``

``save`` always writes the full shape.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping

from conductor.core.errors import CoreError, NotFoundError
from conductor.storage.files import FileOperations

logger = logging.getLogger("conductor.modes")

PROMPTS_FILE_VERSION = "1.0.0"

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}|\$\{(\w+)\}|\{(\w+)\}")


@dataclass(slots=True)
class PromptTemplate:
    id: str
    template: str
    description: str = ""
    variables: List[str] = field(default_factory=list)
    format: str = "text"

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PromptTemplate":
        return cls(
            id=str(payload["id"]),
            template=str(payload["template"]),
            description=payload.get("description", ""),
            variables=list(payload.get("variables", [])),
            format=payload.get("format", "text"),
        )


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return json.dumps(value, default=str)


class PromptTemplates:
    """Template set for one mode; stored overrides take precedence over defaults."""

    def __init__(self, mode_id: str, defaults: Mapping[str, str] | None = None) -> None:
        self.mode_id = mode_id
        self._defaults = dict(defaults or {})
        self._templates: Dict[str, PromptTemplate] = {}
        self.reset()

    def reset(self) -> None:
        self._templates = {key: PromptTemplate(id=key, template=value) for key, value in self._defaults.items()}

    def clear(self) -> None:
        self._templates.clear()

    def load(self, files: FileOperations, path: str) -> int:
        """Overlay templates stored at ``path``; returns how many were applied.

        A missing or unreadable file keeps the current templates.
        """

        try:
            payload = json.loads(files.read(path).content)
        except NotFoundError:
            return 0
        except (CoreError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to load prompt templates",
                extra={"mode_id": self.mode_id, "path": path, "error": str(exc)},
            )
            return 0

        applied = 0
        if isinstance(payload, dict) and isinstance(payload.get("templates"), list):
            for entry in payload["templates"]:
                try:
                    template = PromptTemplate.from_dict(entry)
                except (KeyError, TypeError, AttributeError):
                    logger.warning("Skipping malformed prompt template", extra={"mode_id": self.mode_id})
                    continue
                self._templates[template.id] = template
                applied += 1
        elif isinstance(payload, dict):
            for key, value in payload.items():
                if isinstance(value, str):
                    self._templates[key] = PromptTemplate(id=key, template=value)
                    applied += 1
        logger.debug("Loaded prompt templates", extra={"mode_id": self.mode_id, "count": applied})
        return applied

    def save(self, files: FileOperations, path: str) -> None:
        payload = {
            "version": PROMPTS_FILE_VERSION,
            "mode_id": self.mode_id,
            "templates": [asdict(template) for template in self._templates.values()],
        }
        files.write(path, json.dumps(payload, indent=2, ensure_ascii=False))
        logger.debug("Saved prompt templates", extra={"mode_id": self.mode_id, "count": len(self._templates)})

    def get(self, key: str) -> str | None:
        template = self._templates.get(key)
        return template.template if template else None

    def set(self, key: str, template: str) -> None:
        self._templates[key] = PromptTemplate(id=key, template=template)

    def as_dict(self) -> Dict[str, str]:
        return {key: template.template for key, template in self._templates.items()}

    def ids(self) -> List[str]:
        return list(self._templates)

    def render(self, key: str, **variables: Any) -> str:
        """Substitute ``{{ var }}``, ``${var}`` and ``{var}`` in template ``key``."""

        template = self._templates.get(key)
        if template is None:
            raise KeyError(f"Template not found: {key}")

        def _substitute(match: re.Match[str]) -> str:
            name = next(group for group in match.groups() if group is not None)
            if name not in variables:
                return match.group(0)
            return _format_value(variables[name])

        # Single pass: inserted values are never scanned again.
        return _PLACEHOLDER.sub(_substitute, template.template)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, key: object) -> bool:
        return key in self._templates


__all__ = ["PromptTemplate", "PromptTemplates"]
