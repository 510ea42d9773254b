"""Markdown documents with YAML frontmatter (``project.md`` and friends)."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

import yaml

from conductor.core.errors import ValidationFailedError
from conductor.storage.files import FileOperations, WriteResult

logger = logging.getLogger("conductor.artifacts")

_FRONTMATTER = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)(.*)\Z", re.DOTALL)
_SECTION_HEADING = re.compile(r"^##[ \t]+(.+?)[ \t]*$", re.MULTILINE)


@dataclass(slots=True)
class MarkdownDocument:
    """Frontmatter ``attrs`` plus a free-form Markdown ``body``."""

    attrs: Dict[str, Any] = field(default_factory=dict)
    body: str = ""

    @classmethod
    def parse(cls, text: str) -> "MarkdownDocument":
        match = _FRONTMATTER.match(text)
        if match is None:
            return cls(attrs={}, body=text)
        try:
            attrs = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError as exc:
            raise ValidationFailedError(f"Invalid YAML frontmatter: {exc}") from exc
        if not isinstance(attrs, Mapping):
            raise ValidationFailedError("Frontmatter must be a mapping")
        return cls(attrs=dict(attrs), body=match.group(2).lstrip("\n"))

    def render(self) -> str:
        if not self.attrs:
            return self.body
        frontmatter = yaml.safe_dump(
            self.attrs,
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
            width=80,
        ).strip()
        return f"---\n{frontmatter}\n---\n\n{self.body}"

    def sections(self) -> Dict[str, str]:
        """Map each ``## Heading`` to the text up to the next level-2 heading."""

        headings = list(_SECTION_HEADING.finditer(self.body))
        sections: Dict[str, str] = {}
        for index, heading in enumerate(headings):
            end = headings[index + 1].start() if index + 1 < len(headings) else len(self.body)
            sections[heading.group(1)] = self.body[heading.end():end].strip()
        return sections

    def update_attrs(self, **changes: Any) -> "MarkdownDocument":
        return MarkdownDocument(attrs={**self.attrs, **changes}, body=self.body)

    @classmethod
    def load(cls, files: FileOperations, path: str) -> "MarkdownDocument":
        return cls.parse(files.read(path).content)

    def save(self, files: FileOperations, path: str) -> WriteResult:
        result = files.write(path, self.render())
        logger.info("Wrote markdown artifact", extra={"path": path})
        return result


__all__ = ["MarkdownDocument"]
