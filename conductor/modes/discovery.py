"""Discovery mode: a fixed sequence of problem-exploration questions.

Each turn stores the user's answer, derives a short insight from it and asks
the next question. Progress lives in a single state record per session so an
interrupted conversation resumes where it stopped. Cleanup writes the
collected insights to the project document.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from conductor.artifacts.markdown import MarkdownDocument
from conductor.core.enums import ModeName
from conductor.core.time_utils import isoformat, now_utc
from conductor.runtime.state import StateRecord, StateValidationResult

from .base import ModeBehavior, ModeResult

if TYPE_CHECKING:  # pragma: no cover
    from .controller import ModeController

QUESTIONS = (
    "What problem are you trying to solve?",
    "Who experiences this problem most frequently?",
    "Tell me about a recent time this was particularly frustrating.",
    "What would success look like if this problem were solved?",
    "What constraints or limitations should we keep in mind?",
)

# Keys written by 1.0.0 sessions.
_LEGACY_KEYS = {
    "currentQuestionIndex": "question_index",
    "problemStatement": "problem_statement",
    "successCriteria": "success_criteria",
    "startTime": "started_at",
    "completedAt": "completed_at",
}


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class DiscoveryMode(ModeBehavior):
    """Socratic problem exploration driven by :data:`QUESTIONS`."""

    mode_id = ModeName.DISCOVERY.value
    version = "1.1.0"
    description = "Conversational problem exploration through Socratic questioning"
    default_prompts = {
        "welcome": (
            "Welcome to Discovery Mode! I'll help you explore and understand your "
            "problem space through conversation."
        ),
        "question_prefix": "Let's explore this together:",
        "insight_summary": "Based on our conversation, here are the key insights I've gathered:",
    }

    questions = QUESTIONS

    # Lifecycle ---------------------------------------------------------
    def do_initialize(self, runtime: "ModeController") -> None:
        current = runtime.load_state()
        if current is not None and not self.is_complete(current):
            self.logger.info("Resuming discovery session", extra={"state_id": current.id})
            return
        record = runtime.save_state({"data": self._initial_data()})
        self.logger.info("Started discovery session", extra={"state_id": record.id})

    def do_execute(
        self,
        runtime: "ModeController",
        input_text: str,
        context: Mapping[str, Any] | None,
    ) -> ModeResult[str]:
        record = runtime.load_state()
        if record is None:
            raise RuntimeError("No discovery state found; the mode was not initialized")

        data = self._fill_defaults(record.data)
        index = data["question_index"]
        answer = input_text.strip()
        if index > 0 and not self.is_complete(record):
            if not answer:
                # Nothing to record; ask the pending question again.
                return ModeResult.ok(self._format_question(runtime, index - 1))
            data["responses"].append(answer)
            self._record_insight(data, answer)

        if index >= len(self.questions):
            return self._complete(runtime, record)

        prompt = self._format_question(runtime, index)
        data["question_index"] = index + 1
        runtime.save_state(record)
        self.logger.info(
            "Asked discovery question",
            extra={"question": index + 1, "total_questions": len(self.questions)},
        )
        return ModeResult.ok(prompt)

    def do_validate(self, runtime: "ModeController") -> ModeResult[bool]:
        record = runtime.load_state()
        if record is None:
            return ModeResult.fail("Discovery session has no state to validate")
        if not record.data.get("responses") and not record.data.get("insights"):
            return ModeResult.fail("Discovery session has no responses or insights to validate")
        return ModeResult.ok(True)

    def do_cleanup(self, runtime: "ModeController") -> None:
        record = runtime.load_state()
        if record is None:
            self.logger.warning("No discovery state found for artifact generation")
            return
        project_file = "project.md"
        if runtime.runtime_config is not None:
            project_file = runtime.runtime_config.file_paths.project_file
        self.build_project_document(record).save(runtime.files, project_file)
        if project_file not in record.artifacts:
            record.artifacts.append(project_file)
            runtime.save_state(record)

    # State -------------------------------------------------------------
    def do_validate_state(self, record: StateRecord) -> StateValidationResult:
        result = StateValidationResult()
        data = record.data if isinstance(record.data, dict) else {}
        for key in ("responses", "insights"):
            if key in data and not isinstance(data[key], list):
                result.errors.append(f"data.{key} must be a list")
        index = data.get("question_index", data.get("currentQuestionIndex"))
        if index is not None and (not isinstance(index, int) or index < 0):
            result.errors.append("data.question_index must be a non-negative integer")
        result.is_valid = not result.errors
        return result

    def do_migrate_state(self, record: StateRecord) -> StateRecord:
        data = record.data
        for legacy, current in _LEGACY_KEYS.items():
            if legacy in data:
                data.setdefault(current, data.pop(legacy))
        self._fill_defaults(data)
        return record

    # Helpers -----------------------------------------------------------
    @staticmethod
    def is_complete(record: StateRecord) -> bool:
        return bool(record.data.get("completed_at"))

    def _fill_defaults(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Add any progress key a record lacks, e.g. one written by hand."""

        for key, value in self._initial_data().items():
            data.setdefault(key, value)
        return data

    def _initial_data(self) -> Dict[str, Any]:
        return {
            "question_index": 0,
            "responses": [],
            "insights": [],
            "problem_statement": None,
            "success_criteria": None,
            "started_at": isoformat(now_utc()),
            "completed_at": None,
        }

    def _format_question(self, runtime: "ModeController", index: int) -> str:
        prompts = runtime.get_prompts()
        welcome = f"{prompts.get('welcome', '')}\n\n" if index == 0 else ""
        return f"{welcome}{prompts.get('question_prefix', '')} {self.questions[index]}".strip()

    @staticmethod
    def _record_insight(data: Dict[str, Any], response: str) -> None:
        answered = data["question_index"] - 1
        if answered == 0:
            insight = f"Problem identified: {_truncate(response, 100)}"
            data["problem_statement"] = response
        elif answered == 1:
            insight = f"Key stakeholders: {response}"
        elif answered == 2:
            insight = f"Pain point example captured: {_truncate(response, 80)}"
        elif answered == 3:
            insight = f"Success criteria defined: {response}"
            data["success_criteria"] = response
        elif answered == 4:
            insight = f"Constraints identified: {response}"
        else:
            insight = f"Additional context: {_truncate(response, 80)}"
        data["insights"].append(insight)

    def _complete(self, runtime: "ModeController", record: StateRecord) -> ModeResult[str]:
        data = record.data
        if not data.get("completed_at"):
            data["completed_at"] = isoformat(now_utc())
        runtime.save_state(record)

        insights: List[str] = data["insights"]
        lines = [runtime.get_prompts().get("insight_summary", ""), ""]
        lines.extend(f"- {insight}" for insight in insights)
        lines.extend(
            [
                "",
                "Discovery session complete! You can now move on to planning, "
                "or keep exploring specific aspects of the problem space.",
            ]
        )
        self.logger.info("Discovery session completed", extra={"state_id": record.id})
        return ModeResult.ok("\n".join(lines).strip())

    def build_project_document(self, record: StateRecord) -> MarkdownDocument:
        data = record.data
        insights = "\n".join(f"- {insight}" for insight in data.get("insights", [])) or "- No insights captured yet"
        body = "\n".join(
            [
                "# Discovery Session Results",
                "",
                "## Problem Space",
                "",
                insights,
                "",
                "## Success Criteria",
                "",
                data.get("success_criteria") or "To be defined in continued sessions",
                "",
                "## Session Metadata",
                "",
                f"- **Questions Asked**: {data.get('question_index', 0)}/{len(self.questions)}",
                f"- **Responses Collected**: {len(data.get('responses', []))}",
                f"- **Started**: {data.get('started_at') or 'unknown'}",
                f"- **Completed**: {data.get('completed_at') or 'in progress'}",
                "",
                "## Next Steps",
                "",
                "Review the problem space above, then continue with planning.",
            ]
        )
        attrs = {
            "id": record.id,
            "stage": ModeName.DISCOVERY.value,
            "confidence": "exploring",
            "last_updated": isoformat(now_utc()),
            "mode_version": self.version,
        }
        return MarkdownDocument(attrs=attrs, body=body)


__all__ = ["DiscoveryMode", "QUESTIONS"]
