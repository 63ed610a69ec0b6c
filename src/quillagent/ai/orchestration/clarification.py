"""Optional clarifying-question stage that runs before the agent loop.

When configured, the stage asks an :class:`IntentAnalyzer` what the user wants
to write. If any required intent field (topic, goal, audience, format) is still
unknown, the turn answers with clarifying questions instead of running tools.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..client import ChatModel
from ..streaming import TextDelta
from .types import AgentContext, Message

__all__ = [
    "ChatModelIntentAnalyzer",
    "ClarificationDecision",
    "ClarificationStage",
    "ClarifyingQuestion",
    "DEFAULT_CLARIFYING_QUESTIONS",
    "IntentAnalyzer",
    "REQUIRED_INTENT_FIELDS",
    "extract_json_payload",
    "format_clarifying_message",
]

LOGGER = logging.getLogger(__name__)

REQUIRED_INTENT_FIELDS: tuple[str, ...] = ("topic", "goal", "audience", "format")

DEFAULT_CLARIFYING_QUESTIONS: Mapping[str, str] = {
    "topic": "What is the main topic or subject you want to cover?",
    "goal": "What outcome should this content drive (e.g., educate, convert, entertain)?",
    "audience": "Who is the primary audience or reader for this content?",
    "format": "What content format do you want (blog post, email, landing page, etc.)?",
}

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(slots=True, frozen=True)
class ClarifyingQuestion:
    field: str
    question: str


@dataclass(slots=True, frozen=True)
class ClarificationDecision:
    """Outcome of the stage: ``"proceed"`` or ``"clarify"`` with questions."""

    action: str
    questions: tuple[ClarifyingQuestion, ...] = ()
    intent: Mapping[str, Any] | None = None

    @property
    def needs_clarification(self) -> bool:
        return self.action == "clarify"

    @property
    def message(self) -> str:
        return format_clarifying_message(self.questions)


@runtime_checkable
class IntentAnalyzer(Protocol):
    """Extracts intent fields from the conversation.

    The returned mapping may carry ``topic``, ``goal``, ``audience``,
    ``format`` and ``clarifyingQuestions`` (a list of ``{field, question}``).
    """

    async def analyze(self, history: Sequence[Message]) -> Mapping[str, Any]:
        ...


def format_clarifying_message(questions: Sequence[ClarifyingQuestion]) -> str:
    if not questions:
        return (
            "Before I start planning, could you share more about what you would like me to create?"
        )
    items = "\n".join(f"{index}. {gap.question}" for index, gap in enumerate(questions, start=1))
    return f"Before I start planning your content, I need a bit more information:\n{items}"


def extract_json_payload(text: str) -> dict[str, Any] | None:
    """Parse a JSON object from model output, tolerating code fences and prose."""

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_RE.sub("", cleaned).strip()
    for candidate in (cleaned, _first_object(cleaned)):
        if not candidate:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _first_object(text: str) -> str | None:
    match = _OBJECT_RE.search(text)
    return match.group(0) if match else None


def _normalize_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    collapsed = " ".join(value.split())
    return collapsed or None


class ClarificationStage:
    """Decides whether a turn should ask clarifying questions first.

    Args:
        analyzer: Source of intent fields.
        required_fields: Fields that must be known before proceeding.
        modes: Agent modes the stage applies to.
    """

    def __init__(
        self,
        analyzer: IntentAnalyzer,
        *,
        required_fields: Sequence[str] = REQUIRED_INTENT_FIELDS,
        modes: Sequence[str] = ("agent",),
    ) -> None:
        self._analyzer = analyzer
        self._required_fields = tuple(required_fields)
        self._modes = frozenset(modes)

    def applies_to(self, context: AgentContext) -> bool:
        return context.mode in self._modes

    async def evaluate(self, context: AgentContext) -> ClarificationDecision:
        """Return ``clarify`` when required intent fields are missing.

        Analyzer failures fall through to ``proceed`` so a broken analyzer never
        blocks the conversation.
        """

        if not self.applies_to(context):
            return ClarificationDecision(action="proceed")
        try:
            intent = await self._analyzer.analyze(context.conversation_history)
        except Exception as exc:
            LOGGER.warning("Intent analysis failed; continuing without clarification: %s", exc)
            return ClarificationDecision(action="proceed")

        missing = [name for name in self._required_fields if not _normalize_text(intent.get(name))]
        if not missing:
            return ClarificationDecision(action="proceed", intent=intent)

        questions = self._questions_for(missing, intent.get("clarifyingQuestions"))
        LOGGER.debug("Clarification needed for fields: %s", ", ".join(missing))
        return ClarificationDecision(action="clarify", questions=questions, intent=intent)

    def _questions_for(self, missing: Sequence[str], suggested: Any) -> tuple[ClarifyingQuestion, ...]:
        by_field: dict[str, str] = {}
        if isinstance(suggested, list):
            for item in suggested:
                if not isinstance(item, Mapping):
                    continue
                field_name = str(item.get("field") or "").strip().lower()
                if field_name not in missing or field_name in by_field:
                    continue
                question = _normalize_text(item.get("question"))
                by_field[field_name] = question or DEFAULT_CLARIFYING_QUESTIONS.get(field_name, "")
        return tuple(
            ClarifyingQuestion(
                field=name,
                question=by_field.get(name) or DEFAULT_CLARIFYING_QUESTIONS.get(
                    name, f"Could you tell me more about the {name}?"
                ),
            )
            for name in missing
        )


_INTENT_SYSTEM_PROMPT = """You analyze chat conversations to understand content-writing intent.

Return ONLY valid JSON that matches this schema:
{
  "topic": "string|null",
  "goal": "string|null",
  "audience": "string|null",
  "format": "string|null",
  "tone": "string|null",
  "clarifyingQuestions": [{"field": "<topic|goal|audience|format>", "question": "string"}]
}

- Use null when information is missing.
- Keep clarifyingQuestions short and actionable.
- Never include markdown or prose outside the JSON."""


class ChatModelIntentAnalyzer:
    """:class:`IntentAnalyzer` that asks a chat model for a JSON intent summary."""

    def __init__(self, model: ChatModel) -> None:
        self._model = model

    async def analyze(self, history: Sequence[Message]) -> Mapping[str, Any]:
        transcript = "\n\n".join(
            f"{message.role.upper()}: {message.content}".strip()
            for message in history
            if message.role in ("user", "assistant") and message.content
        )
        if not transcript:
            return {}
        messages = [
            Message.system(_INTENT_SYSTEM_PROMPT).to_chat_param(),
            Message.user(
                f"Conversation transcript:\n{transcript}\n\n"
                "Extract the intent summary as JSON using the schema from the system prompt."
            ).to_chat_param(),
        ]
        parts: list[str] = []
        async for chunk in self._model.stream_chat(messages):
            if isinstance(chunk, TextDelta):
                parts.append(chunk.content)
        payload = extract_json_payload("".join(parts))
        if payload is None:
            LOGGER.warning("Intent analyzer returned no parseable JSON")
            return {}
        return payload
