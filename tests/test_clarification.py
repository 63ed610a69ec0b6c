"""Tests for the optional clarifying-question stage."""

from __future__ import annotations

from typing import Any

import pytest

from quillagent.ai.orchestration.clarification import (
    ChatModelIntentAnalyzer,
    ClarificationStage,
    ClarifyingQuestion,
    extract_json_payload,
    format_clarifying_message,
)
from quillagent.ai.orchestration.types import AgentContext, Message
from quillagent.ai.streaming import TextDelta
from tests.helpers import ScriptedModel


class StaticAnalyzer:
    def __init__(self, intent: Any = None, error: Exception | None = None):
        self._intent = intent or {}
        self._error = error
        self.calls = 0

    async def analyze(self, history):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._intent


def _context(mode: str = "agent") -> AgentContext:
    return AgentContext(mode=mode, conversation_history=(Message.user("write a post"),))  # type: ignore[arg-type]


class TestClarificationStage:
    """Tests for ClarificationStage.evaluate."""

    @pytest.mark.asyncio
    async def test_complete_intent_proceeds(self):
        intent = {"topic": "tea", "goal": "educate", "audience": "beginners", "format": "blog post"}
        decision = await ClarificationStage(StaticAnalyzer(intent)).evaluate(_context())

        assert decision.action == "proceed"
        assert not decision.needs_clarification
        assert decision.intent == intent

    @pytest.mark.asyncio
    async def test_missing_fields_produce_questions(self):
        analyzer = StaticAnalyzer(
            {
                "topic": "tea",
                "goal": "  ",
                "clarifyingQuestions": [
                    {"field": "audience", "question": "Who will  read this?"},
                    {"field": "topic", "question": "Ignored because topic is known"},
                ],
            }
        )

        decision = await ClarificationStage(analyzer).evaluate(_context())

        assert decision.needs_clarification
        assert [q.field for q in decision.questions] == ["goal", "audience", "format"]
        assert decision.questions[1].question == "Who will read this?"
        assert decision.questions[0].question.startswith("What outcome should this content drive")

    @pytest.mark.asyncio
    async def test_analyzer_failure_proceeds(self):
        decision = await ClarificationStage(StaticAnalyzer(error=RuntimeError("down"))).evaluate(_context())
        assert decision.action == "proceed"

    @pytest.mark.asyncio
    async def test_stage_only_applies_to_configured_modes(self):
        analyzer = StaticAnalyzer()
        stage = ClarificationStage(analyzer)

        decision = await stage.evaluate(_context("chat"))

        assert decision.action == "proceed"
        assert analyzer.calls == 0


class TestFormatting:
    def test_numbered_questions(self):
        message = format_clarifying_message(
            [ClarifyingQuestion("topic", "What topic?"), ClarifyingQuestion("goal", "What goal?")]
        )

        assert message == (
            "Before I start planning your content, I need a bit more information:\n"
            "1. What topic?\n"
            "2. What goal?"
        )

    def test_no_questions_fallback(self):
        assert format_clarifying_message([]).startswith("Before I start planning, could you share more")

    def test_extract_json_payload(self):
        assert extract_json_payload('```json\n{"topic": "tea"}\n```') == {"topic": "tea"}
        assert extract_json_payload('Sure! {"goal": "educate"} Hope that helps.') == {"goal": "educate"}
        assert extract_json_payload("no json here") is None


class TestChatModelIntentAnalyzer:
    @pytest.mark.asyncio
    async def test_collects_streamed_json(self):
        model = ScriptedModel([[TextDelta('{"topic": '), TextDelta('"tea", "goal": null}')]])

        intent = await ChatModelIntentAnalyzer(model).analyze([Message.user("a post about tea")])

        assert intent == {"topic": "tea", "goal": None}
        transcript = model.calls[0]["messages"][1]["content"]
        assert "USER: a post about tea" in transcript

    @pytest.mark.asyncio
    async def test_empty_history_skips_model(self):
        model = ScriptedModel([[TextDelta("{}")]])

        assert await ChatModelIntentAnalyzer(model).analyze([]) == {}
        assert model.calls == []
