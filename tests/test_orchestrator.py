"""Tests for the ChatOrchestrator turn facade."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from quillagent.ai.client import AIClient
from quillagent.ai.orchestration.clarification import ClarificationStage
from quillagent.ai.orchestration.events import EventChannel, EventName
from quillagent.ai.orchestration.orchestrator import (
    ChatOrchestrator,
    OrchestratorConfig,
    resolve_with_timeout,
)
from quillagent.ai.orchestration.types import Message, ToolLogStatus
from quillagent.ai.streaming import FinishSignal
from quillagent.ai.tools.registry import ToolRegistry
from quillagent.services.settings import Settings
from tests.helpers import RecordingStore, ScriptedModel, event_names, text_pass, tool_call_chunks


# =============================================================================
# Test Fixtures
# =============================================================================


class StaticIdentity:
    def __init__(self, identity: Any = None, *, delay: float = 0.0, error: Exception | None = None):
        self._identity = identity
        self._delay = delay
        self._error = error

    async def resolve(self) -> Any:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._identity


class StaticAnalyzer:
    def __init__(self, intent: dict[str, Any]):
        self._intent = intent

    async def analyze(self, history):
        return self._intent


def _read_turn_model() -> ScriptedModel:
    return ScriptedModel(
        [
            [*tool_call_chunks(0, "read_source_list", {}, call_id="call_src"), FinishSignal("tool_calls")],
            text_pass("No sources yet."),
        ]
    )


def _history(text: str = "show my sources") -> list[Message]:
    return [Message.user(text)]


# =============================================================================
# Streaming turns
# =============================================================================


class TestStreamTurn:
    """Tests for ChatOrchestrator.stream_turn."""

    @pytest.mark.asyncio
    async def test_events_end_with_done(self, registry):
        registry.register("read_source_list", lambda invocation, context: [])
        orchestrator = ChatOrchestrator(_read_turn_model(), registry)
        context = orchestrator.build_context("agent", _history())

        events = [event async for event in orchestrator.stream_turn(context, message_id="m-1")]

        names = event_names(events)
        assert names[-1] == EventName.DONE
        assert names.count(EventName.MESSAGE_COMPLETE) == 1
        assert EventName.ERROR not in names
        complete = next(e for e in events if e.name == EventName.MESSAGE_COMPLETE)
        assert complete.data == {"messageId": "m-1", "message": "No sources yet."}

    @pytest.mark.asyncio
    async def test_crash_emits_error_without_done(self, registry):
        class ExplodingModel:
            async def stream_chat(self, messages, *, tools=None, tool_choice=None):
                raise RuntimeError("model adapter bug")
                yield  # pragma: no cover

        orchestrator = ChatOrchestrator(ExplodingModel(), registry)
        context = orchestrator.build_context("agent", _history())

        events = [event async for event in orchestrator.stream_turn(context)]

        assert event_names(events) == [EventName.ERROR]
        assert events[0].data["message"] == "An unexpected error occurred while generating the response."

    @pytest.mark.asyncio
    async def test_tool_handlers_receive_identity_and_extras(self, registry):
        seen: dict[str, Any] = {}

        def handler(invocation, context):
            seen["identity"] = context.identity
            seen["extras"] = dict(context.extras)
            seen["conversation_id"] = context.conversation_id
            return []

        registry.register("read_source_list", handler)
        orchestrator = ChatOrchestrator(
            _read_turn_model(), registry, identity_resolver=StaticIdentity({"user": "u-1"})
        )
        context = orchestrator.build_context("chat", _history(), conversation_id="conv-7")

        _ = [event async for event in orchestrator.stream_turn(context, extras={"db": "fake"})]

        assert seen == {"identity": {"user": "u-1"}, "extras": {"db": "fake"}, "conversation_id": "conv-7"}


# =============================================================================
# Persistence
# =============================================================================


class TestBackgroundPersistence:
    """Side effects run on the background queue."""

    @pytest.mark.asyncio
    async def test_rows_are_persisted(self, registry):
        registry.register("read_source_list", lambda invocation, context: [])
        store = RecordingStore()
        orchestrator = ChatOrchestrator(_read_turn_model(), registry, store=store)
        context = orchestrator.build_context("agent", _history(), conversation_id="conv-1")

        result = await orchestrator.run_turn(context)
        await orchestrator.background.join()

        assert store.user_messages == [("conv-1", Message.user("show my sources"))]
        assert [entry.status for _, entry in store.tool_logs] == [
            ToolLogStatus.STARTED,
            ToolLogStatus.SUCCEEDED,
        ]
        saved = store.assistant_messages[0]
        assert saved["message_id"] == result.message_id
        assert saved["content"] == "No sources yet."
        assert len(saved["tool_history"]) == 1

    @pytest.mark.asyncio
    async def test_store_failures_do_not_reach_the_stream(self, registry):
        store = RecordingStore(fail_on="save_user_message")
        orchestrator = ChatOrchestrator(ScriptedModel([text_pass("Hi")]), registry, store=store)
        context = orchestrator.build_context("agent", _history("hi"))

        events = [event async for event in orchestrator.stream_turn(context)]
        await orchestrator.background.join()

        assert event_names(events)[-1] == EventName.DONE
        assert [failure.label for failure in orchestrator.background.errors] == ["save_user_message"]
        assert store.assistant_messages[0]["content"] == "Hi"

    @pytest.mark.asyncio
    async def test_turn_does_not_wait_for_persistence(self, registry):
        release = asyncio.Event()

        class SlowStore(RecordingStore):
            async def save_user_message(self, conversation_id, message):
                await release.wait()

        orchestrator = ChatOrchestrator(ScriptedModel([text_pass("Hi")]), registry, store=SlowStore())
        context = orchestrator.build_context("agent", _history("hi"))

        result = await asyncio.wait_for(orchestrator.run_turn(context), timeout=1)

        assert result.message == "Hi"
        assert orchestrator.background.pending >= 1
        release.set()
        await orchestrator.aclose()


# =============================================================================
# Clarification, identity and configuration
# =============================================================================


class TestClarification:
    @pytest.mark.asyncio
    async def test_missing_intent_asks_questions(self, registry):
        model = ScriptedModel([text_pass("should not be called")])
        stage = ClarificationStage(StaticAnalyzer({"topic": "green tea", "goal": None}))
        orchestrator = ChatOrchestrator(model, registry, clarification=stage)
        channel = EventChannel()
        context = orchestrator.build_context("agent", _history("write something"))

        result = await orchestrator.run_turn(context, channel=channel)

        assert model.calls == []
        assert result.passes == 0
        assert result.message.startswith("Before I start planning your content")
        assert "1. What outcome should this content drive" in result.message
        assert event_names(channel.drain_nowait()) == [EventName.MESSAGE_COMPLETE]

    @pytest.mark.asyncio
    async def test_chat_mode_skips_clarification(self, registry):
        model = ScriptedModel([text_pass("Sure.")])
        stage = ClarificationStage(StaticAnalyzer({}))
        orchestrator = ChatOrchestrator(model, registry, clarification=stage)

        result = await orchestrator.run_turn(orchestrator.build_context("chat", _history("hi")))

        assert result.message == "Sure."


class TestIdentity:
    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        assert await resolve_with_timeout(StaticIdentity("u", delay=1), timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        assert await resolve_with_timeout(StaticIdentity(error=RuntimeError("auth down")), 1) is None

    @pytest.mark.asyncio
    async def test_success_and_missing_resolver(self):
        assert await resolve_with_timeout(StaticIdentity("u-1"), 1) == "u-1"
        assert await resolve_with_timeout(None, 1) is None


class TestConfiguration:
    def test_build_context_validates_mode(self, registry):
        orchestrator = ChatOrchestrator(ScriptedModel([text_pass("x")]), registry)

        with pytest.raises(ValueError):
            orchestrator.build_context("admin", _history())

    def test_build_context_defaults_pass_budget(self, registry):
        orchestrator = ChatOrchestrator(
            ScriptedModel([text_pass("x")]), registry, config=OrchestratorConfig(max_passes=7)
        )

        assert orchestrator.build_context("agent", _history()).max_passes == 7
        assert orchestrator.build_context("agent", _history(), max_passes=2).max_passes == 2

    def test_build_context_rejects_zero_passes(self, registry):
        orchestrator = ChatOrchestrator(ScriptedModel([text_pass("x")]), registry)

        with pytest.raises(ValueError):
            orchestrator.build_context("agent", _history(), max_passes=0)

    @pytest.mark.asyncio
    async def test_from_settings_builds_client_and_executor(self):
        settings = Settings(api_key="sk-test", max_passes=4, tool_max_attempts=2, identity_timeout=1.5)

        orchestrator = ChatOrchestrator.from_settings(settings, ToolRegistry())

        assert isinstance(orchestrator._model, AIClient)
        assert orchestrator._executor.max_attempts == 2
        assert orchestrator._config == OrchestratorConfig(
            max_passes=4, parallel_tool_calls=True, identity_timeout=1.5, debug_logging=False
        )
        await orchestrator.aclose()
