"""Tests for the ordered event channel and emitter."""

from __future__ import annotations

import json

import pytest

from quillagent.ai.orchestration.events import (
    AgentEvent,
    EventChannel,
    EventEmitter,
    EventName,
    ToolCallPhase,
)
from quillagent.ai.orchestration.types import ToolLogEntry, ToolLogStatus
from tests.helpers import drain, event_names, events_for_call


class TestAgentEvent:
    def test_to_sse(self):
        event = AgentEvent(name=EventName.MESSAGE_CHUNK, data={"messageId": "m1", "chunk": "hé"})

        frame = event.to_sse()

        assert frame.startswith("event: message:chunk\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1]) == {"messageId": "m1", "chunk": "hé"}


class TestEventChannel:
    """Tests for EventChannel."""

    @pytest.mark.asyncio
    async def test_iteration_ends_after_close(self, channel):
        channel.send(AgentEvent(EventName.DONE))
        channel.close()

        received = [event async for event in channel]

        assert event_names(received) == [EventName.DONE]

    def test_send_after_close_is_dropped(self, channel):
        channel.close()

        assert channel.send(AgentEvent(EventName.DONE)) is False
        assert channel.closed

    @pytest.mark.asyncio
    async def test_drain_keeps_close_marker(self, channel):
        channel.send(AgentEvent(EventName.DONE))
        channel.close()

        assert event_names(drain(channel)) == [EventName.DONE]
        assert [event async for event in channel] == []


class TestEventEmitter:
    """Tests for per-call lifecycle ordering."""

    def test_full_lifecycle(self, emitter, channel):
        emitter.tool_preparing("c1", "read_content")
        emitter.tool_start("c1", "read_content")
        emitter.tool_progress("c1", "Loading...")
        emitter.tool_complete("c1", "read_content", success=True, result={"ok": True})

        events = drain(channel)

        assert events_for_call(events, "c1") == [
            EventName.TOOL_PREPARING,
            EventName.TOOL_START,
            EventName.TOOL_PROGRESS,
            EventName.TOOL_COMPLETE,
        ]
        complete = events[-1].data
        assert complete["success"] is True
        assert complete["result"] == {"ok": True}
        assert complete["error"] is None
        assert emitter.phase("c1") == ToolCallPhase.COMPLETED
        assert emitter.dropped == 0

    def test_out_of_order_events_are_dropped(self, emitter, channel):
        assert emitter.tool_start("c1", "read_content") is False
        assert emitter.tool_progress("c1", "early") is False

        emitter.tool_preparing("c1", "read_content")
        assert emitter.tool_preparing("c1", "read_content") is False
        assert emitter.tool_progress("c1", "before start") is False

        emitter.tool_start("c1", "read_content")
        emitter.tool_complete("c1", "read_content", success=True)
        assert emitter.tool_progress("c1", "late") is False
        assert emitter.tool_complete("c1", "read_content", success=True) is False

        assert events_for_call(drain(channel), "c1") == [
            EventName.TOOL_PREPARING,
            EventName.TOOL_START,
            EventName.TOOL_COMPLETE,
        ]
        assert emitter.dropped == 6

    def test_complete_may_follow_preparing(self, emitter):
        emitter.tool_preparing("c1", "read_content")

        assert emitter.tool_complete("c1", "read_content", success=False, error="Malformed")
        assert emitter.open_call_ids() == []

    def test_begin_pass_releases_completed_ids(self, emitter, channel):
        emitter.tool_preparing("call_0", "read_content")
        emitter.tool_start("call_0", "read_content")
        emitter.tool_complete("call_0", "read_content", success=True)
        emitter.tool_preparing("open", "read_source")

        emitter.begin_pass()

        assert emitter.phase("call_0") is None
        assert emitter.phase("open") == ToolCallPhase.PREPARING
        assert emitter.tool_preparing("call_0", "read_content")
        assert emitter.tool_start("call_0", "read_content")
        assert emitter.tool_complete("call_0", "read_content", success=True)
        assert events_for_call(drain(channel), "call_0") == [
            EventName.TOOL_PREPARING,
            EventName.TOOL_START,
            EventName.TOOL_COMPLETE,
        ] * 2
        assert emitter.dropped == 0

    def test_ids_interleave_independently(self, emitter, channel):
        emitter.tool_preparing("a", "read_content")
        emitter.tool_preparing("b", "read_source")
        emitter.message_chunk("text")
        emitter.tool_start("b", "read_source")
        emitter.tool_start("a", "read_content")

        assert sorted(emitter.open_call_ids()) == ["a", "b"]
        assert len(drain(channel)) == 5

    def test_message_complete_once(self, emitter, channel):
        assert emitter.message_complete("first")
        assert not emitter.message_complete("second")

        completes = [e for e in drain(channel) if e.name == EventName.MESSAGE_COMPLETE]
        assert [e.data for e in completes] == [{"messageId": "msg-test", "message": "first"}]

    def test_empty_chunks_are_not_sent(self, emitter, channel):
        emitter.message_chunk("")
        assert drain(channel) == []

    def test_log_entry_event(self, emitter, channel):
        entry = ToolLogEntry(
            tool_name="read_content",
            status=ToolLogStatus.STARTED,
            timestamp="2024-01-01T00:00:00.000000+00:00",
            payload={"toolCallId": "c1"},
        )

        emitter.log_entry(entry)

        (event,) = drain(channel)
        assert event.name == EventName.LOG_ENTRY
        assert event.data == {
            "toolName": "read_content",
            "status": "started",
            "timestamp": "2024-01-01T00:00:00.000000+00:00",
            "payload": {"toolCallId": "c1"},
        }
