"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Sequence

from quillagent.ai.orchestration.events import AgentEvent, EventChannel
from quillagent.ai.orchestration.types import Message, ToolHistoryEntry, ToolInvocation, ToolLogEntry
from quillagent.ai.streaming import FinishSignal, StreamChunk, TextDelta, ToolCallDelta
from quillagent.ai.tools.arguments import parse_tool_arguments


# =============================================================================
# SSE frame builders
# =============================================================================

DONE_FRAME = b"data: [DONE]\n\n"


def sse_frame(payload: Mapping[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def text_frame(text: str) -> bytes:
    return sse_frame({"choices": [{"index": 0, "delta": {"content": text}}]})


def tool_frame(
    index: int,
    *,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
) -> bytes:
    function: dict[str, Any] = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    entry: dict[str, Any] = {"index": index, "function": function}
    if call_id is not None:
        entry["id"] = call_id
        entry["type"] = "function"
    return sse_frame({"choices": [{"index": 0, "delta": {"tool_calls": [entry]}}]})


def finish_frame(reason: str) -> bytes:
    return sse_frame({"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]})


# =============================================================================
# Chunk builders
# =============================================================================


def tool_call_chunks(
    index: int,
    name: str,
    arguments: Mapping[str, Any] | str,
    *,
    call_id: str | None = None,
    split: int = 2,
) -> list[ToolCallDelta]:
    """Split one tool call into several argument fragments."""

    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    size = max(1, -(-len(raw) // split)) if raw else 1
    parts = [raw[offset:offset + size] for offset in range(0, len(raw), size)] or [""]
    chunks = [ToolCallDelta(index=index, id=call_id, name_part=name, arguments_part=parts[0] or None)]
    chunks.extend(ToolCallDelta(index=index, arguments_part=part) for part in parts[1:])
    return chunks


def text_pass(text: str) -> list[StreamChunk]:
    return [TextDelta(content=text), FinishSignal(reason="stop")]


def make_invocation(
    name: str,
    arguments: Mapping[str, Any] | None = None,
    *,
    call_id: str = "call_1",
    index: int = 0,
) -> ToolInvocation:
    raw = json.dumps(dict(arguments or {}))
    decoded, params = parse_tool_arguments(name, raw)
    return ToolInvocation(
        id=call_id,
        name=name,
        arguments=decoded,
        index=index,
        params=params,
        raw_arguments=raw,
    )


# =============================================================================
# Stub collaborators
# =============================================================================


class ScriptedModel:
    """Chat model stub that replays one scripted chunk list per call.

    A script entry that is an exception instance is raised at that point of
    the stream. When the script runs out the last pass is repeated.
    """

    def __init__(self, passes: Sequence[Sequence[StreamChunk | BaseException]]):
        self._passes = [list(items) for items in passes]
        self.calls: list[dict[str, Any]] = []

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        tools: Iterable[Mapping[str, Any]] | None = None,
        tool_choice: Any = None,
        **kwargs: Any,
    ):
        self.calls.append(
            {
                "messages": [dict(message) for message in messages],
                "tools": list(tools) if tools else None,
                "tool_choice": tool_choice,
            }
        )
        script = self._passes[min(len(self.calls) - 1, len(self._passes) - 1)]
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item

    def tool_names(self, call_index: int) -> list[str]:
        tools = self.calls[call_index]["tools"] or []
        return [tool["function"]["name"] for tool in tools]


class RecordingStore:
    """In-memory conversation store that records every persisted row."""

    def __init__(self, *, fail_on: str | None = None):
        self.user_messages: list[tuple[str | None, Message]] = []
        self.tool_logs: list[tuple[str | None, ToolLogEntry]] = []
        self.assistant_messages: list[dict[str, Any]] = []
        self._fail_on = fail_on

    async def save_user_message(self, conversation_id: str | None, message: Message) -> None:
        self._maybe_fail("save_user_message")
        self.user_messages.append((conversation_id, message))

    async def append_tool_log(self, conversation_id: str | None, entry: ToolLogEntry) -> None:
        self._maybe_fail("append_tool_log")
        self.tool_logs.append((conversation_id, entry))

    async def save_assistant_message(
        self,
        conversation_id: str | None,
        message_id: str,
        content: str,
        tool_history: Sequence[ToolHistoryEntry],
    ) -> None:
        self._maybe_fail("save_assistant_message")
        self.assistant_messages.append(
            {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "content": content,
                "tool_history": list(tool_history),
            }
        )

    def _maybe_fail(self, operation: str) -> None:
        if self._fail_on == operation:
            raise RuntimeError(f"{operation} unavailable")


def drain(channel: EventChannel) -> list[AgentEvent]:
    return channel.drain_nowait()


def event_names(events: Iterable[AgentEvent]) -> list[str]:
    return [event.name for event in events]


def events_for_call(events: Iterable[AgentEvent], call_id: str) -> list[str]:
    return [event.name for event in events if event.data.get("toolCallId") == call_id]
