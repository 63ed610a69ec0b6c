"""Ordered event channel between the agent loop and the transport adapter.

The loop writes :class:`AgentEvent` values through an :class:`EventEmitter`,
which stamps them and enforces the per-tool-call lifecycle
``preparing -> start -> progress* -> complete``. The transport drains the
:class:`EventChannel` (an async iterator) and renders each event, usually as a
server-sent event via :meth:`AgentEvent.to_sse`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping

from .types import ToolLogEntry, utc_timestamp

__all__ = [
    "AgentEvent",
    "EventChannel",
    "EventEmitter",
    "EventName",
    "ToolCallPhase",
]

LOGGER = logging.getLogger(__name__)


class EventName:
    """Wire names of the outbound events."""

    MESSAGE_CHUNK = "message:chunk"
    MESSAGE_COMPLETE = "message:complete"
    TOOL_PREPARING = "tool:preparing"
    TOOL_START = "tool:start"
    TOOL_PROGRESS = "tool:progress"
    TOOL_COMPLETE = "tool:complete"
    LOG_ENTRY = "log:entry"
    ERROR = "error"
    DONE = "done"


class ToolCallPhase:
    """Per-id lifecycle positions, in order."""

    PREPARING = 1
    STARTED = 2
    COMPLETED = 3


@dataclass(slots=True, frozen=True)
class AgentEvent:
    name: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        """Render as one server-sent event frame."""
        body = json.dumps(dict(self.data), ensure_ascii=False, default=str)
        return f"event: {self.name}\ndata: {body}\n\n"


# -----------------------------------------------------------------------------
# Channel
# -----------------------------------------------------------------------------

_CLOSED = object()


class EventChannel:
    """Single-consumer FIFO of :class:`AgentEvent` values.

    ``send`` never blocks, so producers inside the agent loop are not slowed by
    a slow consumer. Iteration ends once :meth:`close` has been called and every
    queued event was delivered.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: AgentEvent) -> bool:
        if self._closed:
            LOGGER.debug("Dropping %s event sent after channel close", event.name)
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AgentEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def drain_nowait(self) -> list[AgentEvent]:
        """Return every event queued so far without waiting."""
        events: list[AgentEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                # Keep the sentinel so a later async consumer still terminates.
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events


# -----------------------------------------------------------------------------
# Emitter
# -----------------------------------------------------------------------------


class EventEmitter:
    """Builds events for one turn and guards their ordering.

    Any tool event that would move a call id backwards (or skip ``preparing``)
    is dropped with a warning instead of reaching the client.
    """

    def __init__(self, channel: EventChannel, *, message_id: str) -> None:
        self._channel = channel
        self._message_id = message_id
        self._phases: dict[str, int] = {}
        self._message_completed = False
        self.dropped = 0

    @property
    def message_id(self) -> str:
        return self._message_id

    @property
    def channel(self) -> EventChannel:
        return self._channel

    def phase(self, call_id: str) -> int | None:
        return self._phases.get(call_id)

    def open_call_ids(self) -> list[str]:
        """Ids announced but not yet completed."""
        return [
            call_id
            for call_id, phase in self._phases.items()
            if phase != ToolCallPhase.COMPLETED
        ]

    def begin_pass(self) -> None:
        """Forget completed call ids; providers only keep ids unique within one pass."""
        self._phases = {
            call_id: phase
            for call_id, phase in self._phases.items()
            if phase != ToolCallPhase.COMPLETED
        }

    def message_chunk(self, chunk: str) -> None:
        if chunk:
            self._send(EventName.MESSAGE_CHUNK, {"messageId": self._message_id, "chunk": chunk})

    def tool_preparing(self, call_id: str, tool_name: str) -> bool:
        if not self._advance(call_id, EventName.TOOL_PREPARING, ToolCallPhase.PREPARING, allowed=(None,)):
            return False
        self._send(
            EventName.TOOL_PREPARING,
            {"toolCallId": call_id, "toolName": tool_name, "timestamp": utc_timestamp()},
        )
        return True

    def tool_start(self, call_id: str, tool_name: str) -> bool:
        if not self._advance(
            call_id, EventName.TOOL_START, ToolCallPhase.STARTED, allowed=(ToolCallPhase.PREPARING,)
        ):
            return False
        self._send(
            EventName.TOOL_START,
            {"toolCallId": call_id, "toolName": tool_name, "timestamp": utc_timestamp()},
        )
        return True

    def tool_progress(self, call_id: str, message: str) -> bool:
        if self._phases.get(call_id) != ToolCallPhase.STARTED:
            self._reject(call_id, EventName.TOOL_PROGRESS)
            return False
        self._send(
            EventName.TOOL_PROGRESS,
            {"toolCallId": call_id, "message": message, "timestamp": utc_timestamp()},
        )
        return True

    def tool_complete(
        self,
        call_id: str,
        tool_name: str,
        *,
        success: bool,
        result: Any = None,
        error: str | None = None,
    ) -> bool:
        if not self._advance(
            call_id,
            EventName.TOOL_COMPLETE,
            ToolCallPhase.COMPLETED,
            allowed=(ToolCallPhase.PREPARING, ToolCallPhase.STARTED),
        ):
            return False
        self._send(
            EventName.TOOL_COMPLETE,
            {
                "toolCallId": call_id,
                "toolName": tool_name,
                "success": success,
                "result": result,
                "error": error,
                "timestamp": utc_timestamp(),
            },
        )
        return True

    def log_entry(self, entry: ToolLogEntry) -> None:
        self._send(EventName.LOG_ENTRY, entry.to_dict())

    def message_complete(self, message: str) -> bool:
        if self._message_completed:
            LOGGER.warning("Dropping duplicate message:complete for %s", self._message_id)
            self.dropped += 1
            return False
        self._message_completed = True
        self._send(EventName.MESSAGE_COMPLETE, {"messageId": self._message_id, "message": message})
        return True

    def error(self, message: str) -> None:
        self._send(EventName.ERROR, {"message": message})

    def done(self) -> None:
        self._send(EventName.DONE, {})

    def _advance(
        self,
        call_id: str,
        event_name: str,
        target: int,
        *,
        allowed: tuple[int | None, ...],
    ) -> bool:
        current = self._phases.get(call_id)
        if current not in allowed:
            self._reject(call_id, event_name)
            return False
        self._phases[call_id] = target
        return True

    def _reject(self, call_id: str, event_name: str) -> None:
        self.dropped += 1
        LOGGER.warning(
            "Dropping out-of-order %s for tool call %s (phase=%s)",
            event_name,
            call_id,
            self._phases.get(call_id),
        )

    def _send(self, name: str, data: Mapping[str, Any]) -> None:
        self._channel.send(AgentEvent(name=name, data=data))
