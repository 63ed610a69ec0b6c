"""Incremental decoder for OpenAI-compatible server-sent chat streams.

The model endpoint answers a streamed chat completion with newline-delimited
``data: {json}`` frames terminated by ``data: [DONE]``. Physical reads do not
respect frame boundaries (or UTF-8 boundaries), so the decoder keeps a carry
over buffer and only parses complete lines. Each provider frame expands into
one or more :data:`StreamChunk` values in frame order: text first, then one
:class:`ToolCallDelta` per tool-call entry, then the :class:`FinishSignal`.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any, Mapping, Union

__all__ = [
    "TextDelta",
    "ToolCallDelta",
    "FinishSignal",
    "StreamChunk",
    "StreamDecoder",
    "DONE_SENTINEL",
    "TOOL_FINISH_REASONS",
    "chunks_from_payload",
]

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
TOOL_FINISH_REASONS = frozenset({"tool_calls", "function_call"})
_DATA_PREFIX = "data:"
_LOG_PREVIEW_CHARS = 200


# -----------------------------------------------------------------------------
# Chunk Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextDelta:
    """A fragment of assistant text."""

    content: str


@dataclass(slots=True, frozen=True)
class ToolCallDelta:
    """A fragment of one tool call, keyed by the provider's ``index``.

    Attributes:
        index: Position of the tool call within the assistant message.
        id: Provider-assigned call id (usually only on the first fragment).
        name_part: Fragment of the function name.
        arguments_part: Fragment of the JSON arguments string.
    """

    index: int
    id: str | None = None
    name_part: str | None = None
    arguments_part: str | None = None


@dataclass(slots=True, frozen=True)
class FinishSignal:
    """The provider reported why generation stopped."""

    reason: str

    @property
    def is_tool_call(self) -> bool:
        return self.reason in TOOL_FINISH_REASONS


StreamChunk = Union[TextDelta, ToolCallDelta, FinishSignal]


# -----------------------------------------------------------------------------
# Frame Parsing
# -----------------------------------------------------------------------------


def chunks_from_payload(payload: Mapping[str, Any]) -> list[StreamChunk]:
    """Expand one decoded provider frame into stream chunks.

    Only the first choice is considered; frames without choices (for example
    trailing usage frames) produce nothing.
    """

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    choice = choices[0]
    if not isinstance(choice, Mapping):
        return []

    chunks: list[StreamChunk] = []
    delta = choice.get("delta")
    if isinstance(delta, Mapping):
        content = delta.get("content")
        if isinstance(content, str) and content:
            chunks.append(TextDelta(content=content))

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for entry in tool_calls:
                tool_delta = _tool_call_delta(entry)
                if tool_delta is not None:
                    chunks.append(tool_delta)

    reason = choice.get("finish_reason")
    if reason:
        chunks.append(FinishSignal(reason=str(reason)))
    return chunks


def _tool_call_delta(entry: Any) -> ToolCallDelta | None:
    if not isinstance(entry, Mapping):
        return None
    index = entry.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        index = 0
    function = entry.get("function")
    if not isinstance(function, Mapping):
        function = {}
    call_id = entry.get("id")
    name = function.get("name")
    arguments = function.get("arguments")
    delta = ToolCallDelta(
        index=index,
        id=call_id if isinstance(call_id, str) and call_id else None,
        name_part=name if isinstance(name, str) and name else None,
        arguments_part=arguments if isinstance(arguments, str) and arguments else None,
    )
    if delta.id is None and delta.name_part is None and delta.arguments_part is None:
        return None
    return delta


# -----------------------------------------------------------------------------
# Decoder
# -----------------------------------------------------------------------------


class StreamDecoder:
    """Turns raw stream reads into :data:`StreamChunk` values.

    ``feed``/``flush`` give synchronous access for callers that manage their own
    reads; :meth:`decode` wraps an async byte source into a lazy chunk iterator.
    A decoder instance serves exactly one stream.

    Example:
        decoder = StreamDecoder()
        async for chunk in decoder.decode(response.aiter_bytes()):
            ...
    """

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self._buffer = ""
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._done = False
        self._started = False
        self.frame_count = 0
        self.skipped_frames = 0

    @property
    def done(self) -> bool:
        """True once the ``[DONE]`` sentinel has been seen."""
        return self._done

    def feed(self, data: bytes | str) -> list[StreamChunk]:
        """Consume one physical read and return the chunks of its complete lines."""

        if self._done:
            return []
        text = data if isinstance(data, str) else self._text_decoder.decode(data)
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")

        chunks: list[StreamChunk] = []
        for line in lines:
            chunks.extend(self._parse_line(line))
            if self._done:
                self._buffer = ""
                break
        return chunks

    def flush(self) -> list[StreamChunk]:
        """Parse whatever is left in the buffer once the source is exhausted."""

        tail = self._text_decoder.decode(b"", final=True)
        remaining = self._buffer + tail
        self._buffer = ""
        if self._done or not remaining.strip():
            return []
        return self._parse_line(remaining)

    async def decode(
        self, source: AsyncIterable[bytes | str]
    ) -> AsyncIterator[StreamChunk]:
        """Yield chunks from ``source`` as soon as each frame is complete."""

        if self._started:
            raise RuntimeError("StreamDecoder instances cannot be restarted")
        self._started = True

        async for data in source:
            for chunk in self.feed(data):
                yield chunk
            if self._done:
                return
        for chunk in self.flush():
            yield chunk

    def _parse_line(self, raw_line: str) -> list[StreamChunk]:
        line = raw_line.strip()
        if not line or line.startswith(":"):
            return []
        if not line.startswith(_DATA_PREFIX):
            # event:, id: and retry: fields carry nothing the agent needs.
            return []

        body = line[len(_DATA_PREFIX):].strip()
        if body == DONE_SENTINEL:
            self._done = True
            return []

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            self.skipped_frames += 1
            LOGGER.warning(
                "Skipping malformed stream frame (%s): %s",
                exc.msg,
                body[:_LOG_PREVIEW_CHARS],
            )
            return []

        if not isinstance(payload, Mapping):
            self.skipped_frames += 1
            LOGGER.warning(
                "Skipping stream frame that is not a JSON object: %s",
                body[:_LOG_PREVIEW_CHARS],
            )
            return []

        self.frame_count += 1
        return chunks_from_payload(payload)
