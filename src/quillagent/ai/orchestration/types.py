"""Core type definitions for the agent loop.

Everything handed between the loop's stages is a dataclass. Values that cross
pass or task boundaries are frozen; the per-pass working state (``PassState``
and ``PendingToolCall``) is mutable and owned by a single pass.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

from ..tools.arguments import ToolArguments

__all__ = [
    "AGENT_MODES",
    "AgentMode",
    "AgentContext",
    "Message",
    "MessageRole",
    "PassState",
    "PendingToolCall",
    "ProgressCallback",
    "ToolContext",
    "ToolExecutionResult",
    "ToolHistoryEntry",
    "ToolInvocation",
    "ToolLogEntry",
    "ToolLogStatus",
    "TurnResult",
    "utc_timestamp",
    "validate_mode",
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp with fixed microsecond precision."""
    return _utcnow().isoformat(timespec="microseconds")


AgentMode = Literal["chat", "agent"]
AGENT_MODES: tuple[str, ...] = ("chat", "agent")


def validate_mode(mode: str) -> AgentMode:
    """Return ``mode`` unchanged when it is a supported access mode.

    Raises:
        ValueError: If ``mode`` is anything other than ``"chat"`` or ``"agent"``.
    """

    if mode not in AGENT_MODES:
        raise ValueError(f"Unsupported mode {mode!r}; expected one of {', '.join(AGENT_MODES)}")
    return mode  # type: ignore[return-value]


ProgressCallback = Callable[[str], None]


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        name: Optional name for tool messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant.
    """

    role: MessageRole
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[Mapping[str, Any], ...] | None = None

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [dict(call) for call in self.tool_calls]
            if not self.content:
                payload["content"] = None
        if self.name is not None and self.role != "tool":
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload  # type: ignore[return-value]

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from OpenAI's ChatCompletionMessageParam format."""
        tool_calls = param.get("tool_calls")
        if tool_calls is not None:
            tool_calls = tuple(tool_calls)
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=str(param.get("content") or ""),
            name=param.get("name"),
            tool_call_id=param.get("tool_call_id"),
            tool_calls=tool_calls,
        )

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[Mapping[str, Any]] | None = None,
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


# -----------------------------------------------------------------------------
# Agent Context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AgentContext:
    """Immutable input to one top-level agent invocation.

    Attributes:
        mode: Access mode, ``"chat"`` (read-only tools) or ``"agent"``.
        conversation_history: Prior messages, oldest first, ending with the
            user message being answered.
        context_blocks: Extra context rendered into the system prompt.
        max_passes: Upper bound on model passes for this invocation.
        conversation_id: External conversation identifier, if any.
        organization_id: External organization identifier, if any.
    """

    mode: AgentMode
    conversation_history: tuple[Message, ...] = ()
    context_blocks: tuple[str, ...] = ()
    max_passes: int = 5
    conversation_id: str | None = None
    organization_id: str | None = None

    def __post_init__(self) -> None:
        validate_mode(self.mode)
        if self.max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        if not isinstance(self.conversation_history, tuple):
            object.__setattr__(self, "conversation_history", tuple(self.conversation_history))
        if not isinstance(self.context_blocks, tuple):
            object.__setattr__(self, "context_blocks", tuple(self.context_blocks))


# -----------------------------------------------------------------------------
# Tool Invocation and Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    """A fully assembled, schema-valid tool call.

    Attributes:
        id: Call id, unique within its pass.
        name: Tool name from the catalog.
        arguments: Decoded JSON arguments object.
        index: Provider index of the call within the assistant message.
        params: Typed argument variant for ``name``.
        raw_arguments: The argument string exactly as the model produced it.
    """

    id: str
    name: str
    arguments: Mapping[str, Any]
    index: int
    params: ToolArguments
    raw_arguments: str = ""

    def to_tool_call(self) -> dict[str, Any]:
        """Render as an assistant ``tool_calls`` entry."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.raw_arguments or json.dumps(dict(self.arguments)),
            },
        }


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Outcome of one tool invocation.

    Attributes:
        success: Whether execution succeeded.
        result: Handler output on success.
        error: User-facing error message on failure.
        source_content_id: Source item created or referenced by the tool.
        content_id: Content item created or referenced by the tool.
    """

    success: bool
    result: Any = None
    error: str | None = None
    source_content_id: str | None = None
    content_id: str | None = None

    @classmethod
    def from_success(
        cls,
        result: Any = None,
        *,
        source_content_id: str | None = None,
        content_id: str | None = None,
    ) -> ToolExecutionResult:
        return cls(
            success=True,
            result=result,
            source_content_id=source_content_id,
            content_id=content_id,
        )

    @classmethod
    def from_error(cls, error: str) -> ToolExecutionResult:
        return cls(success=False, error=error)


@dataclass(slots=True, frozen=True)
class ToolContext:
    """Collaborators and identifiers handed to every tool handler.

    Attributes:
        mode: Access mode of the current turn.
        conversation_id: External conversation identifier, if any.
        organization_id: External organization identifier, if any.
        identity: Whatever the identity resolver returned (``None`` on timeout).
        extras: Caller-supplied values (database handles, services, ...).
        report_progress: Publishes a progress message for the running call.
    """

    mode: AgentMode
    conversation_id: str | None = None
    organization_id: str | None = None
    identity: Any = None
    extras: Mapping[str, Any] = field(default_factory=dict)
    report_progress: ProgressCallback = field(default=lambda message: None)

    def with_progress(self, callback: ProgressCallback) -> ToolContext:
        """Return a copy whose ``report_progress`` forwards to ``callback``."""
        return ToolContext(
            mode=self.mode,
            conversation_id=self.conversation_id,
            organization_id=self.organization_id,
            identity=self.identity,
            extras=self.extras,
            report_progress=callback,
        )


# -----------------------------------------------------------------------------
# Pass State
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class PendingToolCall:
    """Partially streamed tool call, keyed by provider index."""

    index: int
    id: str | None = None
    name: str = ""
    arguments: str = ""
    announced: bool = False


@dataclass(slots=True)
class PassState:
    """Working state of one model pass.

    Attributes:
        pass_index: Zero-based pass number within the turn.
        messages: Messages sent to the model for this pass.
        pending_tool_calls: Partial tool calls keyed by provider index.
        accumulated_text: Assistant text streamed so far in this pass.
        finish_reason: Finish reason reported by the provider, if any.
    """

    pass_index: int
    messages: list[Message] = field(default_factory=list)
    pending_tool_calls: dict[int, PendingToolCall] = field(default_factory=dict)
    accumulated_text: str = ""
    finish_reason: str | None = None


# -----------------------------------------------------------------------------
# Logs, History and Turn Results
# -----------------------------------------------------------------------------


class ToolLogStatus:
    """Lifecycle states recorded for each tool execution."""

    STARTED = "started"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class ToolLogEntry:
    """Append-only record of a tool lifecycle step."""

    tool_name: str
    status: str
    timestamp: str = field(default_factory=utc_timestamp)
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "status": self.status,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
        }


@dataclass(slots=True, frozen=True)
class ToolHistoryEntry:
    """One executed (or denied) invocation and its result."""

    tool_name: str
    invocation: ToolInvocation
    result: ToolExecutionResult
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass(slots=True, frozen=True)
class TurnResult:
    """Final outcome of a turn.

    Attributes:
        message_id: Identifier shared with the streamed ``message:*`` events.
        message: Final assistant text.
        tool_history: Every invocation resolved during the turn, in order.
        passes: Number of model passes that were started.
        hit_pass_limit: True when the pass budget ended the turn.
        failed: True when a model endpoint error ended the turn.
        source_content_id: Last source item a tool reported.
        content_id: Last content item a tool reported.
    """

    message_id: str
    message: str
    tool_history: tuple[ToolHistoryEntry, ...] = ()
    passes: int = 0
    hit_pass_limit: bool = False
    failed: bool = False
    source_content_id: str | None = None
    content_id: str | None = None
