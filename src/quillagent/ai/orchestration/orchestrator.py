"""Turn facade: wires the pass loop to persistence, identity and the event stream.

:class:`ChatOrchestrator` is what a transport adapter talks to. It owns the
long-lived collaborators (model client, tool registry, executor, background
queue) and creates a fresh :class:`PassController` and :class:`EventEmitter`
for every turn.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Protocol, Sequence, runtime_checkable

from ...services.settings import Settings
from ..client import AIClient, ChatModel
from ..tools.registry import ToolRegistry
from .background import BackgroundTaskQueue
from .clarification import ClarificationStage
from .controller import ControllerConfig, PassController
from .events import AgentEvent, EventChannel, EventEmitter
from .mode_gate import ModeGate
from .tool_executor import ToolExecutor
from .types import (
    AgentContext,
    Message,
    ToolContext,
    ToolHistoryEntry,
    ToolLogEntry,
    TurnResult,
)

__all__ = [
    "ChatOrchestrator",
    "ConversationStore",
    "IdentityResolver",
    "OrchestratorConfig",
    "resolve_with_timeout",
]

LOGGER = logging.getLogger(__name__)

_CRASH_MESSAGE = "An unexpected error occurred while generating the response."


# -----------------------------------------------------------------------------
# Collaborator Contracts
# -----------------------------------------------------------------------------


@runtime_checkable
class ConversationStore(Protocol):
    """Persistence for conversation rows; every call runs in the background."""

    async def save_user_message(self, conversation_id: str | None, message: Message) -> Any:
        ...

    async def append_tool_log(self, conversation_id: str | None, entry: ToolLogEntry) -> Any:
        ...

    async def save_assistant_message(
        self,
        conversation_id: str | None,
        message_id: str,
        content: str,
        tool_history: Sequence[ToolHistoryEntry],
    ) -> Any:
        ...


@runtime_checkable
class IdentityResolver(Protocol):
    """Resolves the acting user/session for tool handlers."""

    async def resolve(self) -> Any:
        ...


async def resolve_with_timeout(resolver: IdentityResolver | None, timeout: float) -> Any:
    """Race ``resolver.resolve()`` against ``timeout``; ``None`` on timeout or failure."""

    if resolver is None:
        return None
    try:
        return await asyncio.wait_for(resolver.resolve(), timeout=timeout)
    except asyncio.TimeoutError:
        LOGGER.warning("Identity resolution timed out after %.1fs", timeout)
    except Exception as exc:
        LOGGER.warning("Identity resolution failed: %s", exc)
    return None


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    max_passes: int = 5
    parallel_tool_calls: bool = True
    identity_timeout: float = 5.0
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        return cls(
            max_passes=settings.max_passes,
            parallel_tool_calls=settings.parallel_tool_calls,
            identity_timeout=settings.identity_timeout,
            debug_logging=settings.debug_logging,
        )


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class ChatOrchestrator:
    """Runs conversation turns and publishes their events.

    Example:
        orchestrator = ChatOrchestrator.from_settings(settings, registry)
        context = orchestrator.build_context("agent", history)
        async for event in orchestrator.stream_turn(context):
            response.write(event.to_sse())
    """

    def __init__(
        self,
        model: ChatModel,
        registry: ToolRegistry,
        *,
        executor: ToolExecutor | None = None,
        gate: ModeGate | None = None,
        store: ConversationStore | None = None,
        identity_resolver: IdentityResolver | None = None,
        clarification: ClarificationStage | None = None,
        config: OrchestratorConfig | None = None,
        background: BackgroundTaskQueue | None = None,
    ) -> None:
        self._model = model
        self._registry = registry
        self._config = config or OrchestratorConfig()
        self._executor = executor or ToolExecutor(
            registry, debug_logging=self._config.debug_logging
        )
        self._gate = gate or ModeGate()
        self._store = store
        self._identity_resolver = identity_resolver
        self._clarification = clarification
        self._background = background or BackgroundTaskQueue(name="conversation-store")
        self._owns_model = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: ToolRegistry,
        *,
        model: ChatModel | None = None,
        store: ConversationStore | None = None,
        identity_resolver: IdentityResolver | None = None,
        clarification: ClarificationStage | None = None,
    ) -> ChatOrchestrator:
        """Build an orchestrator whose client and executor follow ``settings``."""

        owns_model = model is None
        executor = ToolExecutor(
            registry,
            max_attempts=settings.tool_max_attempts,
            retry_min_seconds=settings.tool_retry_min_seconds,
            retry_max_seconds=settings.tool_retry_max_seconds,
            timeouts=settings.tool_timeouts,
            debug_logging=settings.debug_logging,
        )
        orchestrator = cls(
            model or AIClient(settings.client_settings()),
            registry,
            executor=executor,
            store=store,
            identity_resolver=identity_resolver,
            clarification=clarification,
            config=OrchestratorConfig.from_settings(settings),
        )
        orchestrator._owns_model = owns_model
        return orchestrator

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def background(self) -> BackgroundTaskQueue:
        return self._background

    def build_context(
        self,
        mode: str,
        conversation_history: Sequence[Message],
        *,
        context_blocks: Sequence[str] = (),
        max_passes: int | None = None,
        conversation_id: str | None = None,
        organization_id: str | None = None,
    ) -> AgentContext:
        """Create the frozen per-turn context; raises ``ValueError`` for bad modes."""

        return AgentContext(
            mode=mode,  # type: ignore[arg-type]
            conversation_history=tuple(conversation_history),
            context_blocks=tuple(context_blocks),
            max_passes=self._config.max_passes if max_passes is None else max_passes,
            conversation_id=conversation_id,
            organization_id=organization_id,
        )

    async def stream_turn(
        self,
        context: AgentContext,
        *,
        extras: Mapping[str, Any] | None = None,
        message_id: str | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Run one turn in a task and yield its events until the channel closes.

        The stream ends with ``done`` on success. An unexpected crash yields a
        single ``error`` event instead. Closing the iterator early cancels the
        turn.
        """

        channel = EventChannel()
        emitter = EventEmitter(channel, message_id=message_id or str(uuid.uuid4()))
        task = asyncio.create_task(self._drive(context, emitter, extras), name="chat-turn")
        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    async def run_turn(
        self,
        context: AgentContext,
        *,
        extras: Mapping[str, Any] | None = None,
        message_id: str | None = None,
        channel: EventChannel | None = None,
    ) -> TurnResult:
        """Run one turn to completion and return its result.

        Events go to ``channel`` when one is given. Exceptions other than the
        handled endpoint and tool failures propagate to the caller.
        """

        emitter = EventEmitter(
            channel or EventChannel(), message_id=message_id or str(uuid.uuid4())
        )
        return await self._execute_turn(context, emitter, extras)

    async def aclose(self) -> None:
        """Flush background persistence and close an owned model client."""

        await self._background.aclose()
        if self._owns_model and isinstance(self._model, AIClient):
            await self._model.aclose()

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------

    async def _drive(
        self,
        context: AgentContext,
        emitter: EventEmitter,
        extras: Mapping[str, Any] | None,
    ) -> None:
        try:
            await self._execute_turn(context, emitter, extras)
        except Exception as exc:
            LOGGER.exception("Chat turn %s crashed", emitter.message_id)
            detail = str(exc).strip()
            if self._config.debug_logging and detail:
                emitter.error(f"{_CRASH_MESSAGE} {detail}")
            else:
                emitter.error(_CRASH_MESSAGE)
        else:
            emitter.done()
        finally:
            emitter.channel.close()

    async def _execute_turn(
        self,
        context: AgentContext,
        emitter: EventEmitter,
        extras: Mapping[str, Any] | None,
    ) -> TurnResult:
        LOGGER.info(
            "Starting turn %s (mode=%s, history=%s, max_passes=%s)",
            emitter.message_id,
            context.mode,
            len(context.conversation_history),
            context.max_passes,
        )
        self._persist_user_message(context)

        if self._clarification is not None and self._clarification.applies_to(context):
            decision = await self._clarification.evaluate(context)
            if decision.needs_clarification:
                message = decision.message
                emitter.message_complete(message)
                result = TurnResult(message_id=emitter.message_id, message=message)
                self._persist_assistant_message(context, result)
                return result

        identity = await resolve_with_timeout(
            self._identity_resolver, self._config.identity_timeout
        )
        tool_context = ToolContext(
            mode=context.mode,
            conversation_id=context.conversation_id,
            organization_id=context.organization_id,
            identity=identity,
            extras=dict(extras or {}),
        )
        controller = PassController(
            self._model,
            self._executor,
            emitter,
            gate=self._gate,
            config=ControllerConfig(
                parallel_tool_calls=self._config.parallel_tool_calls,
                debug_logging=self._config.debug_logging,
            ),
            tools=self._registry.get_openai_tools(),
            on_log=lambda entry: self._persist_tool_log(context, entry),
        )
        result = await controller.run(context, tool_context)
        LOGGER.info(
            "Finished turn %s after %s pass(es) with %s tool call(s)",
            result.message_id,
            result.passes,
            len(result.tool_history),
        )
        self._persist_assistant_message(context, result)
        return result

    # ------------------------------------------------------------------
    # Background persistence
    # ------------------------------------------------------------------

    def _persist_user_message(self, context: AgentContext) -> None:
        store = self._store
        if store is None:
            return
        latest = next(
            (message for message in reversed(context.conversation_history) if message.role == "user"),
            None,
        )
        if latest is None:
            return
        self._background.submit(
            "save_user_message",
            lambda: store.save_user_message(context.conversation_id, latest),
        )

    def _persist_tool_log(self, context: AgentContext, entry: ToolLogEntry) -> None:
        store = self._store
        if store is None:
            return
        self._background.submit(
            f"append_tool_log:{entry.tool_name}:{entry.status}",
            lambda: store.append_tool_log(context.conversation_id, entry),
        )

    def _persist_assistant_message(self, context: AgentContext, result: TurnResult) -> None:
        store = self._store
        if store is None:
            return
        self._background.submit(
            "save_assistant_message",
            lambda: store.save_assistant_message(
                context.conversation_id,
                result.message_id,
                result.message,
                result.tool_history,
            ),
        )
