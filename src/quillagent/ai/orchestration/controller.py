"""Pass controller: the multi-pass streaming tool loop for one turn.

Each pass streams one model response. Text is forwarded as it arrives, tool
call fragments are assembled, and on stream end the assembled invocations are
gated by mode, executed, and folded back into the message history for the
next pass. The loop stops when a pass produces no tool calls or the pass
budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

import httpx
from openai.types.chat import ChatCompletionToolParam

from ..client import ChatModel, ModelEndpointError
from ..prompts import FALLBACK_MESSAGE, build_system_prompt
from ..streaming import FinishSignal, TextDelta, ToolCallDelta
from ..tools.definitions import openai_tools
from .assembler import AssemblyResult, ToolCallAssembler
from .events import EventEmitter
from .mode_gate import ModeGate
from .tool_executor import LogCallback, ToolExecutor, format_tool_result_message
from .types import (
    AgentContext,
    Message,
    PassState,
    PendingToolCall,
    ToolContext,
    ToolExecutionResult,
    ToolHistoryEntry,
    ToolInvocation,
    ToolLogEntry,
    ToolLogStatus,
    TurnResult,
)

__all__ = [
    "ControllerConfig",
    "ControllerState",
    "EMPTY_REPLY_MESSAGE",
    "PassController",
    "endpoint_error_message",
]

LOGGER = logging.getLogger(__name__)

EMPTY_REPLY_MESSAGE = "I wasn't able to produce a response. Could you rephrase your request?"
_INTERRUPTED_CALL_ERROR = "The tool call was interrupted before it could run."


def endpoint_error_message(exc: BaseException, *, debug: bool) -> str:
    """User-facing text for a failed model request; details only in debug mode."""

    detail = str(exc).strip()
    if debug and detail:
        return f"I encountered an error while processing your request: {detail}"
    return "I encountered an error while processing your request. Please try again."


class ControllerState:
    """Lifecycle positions of a :class:`PassController`."""

    IDLE = "idle"
    STREAMING = "streaming"
    ASSEMBLING = "assembling"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass(slots=True, frozen=True)
class ControllerConfig:
    """Configuration for the pass loop.

    Attributes:
        parallel_tool_calls: Run the invocations of one pass concurrently.
        tool_choice: ``tool_choice`` value sent with every request.
        debug_logging: Include endpoint error details in the user message.
    """

    parallel_tool_calls: bool = True
    tool_choice: str = "auto"
    debug_logging: bool = False


class PassController:
    """Drives one turn from the first request to the final message.

    A controller instance serves exactly one turn; :meth:`run` may only be
    called once.

    Example:
        controller = PassController(model, executor, emitter)
        result = await controller.run(context, tool_context)
    """

    def __init__(
        self,
        model: ChatModel,
        executor: ToolExecutor,
        emitter: EventEmitter,
        *,
        gate: ModeGate | None = None,
        config: ControllerConfig | None = None,
        tools: Sequence[ChatCompletionToolParam] | None = None,
        on_log: LogCallback | None = None,
    ) -> None:
        self._model = model
        self._executor = executor
        self._emitter = emitter
        self._gate = gate or ModeGate()
        self._config = config or ControllerConfig()
        self._tools = list(tools) if tools is not None else openai_tools()
        self._on_log = on_log
        self._state = ControllerState.IDLE
        self._history: list[ToolHistoryEntry] = []

    @property
    def state(self) -> str:
        return self._state

    @property
    def tool_history(self) -> tuple[ToolHistoryEntry, ...]:
        return tuple(self._history)

    async def run(self, context: AgentContext, tool_context: ToolContext) -> TurnResult:
        """Run passes until a final answer, the pass budget, or an endpoint failure.

        Args:
            context: Mode, history and budget for this turn.
            tool_context: Collaborators handed to every tool handler.

        Returns:
            The turn outcome. ``message:complete`` has been emitted exactly once.
        """

        if self._state != ControllerState.IDLE:
            raise RuntimeError("PassController instances serve a single turn")

        system_message = Message.system(build_system_prompt(context.mode, context.context_blocks))
        tools = self._gate.allowed_tools(context.mode, self._tools)
        messages: list[Message] = list(context.conversation_history)
        latest_text = ""
        passes = 0

        for pass_index in range(context.max_passes):
            passes = pass_index + 1
            state = PassState(pass_index=pass_index, messages=[system_message, *messages])
            assembler = ToolCallAssembler(pass_index, pending=state.pending_tool_calls)
            LOGGER.debug(
                "Pass %s/%s (mode=%s, messages=%s, tools=%s)",
                passes,
                context.max_passes,
                context.mode,
                len(state.messages),
                len(tools),
            )

            self._state = ControllerState.STREAMING
            self._emitter.begin_pass()
            try:
                await self._stream_pass(state, assembler, tools)
            except (ModelEndpointError, httpx.HTTPError) as exc:
                LOGGER.error("Model request failed on pass %s: %s", passes, exc)
                return self._fail_pass(state, exc, passes=passes)
            except Exception as exc:
                LOGGER.exception("Model stream raised on pass %s", passes)
                return self._fail_pass(state, exc, passes=passes)

            if state.accumulated_text.strip():
                latest_text = state.accumulated_text

            self._state = ControllerState.ASSEMBLING
            assembled = assembler.finish()
            self._close_malformed(assembled)

            if not assembled.has_invocations:
                final_text = state.accumulated_text or latest_text or EMPTY_REPLY_MESSAGE
                return self._finalize(final_text, passes=passes)

            self._state = ControllerState.EXECUTING
            messages.append(
                Message.assistant(
                    state.accumulated_text,
                    [invocation.to_tool_call() for invocation in assembled.invocations],
                )
            )
            results = await self._execute_invocations(assembled.invocations, context, tool_context)
            for invocation, result in zip(assembled.invocations, results):
                self._history.append(
                    ToolHistoryEntry(tool_name=invocation.name, invocation=invocation, result=result)
                )
                messages.append(
                    Message.tool(
                        format_tool_result_message(invocation.name, result),
                        tool_call_id=invocation.id,
                        name=invocation.name,
                    )
                )

        LOGGER.warning("Turn reached the pass limit (%s)", context.max_passes)
        return self._finalize(latest_text or FALLBACK_MESSAGE, passes=passes, hit_pass_limit=True)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream_pass(
        self,
        state: PassState,
        assembler: ToolCallAssembler,
        tools: list[ChatCompletionToolParam],
    ) -> None:
        stream = self._model.stream_chat(
            [message.to_chat_param() for message in state.messages],
            tools=tools or None,
            tool_choice=self._config.tool_choice if tools else None,
        )
        async for chunk in stream:
            if isinstance(chunk, TextDelta):
                state.accumulated_text += chunk.content
                self._emitter.message_chunk(chunk.content)
            elif isinstance(chunk, ToolCallDelta):
                announced = assembler.feed(chunk)
                if announced is not None and announced.id is not None:
                    self._emitter.tool_preparing(announced.id, announced.name)
            elif isinstance(chunk, FinishSignal):
                state.finish_reason = chunk.reason
        LOGGER.debug(
            "Pass %s stream ended (finish_reason=%s, pending_tool_calls=%s)",
            state.pass_index,
            state.finish_reason,
            len(assembler.pending),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute_invocations(
        self,
        invocations: Sequence[ToolInvocation],
        context: AgentContext,
        tool_context: ToolContext,
    ) -> list[ToolExecutionResult]:
        if self._config.parallel_tool_calls and len(invocations) > 1:
            return list(
                await asyncio.gather(
                    *(self._execute_one(invocation, context, tool_context) for invocation in invocations)
                )
            )
        results: list[ToolExecutionResult] = []
        for invocation in invocations:
            results.append(await self._execute_one(invocation, context, tool_context))
        return results

    async def _execute_one(
        self,
        invocation: ToolInvocation,
        context: AgentContext,
        tool_context: ToolContext,
    ) -> ToolExecutionResult:
        self._emitter.tool_start(invocation.id, invocation.name)

        if not self._gate.is_allowed(invocation.name, context.mode):
            denial = self._gate.denial_message(invocation.name)
            LOGGER.info("Denied tool %s in %s mode", invocation.name, context.mode)
            result = ToolExecutionResult.from_error(denial)
            self._log(
                ToolLogEntry(
                    tool_name=invocation.name,
                    status=ToolLogStatus.FAILED,
                    payload={
                        "toolName": invocation.name,
                        "toolCallId": invocation.id,
                        "args": dict(invocation.arguments),
                        "error": denial,
                    },
                )
            )
        else:
            result = await self._executor.execute(
                invocation,
                tool_context,
                on_progress=lambda message: self._emitter.tool_progress(invocation.id, message),
                on_log=self._log,
            )

        self._emitter.tool_complete(
            invocation.id,
            invocation.name,
            success=result.success,
            result=result.result,
            error=result.error,
        )
        return result

    def _log(self, entry: ToolLogEntry) -> None:
        self._emitter.log_entry(entry)
        if self._on_log is not None:
            self._on_log(entry)

    # ------------------------------------------------------------------
    # Cleanup and Finalization
    # ------------------------------------------------------------------

    def _close_malformed(self, assembled: AssemblyResult) -> None:
        live_ids = {invocation.id for invocation in assembled.invocations}
        for dropped in assembled.malformed:
            # A duplicate id still belongs to the surviving invocation.
            if dropped.announced and dropped.id is not None and dropped.id not in live_ids:
                self._emitter.tool_complete(
                    dropped.id,
                    dropped.name,
                    success=False,
                    error=f"Malformed tool call: {dropped.reason}",
                )

    def _close_interrupted(self, entries: list[PendingToolCall]) -> None:
        for entry in entries:
            if entry.announced and entry.id is not None:
                self._emitter.tool_complete(
                    entry.id, entry.name, success=False, error=_INTERRUPTED_CALL_ERROR
                )

    def _fail_pass(self, state: PassState, exc: Exception, *, passes: int) -> TurnResult:
        self._close_interrupted(list(state.pending_tool_calls.values()))
        state.pending_tool_calls.clear()
        message = endpoint_error_message(exc, debug=self._config.debug_logging)
        return self._finalize(message, passes=passes, failed=True)

    def _finalize(
        self,
        message: str,
        *,
        passes: int,
        hit_pass_limit: bool = False,
        failed: bool = False,
    ) -> TurnResult:
        self._state = ControllerState.FINALIZING
        self._emitter.message_complete(message)

        source_content_id = None
        content_id = None
        for entry in self._history:
            source_content_id = entry.result.source_content_id or source_content_id
            content_id = entry.result.content_id or content_id

        self._state = ControllerState.DONE
        return TurnResult(
            message_id=self._emitter.message_id,
            message=message,
            tool_history=tuple(self._history),
            passes=passes,
            hit_pass_limit=hit_pass_limit,
            failed=failed,
            source_content_id=source_content_id,
            content_id=content_id,
        )
