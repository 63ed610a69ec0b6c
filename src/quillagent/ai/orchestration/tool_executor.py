"""Tool execution with retry, timeouts and lifecycle logging.

Every assembled invocation that passed the mode gate is executed here. The
executor always returns a :class:`ToolExecutionResult`; handler exceptions,
timeouts and unknown tools become failed results rather than propagating.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from typing import Any, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ...services.settings import ToolTimeoutSettings
from ...utils.logging import redact_payload
from ..tools.errors import ToolValidationError, TransientToolError
from ..tools.registry import ToolHandler, ToolRegistry
from .types import (
    ProgressCallback,
    ToolContext,
    ToolExecutionResult,
    ToolInvocation,
    ToolLogEntry,
    ToolLogStatus,
)

__all__ = [
    "LogCallback",
    "TIMEOUT_MESSAGE",
    "ToolExecutor",
    "format_tool_result_content",
    "format_tool_result_message",
    "is_transient_tool_error",
]

LOGGER = logging.getLogger(__name__)

LogCallback = Callable[[ToolLogEntry], None]

TIMEOUT_MESSAGE = (
    "This operation is taking longer than expected. "
    "Please try again or contact support if the issue persists."
)

_NON_RETRYABLE = (ToolValidationError, ValueError, TypeError, KeyError)
_TRANSIENT = (TransientToolError, httpx.TransportError, ConnectionError, TimeoutError)


def is_transient_tool_error(exc: BaseException) -> bool:
    """Return True for failures a retry might fix (network and timeout errors)."""

    if isinstance(exc, _NON_RETRYABLE):
        return False
    return isinstance(exc, _TRANSIENT)


# -----------------------------------------------------------------------------
# Result Formatting
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Serialize a tool result for inclusion in a message."""

    if result is None:
        return "null"
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, (int, float)):
        return str(result)
    if hasattr(result, "to_dict") and callable(result.to_dict):
        result = result.to_dict()
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


def format_tool_result_message(tool_name: str, result: ToolExecutionResult) -> str:
    """Render the tool-role message content the model sees for ``result``."""

    if result.success:
        message = f"Tool {tool_name} executed successfully."
        if result.result:
            message += f" Result: {format_tool_result_content(result.result)}"
        return message
    return f"Tool {tool_name} failed: {result.error or 'Unknown error'}"


# -----------------------------------------------------------------------------
# Tool Executor
# -----------------------------------------------------------------------------


class ToolExecutor:
    """Runs registered tool handlers with retry and a per-tool deadline.

    Example:
        executor = ToolExecutor(registry)
        result = await executor.execute(invocation, context, on_progress=print)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        max_attempts: int = 3,
        retry_min_seconds: float = 0.25,
        retry_max_seconds: float = 2.0,
        timeouts: ToolTimeoutSettings | None = None,
        debug_logging: bool = False,
    ) -> None:
        self._registry = registry
        self._max_attempts = max(1, max_attempts)
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds
        self._timeouts = timeouts or ToolTimeoutSettings()
        self._debug_logging = debug_logging

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def timeout_for(self, tool_name: str) -> float:
        return self._timeouts.for_tool(tool_name)

    async def execute(
        self,
        invocation: ToolInvocation,
        context: ToolContext,
        *,
        on_progress: ProgressCallback | None = None,
        on_log: LogCallback | None = None,
    ) -> ToolExecutionResult:
        """Execute ``invocation`` and return its result.

        Args:
            invocation: The assembled, mode-approved tool call.
            context: Collaborators for the handler.
            on_progress: Receives progress messages published by the handler.
            on_log: Receives ``started``/``retrying``/``succeeded``/``failed``
                log entries.

        Returns:
            The handler's result, or a failed result describing the error.
        """

        handler = self._registry.get(invocation.name)
        if handler is None:
            LOGGER.warning("No handler registered for tool %s", invocation.name)
            result = ToolExecutionResult.from_error(f"Unknown tool: {invocation.name}")
            self._emit_log(on_log, invocation, ToolLogStatus.FAILED, error=result.error)
            return result

        if on_progress is not None:
            context = context.with_progress(on_progress)
        timeout = self.timeout_for(invocation.name)

        if self._debug_logging:
            LOGGER.debug(
                "Executing tool %s (call_id=%s) with arguments: %s",
                invocation.name,
                invocation.id,
                redact_payload(invocation.arguments),
            )
        else:
            LOGGER.debug("Executing tool %s (call_id=%s)", invocation.name, invocation.id)
        self._emit_log(
            on_log,
            invocation,
            ToolLogStatus.STARTED,
            message=f"Running {invocation.name}...",
        )

        start_time = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self._run_with_retry(handler, invocation, context, on_log),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning(
                "Tool %s timed out after %.1fms (timeout=%.1fs)",
                invocation.name,
                duration_ms,
                timeout,
            )
            result = ToolExecutionResult.from_error(TIMEOUT_MESSAGE)
        else:
            duration_ms = (time.perf_counter() - start_time) * 1000

        if result.success:
            LOGGER.debug("Tool %s completed in %.1fms", invocation.name, duration_ms)
            self._emit_log(on_log, invocation, ToolLogStatus.SUCCEEDED, duration_ms=duration_ms)
        else:
            self._emit_log(
                on_log,
                invocation,
                ToolLogStatus.FAILED,
                error=result.error,
                duration_ms=duration_ms,
            )
        return result

    async def _run_with_retry(
        self,
        handler: ToolHandler,
        invocation: ToolInvocation,
        context: ToolContext,
        on_log: LogCallback | None,
    ) -> ToolExecutionResult:
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=self._retry_min_seconds,
                max=self._retry_max_seconds,
            ),
            retry=retry_if_exception(is_transient_tool_error),
            before_sleep=self._before_retry(invocation, on_log),
        )
        raw: Any = None
        try:
            async for attempt in retrying:
                with attempt:
                    raw = handler(invocation, context)
                    if inspect.isawaitable(raw):
                        raw = await raw
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            LOGGER.warning("Tool %s failed: %s", invocation.name, error)
            return ToolExecutionResult.from_error(error)

        if isinstance(raw, ToolExecutionResult):
            return raw
        return ToolExecutionResult.from_success(raw)

    def _before_retry(
        self,
        invocation: ToolInvocation,
        on_log: LogCallback | None,
    ) -> Callable[[RetryCallState], None]:
        def notify(retry_state: RetryCallState) -> None:
            failed_attempt = retry_state.attempt_number
            outcome = retry_state.outcome
            error = None
            if outcome is not None and outcome.failed:
                exc = outcome.exception()
                error = str(exc) or type(exc).__name__
            LOGGER.info(
                "Retrying tool %s after attempt %s/%s failed: %s",
                invocation.name,
                failed_attempt,
                self._max_attempts,
                error,
            )
            self._emit_log(
                on_log,
                invocation,
                ToolLogStatus.RETRYING,
                message=f"Retrying {invocation.name} (attempt {failed_attempt + 1}/{self._max_attempts})...",
                error=error,
                retry_count=failed_attempt - 1,
                retry_number=failed_attempt,
            )

        return notify

    def _emit_log(
        self,
        on_log: LogCallback | None,
        invocation: ToolInvocation,
        status: str,
        *,
        message: str | None = None,
        error: str | None = None,
        retry_count: int | None = None,
        retry_number: int | None = None,
        duration_ms: float | None = None,
    ) -> None:
        if on_log is None:
            return
        payload: dict[str, Any] = {
            "toolName": invocation.name,
            "toolCallId": invocation.id,
            "args": dict(invocation.arguments),
        }
        if message is not None:
            payload["message"] = message
        if error is not None:
            payload["error"] = error
        if retry_count is not None:
            payload["retryCount"] = retry_count
            payload["retryNumber"] = retry_number
        if duration_ms is not None:
            payload["durationMs"] = round(duration_ms, 1)
        on_log(ToolLogEntry(tool_name=invocation.name, status=status, payload=payload))
