"""Access control for tools by agent mode."""

from __future__ import annotations

import logging
from typing import Mapping

from openai.types.chat import ChatCompletionToolParam

from ..tools.definitions import TOOL_SPECS, ToolKind
from .types import AgentMode, validate_mode

__all__ = ["ModeGate", "MODE_PERMISSIONS", "denial_message"]

LOGGER = logging.getLogger(__name__)

_KIND_MODES: Mapping[str, frozenset[str]] = {
    ToolKind.READ: frozenset({"chat", "agent"}),
    ToolKind.WRITE: frozenset({"agent"}),
    ToolKind.INGEST: frozenset({"agent"}),
}

MODE_PERMISSIONS: Mapping[str, frozenset[str]] = {
    name: _KIND_MODES[spec.kind] for name, spec in TOOL_SPECS.items()
}


def denial_message(tool_name: str) -> str:
    return (
        f'Tool "{tool_name}" is not available in chat mode '
        "(it can modify content or ingest new data). Switch to agent mode."
    )


class ModeGate:
    """Static capability table mapping each tool to the modes allowed to run it.

    Decisions depend only on the tool name and the mode. Tools missing from the
    table are never allowed.
    """

    def __init__(self, permissions: Mapping[str, frozenset[str]] | None = None) -> None:
        self._permissions = dict(permissions if permissions is not None else MODE_PERMISSIONS)

    def is_allowed(self, tool_name: str, mode: AgentMode) -> bool:
        modes = self._permissions.get(tool_name)
        return modes is not None and mode in modes

    def denial_message(self, tool_name: str) -> str:
        return denial_message(tool_name)

    def allowed_tool_names(self, mode: AgentMode) -> tuple[str, ...]:
        validate_mode(mode)
        return tuple(name for name, modes in self._permissions.items() if mode in modes)

    def allowed_tools(
        self,
        mode: AgentMode,
        tools: list[ChatCompletionToolParam],
    ) -> list[ChatCompletionToolParam]:
        """Filter tool definitions down to the ones ``mode`` may call."""

        allowed = [tool for tool in tools if self.is_allowed(_tool_name(tool), mode)]
        if len(allowed) != len(tools):
            LOGGER.debug(
                "Mode %s hides %s of %s tool definition(s)", mode, len(tools) - len(allowed), len(tools)
            )
        return allowed


def _tool_name(tool: ChatCompletionToolParam) -> str:
    function = tool.get("function") or {}
    return str(function.get("name", ""))
