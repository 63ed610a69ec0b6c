"""Exceptions raised by tool handlers and argument parsing."""

from __future__ import annotations

__all__ = [
    "ToolError",
    "ToolValidationError",
    "TransientToolError",
    "ToolArgumentsError",
    "DuplicateToolError",
    "ToolNotFoundError",
]


class ToolError(Exception):
    """Base class for failures reported by tool handlers."""


class ToolValidationError(ToolError):
    """The request cannot succeed as issued; retrying will not help."""


class TransientToolError(ToolError):
    """A temporary failure (network, upstream timeout) worth retrying."""


class ToolArgumentsError(ValueError):
    """Tool arguments were not valid JSON or did not satisfy the tool schema."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"Invalid arguments for {tool_name}: {message}")


class DuplicateToolError(Exception):
    """Raised when attempting to register a handler for a name that already has one."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")
