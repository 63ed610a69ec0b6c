"""Workspace tool catalog, typed arguments and handler registry."""

from .arguments import (
    ARGUMENT_TYPES,
    ContentWriteArgs,
    EditMetadataArgs,
    EditSectionArgs,
    ReadContentArgs,
    ReadContentListArgs,
    ReadSectionArgs,
    ReadSourceArgs,
    ReadSourceListArgs,
    ReadWorkspaceSummaryArgs,
    SourceIngestArgs,
    ToolArguments,
    parse_tool_arguments,
)
from .definitions import TOOL_NAMES, TOOL_SPECS, ToolKind, ToolSpec, get_tool_spec, openai_tools, tool_kind
from .errors import (
    DuplicateToolError,
    ToolArgumentsError,
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
    TransientToolError,
)
from .registry import ToolHandler, ToolRegistration, ToolRegistry

__all__ = [
    "ARGUMENT_TYPES",
    "ContentWriteArgs",
    "EditMetadataArgs",
    "EditSectionArgs",
    "ReadContentArgs",
    "ReadContentListArgs",
    "ReadSectionArgs",
    "ReadSourceArgs",
    "ReadSourceListArgs",
    "ReadWorkspaceSummaryArgs",
    "SourceIngestArgs",
    "ToolArguments",
    "parse_tool_arguments",
    "TOOL_NAMES",
    "TOOL_SPECS",
    "ToolKind",
    "ToolSpec",
    "get_tool_spec",
    "openai_tools",
    "tool_kind",
    "DuplicateToolError",
    "ToolArgumentsError",
    "ToolError",
    "ToolNotFoundError",
    "ToolValidationError",
    "TransientToolError",
    "ToolHandler",
    "ToolRegistration",
    "ToolRegistry",
]
