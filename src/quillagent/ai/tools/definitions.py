"""Catalog of the workspace tools exposed to the model.

Each entry pairs the OpenAI function definition with the tool's kind. The kind
drives access control: ``read`` tools are safe in every mode, while ``write``
and ``ingest`` tools change workspace state and are reserved for agent mode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, cast

from openai.types.chat import ChatCompletionToolParam

__all__ = [
    "ToolKind",
    "ToolSpec",
    "TOOL_SPECS",
    "TOOL_NAMES",
    "get_tool_spec",
    "tool_kind",
    "tools_by_kind",
    "openai_tools",
]


# -----------------------------------------------------------------------------
# Tool Kinds
# -----------------------------------------------------------------------------


class ToolKind:
    """Capability classes for workspace tools."""

    READ = "read"
    WRITE = "write"
    INGEST = "ingest"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description shown to the model.
        parameters: JSON Schema for the tool's arguments.
        kind: One of the :class:`ToolKind` values.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    kind: str = ToolKind.READ

    @property
    def is_read_only(self) -> bool:
        return self.kind == ToolKind.READ

    def to_openai_tool(self) -> ChatCompletionToolParam:
        """Convert to OpenAI tool definition format."""
        return cast(
            ChatCompletionToolParam,
            {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": self.description,
                    "parameters": dict(self.parameters)
                    if self.parameters
                    else {"type": "object", "properties": {}},
                },
            },
        )


# -----------------------------------------------------------------------------
# Schema Builders
# -----------------------------------------------------------------------------

_NULLABLE_STRING = ["string", "null"]
_NULLABLE_NUMBER = ["number", "null"]


def _nullable_string(description: str) -> dict[str, Any]:
    return {"type": _NULLABLE_STRING, "description": description}


def _temperature(description: str | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": _NULLABLE_NUMBER, "minimum": 0, "maximum": 2}
    if description:
        schema["description"] = description
    return schema


def _pagination_properties() -> dict[str, Any]:
    return {
        "limit": {
            "type": _NULLABLE_NUMBER,
            "minimum": 1,
            "maximum": 100,
            "description": "Maximum number of items to return (default: 20, max: 100).",
        },
        "offset": {
            "type": _NULLABLE_NUMBER,
            "minimum": 0,
            "description": "Number of items to skip for pagination (default: 0).",
        },
        "orderBy": {
            "type": _NULLABLE_STRING,
            "enum": ["updatedAt", "createdAt", "title", None],
            "description": "Field to sort by (default: updatedAt).",
        },
        "orderDirection": {
            "type": _NULLABLE_STRING,
            "enum": ["asc", "desc", None],
            "description": "Sort direction (default: desc).",
        },
    }


def _content_write_parameters() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["create", "enrich"],
                "description": 'Action to perform: "create" to create new content from source, '
                'or "enrich" to refresh existing content\'s frontmatter and JSON-LD.',
            },
            "sourceContentId": _nullable_string(
                'Source content ID to generate from (required for action="create" if no sourceText/context).'
            ),
            "sourceText": _nullable_string(
                'Inline source text to use directly for generation (for action="create").'
            ),
            "context": _nullable_string(
                'Alias for sourceText (for action="create"). sourceText takes precedence when both are set.'
            ),
            "title": _nullable_string('Optional working title (for action="create").'),
            "slug": _nullable_string('Optional slug (for action="create").'),
            "status": _nullable_string(
                'Desired content status (draft, review, published, etc.) (for action="create").'
            ),
            "primaryKeyword": _nullable_string('Primary keyword for SEO (for action="create").'),
            "targetLocale": _nullable_string('Target locale, e.g. en-US (for action="create").'),
            "contentType": _nullable_string(
                'Content type identifier (blog_post, newsletter, etc.) (for action="create").'
            ),
            "systemPrompt": _nullable_string(
                'Custom system prompt when the user provides style guidance (for action="create").'
            ),
            "temperature": _temperature(
                'Sampling temperature for creative control (default 1) (for action="create").'
            ),
            "contentId": _nullable_string(
                'Content ID of the item to re-enrich (required for action="enrich").'
            ),
            "baseUrl": _nullable_string(
                'Optional base URL for absolute URLs in JSON-LD structured data (for action="enrich").'
            ),
        },
        "required": ["action"],
        "oneOf": [
            {
                "properties": {"action": {"const": "create"}},
                "anyOf": [
                    {"required": ["sourceContentId"]},
                    {"required": ["sourceText"]},
                    {"required": ["context"]},
                ],
            },
            {
                "properties": {"action": {"const": "enrich"}},
                "required": ["contentId"],
            },
        ],
    }


def _edit_section_parameters() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "contentId": {
                "type": "string",
                "description": "Content ID containing the section that should be patched.",
            },
            "sectionId": _nullable_string("Unique identifier of the section to patch."),
            "sectionTitle": _nullable_string(
                "Human readable section title when no sectionId is present."
            ),
            "instructions": _nullable_string("User instructions describing the requested edits."),
            "temperature": _temperature(),
        },
        "required": ["contentId"],
    }


def _source_ingest_parameters() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "sourceType": {
                "type": "string",
                "enum": ["youtube", "context"],
                "description": 'Use "youtube" to fetch captions from a YouTube video, '
                'or "context" to save pasted text as source content.',
            },
            "youtubeUrl": _nullable_string(
                'YouTube video URL to ingest (required if sourceType="youtube").'
            ),
            "titleHint": _nullable_string(
                'Optional title hint for YouTube sources (only used when sourceType="youtube").'
            ),
            "context": _nullable_string(
                'Raw context text to save as source content (required if sourceType="context").'
            ),
            "title": _nullable_string(
                'Optional title for context sources (only used when sourceType="context").'
            ),
        },
        "required": ["sourceType"],
        "oneOf": [
            {
                "properties": {"sourceType": {"const": "youtube"}},
                "required": ["youtubeUrl"],
            },
            {
                "properties": {"sourceType": {"const": "context"}},
                "required": ["context"],
            },
        ],
    }


def _edit_metadata_parameters() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "contentId": {"type": "string", "description": "Content ID of the item to update."},
            "title": _nullable_string("New title for the content item."),
            "slug": _nullable_string("New slug for the content item (will be auto-slugified)."),
            "status": _nullable_string(
                "New status (draft, in_review, ready_for_publish, published, archived)."
            ),
            "primaryKeyword": _nullable_string("New primary keyword for SEO."),
            "targetLocale": _nullable_string("New target locale (e.g., en-US, es-ES)."),
            "contentType": _nullable_string("New content type (blog_post, newsletter, etc.)."),
        },
        "required": ["contentId"],
    }


def _id_parameters(**ids: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            name: {"type": "string", "description": description}
            for name, description in ids.items()
        },
        "required": list(ids),
    }


def _read_content_list_parameters() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "status": _nullable_string(
                "Filter by content status (draft, in_review, ready_for_publish, published, archived)."
            ),
            "contentType": _nullable_string("Filter by content type (blog_post, newsletter, etc.)."),
            **_pagination_properties(),
        },
    }


def _read_source_list_parameters() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "sourceType": _nullable_string("Filter by source type (youtube, context, etc.)."),
            "ingestStatus": _nullable_string(
                "Filter by ingest status (ingested, ingesting, failed, etc.)."
            ),
            **_pagination_properties(),
        },
    }


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------

_READ_ONLY_NOTE = " This is a read-only operation."

TOOL_SPECS: Mapping[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            name="content_write",
            description=(
                'Write or enrich content. Use action="create" to create new content from source '
                "(saved source content, inline text, or conversation history). Use "
                'action="enrich" to refresh an existing content item\'s frontmatter and JSON-LD '
                "structured data. For editing sections use edit_section; for metadata fields "
                "use edit_metadata."
            ),
            parameters=_content_write_parameters(),
            kind=ToolKind.WRITE,
        ),
        ToolSpec(
            name="edit_section",
            description="Edit a specific section of an existing content item using the user's instructions.",
            parameters=_edit_section_parameters(),
            kind=ToolKind.WRITE,
        ),
        ToolSpec(
            name="source_ingest",
            description=(
                "Ingest source content from either a YouTube video or arbitrary context text. "
                'Use sourceType="youtube" to fetch captions, or sourceType="context" to save '
                "pasted text as source content for content generation."
            ),
            parameters=_source_ingest_parameters(),
            kind=ToolKind.INGEST,
        ),
        ToolSpec(
            name="edit_metadata",
            description=(
                "Update metadata fields (title, slug, status, primaryKeyword, targetLocale, "
                "contentType) for an existing content item without creating a new version."
            ),
            parameters=_edit_metadata_parameters(),
            kind=ToolKind.WRITE,
        ),
        ToolSpec(
            name="read_content",
            description="Fetch a content item and its current version for inspection. "
            "Returns content metadata, version info, and sections." + _READ_ONLY_NOTE,
            parameters=_id_parameters(contentId="ID of the content to read."),
        ),
        ToolSpec(
            name="read_section",
            description="Fetch a specific section of a content item for inspection. "
            "Returns section text and metadata." + _READ_ONLY_NOTE,
            parameters=_id_parameters(
                contentId="ID of the content containing the section.",
                sectionId="ID of the section to read.",
            ),
        ),
        ToolSpec(
            name="read_source",
            description="Fetch a source content item for inspection, including context text "
            "and chunk metadata." + _READ_ONLY_NOTE,
            parameters=_id_parameters(sourceContentId="ID of the source content to read."),
        ),
        ToolSpec(
            name="read_content_list",
            description="List content items with optional filtering. Returns a paginated list "
            "of content items with metadata." + _READ_ONLY_NOTE,
            parameters=_read_content_list_parameters(),
        ),
        ToolSpec(
            name="read_source_list",
            description="List source content items (YouTube videos, manual context, etc.) with "
            "optional filtering. Returns a paginated list of source content." + _READ_ONLY_NOTE,
            parameters=_read_source_list_parameters(),
        ),
        ToolSpec(
            name="read_workspace_summary",
            description="Get a human-readable summary of a content workspace: the content, its "
            "version, sections, and source." + _READ_ONLY_NOTE,
            parameters=_id_parameters(contentId="ID of the content workspace to summarize."),
        ),
    )
}

TOOL_NAMES: tuple[str, ...] = tuple(TOOL_SPECS)


def get_tool_spec(name: str) -> ToolSpec | None:
    return TOOL_SPECS.get(name)


def tool_kind(name: str) -> str | None:
    """Return the kind of ``name`` or ``None`` for tools outside the catalog."""

    spec = TOOL_SPECS.get(name)
    return spec.kind if spec is not None else None


def tools_by_kind(kind: str) -> list[ToolSpec]:
    return [spec for spec in TOOL_SPECS.values() if spec.kind == kind]


def openai_tools(names: Iterable[str] | None = None) -> list[ChatCompletionToolParam]:
    """Return OpenAI tool definitions, optionally restricted to ``names``."""

    allowed = set(names) if names is not None else None
    return [
        spec.to_openai_tool()
        for spec in TOOL_SPECS.values()
        if allowed is None or spec.name in allowed
    ]
