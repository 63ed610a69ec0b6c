"""Typed argument variants for each workspace tool.

Raw model output is a JSON string; :func:`parse_tool_arguments` decodes it,
validates it against the tool's JSON Schema and builds the frozen dataclass
registered for that tool. Field names are snake_case in Python and keep the
camelCase wire name in field metadata.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Union

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from .definitions import TOOL_SPECS
from .errors import ToolArgumentsError

__all__ = [
    "ContentWriteArgs",
    "EditSectionArgs",
    "SourceIngestArgs",
    "EditMetadataArgs",
    "ReadContentArgs",
    "ReadSectionArgs",
    "ReadSourceArgs",
    "ReadContentListArgs",
    "ReadSourceListArgs",
    "ReadWorkspaceSummaryArgs",
    "ToolArguments",
    "ARGUMENT_TYPES",
    "decode_arguments",
    "parse_tool_arguments",
]

# Models occasionally echo the tool "type" into the arguments object.
_IGNORED_KEYS = frozenset({"type"})


def _wire(name: str, default: Any = None) -> Any:
    return field(default=default, metadata={"wire": name})


# -----------------------------------------------------------------------------
# Write / Ingest Variants
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ContentWriteArgs:
    action: str
    source_content_id: str | None = _wire("sourceContentId")
    source_text: str | None = _wire("sourceText")
    context: str | None = None
    title: str | None = None
    slug: str | None = None
    status: str | None = None
    primary_keyword: str | None = _wire("primaryKeyword")
    target_locale: str | None = _wire("targetLocale")
    content_type: str | None = _wire("contentType")
    system_prompt: str | None = _wire("systemPrompt")
    temperature: float | None = None
    content_id: str | None = _wire("contentId")
    base_url: str | None = _wire("baseUrl")

    @property
    def resolved_source_text(self) -> str | None:
        """Inline source text; ``source_text`` wins over the ``context`` alias."""
        return self.source_text or self.context


@dataclass(slots=True, frozen=True)
class EditSectionArgs:
    content_id: str = _wire("contentId", "")
    section_id: str | None = _wire("sectionId")
    section_title: str | None = _wire("sectionTitle")
    instructions: str | None = None
    temperature: float | None = None


@dataclass(slots=True, frozen=True)
class SourceIngestArgs:
    source_type: str = _wire("sourceType", "")
    youtube_url: str | None = _wire("youtubeUrl")
    title_hint: str | None = _wire("titleHint")
    context: str | None = None
    title: str | None = None


@dataclass(slots=True, frozen=True)
class EditMetadataArgs:
    content_id: str = _wire("contentId", "")
    title: str | None = None
    slug: str | None = None
    status: str | None = None
    primary_keyword: str | None = _wire("primaryKeyword")
    target_locale: str | None = _wire("targetLocale")
    content_type: str | None = _wire("contentType")

    def changes(self) -> dict[str, str]:
        """Return the metadata fields the caller asked to change, keyed by wire name."""

        changed: dict[str, str] = {}
        for item in fields(self):
            if item.name == "content_id":
                continue
            value = getattr(self, item.name)
            if value is not None:
                changed[item.metadata.get("wire", item.name)] = value
        return changed


# -----------------------------------------------------------------------------
# Read Variants
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ReadContentArgs:
    content_id: str = _wire("contentId", "")


@dataclass(slots=True, frozen=True)
class ReadSectionArgs:
    content_id: str = _wire("contentId", "")
    section_id: str = _wire("sectionId", "")


@dataclass(slots=True, frozen=True)
class ReadSourceArgs:
    source_content_id: str = _wire("sourceContentId", "")


@dataclass(slots=True, frozen=True)
class ReadContentListArgs:
    status: str | None = None
    content_type: str | None = _wire("contentType")
    limit: int | None = None
    offset: int | None = None
    order_by: str | None = _wire("orderBy")
    order_direction: str | None = _wire("orderDirection")


@dataclass(slots=True, frozen=True)
class ReadSourceListArgs:
    source_type: str | None = _wire("sourceType")
    ingest_status: str | None = _wire("ingestStatus")
    limit: int | None = None
    offset: int | None = None
    order_by: str | None = _wire("orderBy")
    order_direction: str | None = _wire("orderDirection")


@dataclass(slots=True, frozen=True)
class ReadWorkspaceSummaryArgs:
    content_id: str = _wire("contentId", "")


ToolArguments = Union[
    ContentWriteArgs,
    EditSectionArgs,
    SourceIngestArgs,
    EditMetadataArgs,
    ReadContentArgs,
    ReadSectionArgs,
    ReadSourceArgs,
    ReadContentListArgs,
    ReadSourceListArgs,
    ReadWorkspaceSummaryArgs,
]

ARGUMENT_TYPES: Mapping[str, type] = {
    "content_write": ContentWriteArgs,
    "edit_section": EditSectionArgs,
    "source_ingest": SourceIngestArgs,
    "edit_metadata": EditMetadataArgs,
    "read_content": ReadContentArgs,
    "read_section": ReadSectionArgs,
    "read_source": ReadSourceArgs,
    "read_content_list": ReadContentListArgs,
    "read_source_list": ReadSourceListArgs,
    "read_workspace_summary": ReadWorkspaceSummaryArgs,
}

_VALIDATORS: dict[str, Draft202012Validator] = {
    name: Draft202012Validator(spec.parameters) for name, spec in TOOL_SPECS.items()
}


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def decode_arguments(tool_name: str, raw: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Decode the accumulated argument string into a JSON object.

    An empty string means "no arguments" and decodes to ``{}``.
    """

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        data: Any = dict(raw)
    else:
        text = raw.strip()
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ToolArgumentsError(tool_name, f"not valid JSON ({exc.msg})") from exc
    if not isinstance(data, dict):
        raise ToolArgumentsError(tool_name, "arguments must be a JSON object")
    return {key: value for key, value in data.items() if key not in _IGNORED_KEYS}


def parse_tool_arguments(
    tool_name: str, raw: str | Mapping[str, Any] | None
) -> tuple[dict[str, Any], ToolArguments]:
    """Decode, validate and type the arguments for ``tool_name``.

    Returns:
        The decoded JSON object and the typed argument variant.

    Raises:
        ToolArgumentsError: If the tool is unknown, the JSON is malformed, or
            the object violates the tool's schema.
    """

    arg_type = ARGUMENT_TYPES.get(tool_name)
    validator = _VALIDATORS.get(tool_name)
    if arg_type is None or validator is None:
        raise ToolArgumentsError(tool_name, "unknown tool")

    arguments = decode_arguments(tool_name, raw)
    error = best_match(validator.iter_errors(arguments))
    if error is not None:
        location = "/".join(str(part) for part in error.absolute_path)
        detail = f"{location}: {error.message}" if location else error.message
        raise ToolArgumentsError(tool_name, detail)

    values: dict[str, Any] = {}
    for item in fields(arg_type):
        wire_name = item.metadata.get("wire", item.name)
        if wire_name in arguments:
            values[item.name] = arguments[wire_name]
    return arguments, arg_type(**values)
