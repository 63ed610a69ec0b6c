"""System prompt templates for the workspace agent."""

from __future__ import annotations

from typing import Sequence

from .tools.definitions import TOOL_SPECS, ToolKind

__all__ = ["BASE_PROMPT", "FALLBACK_MESSAGE", "build_system_prompt", "system_prompt_for_mode"]

BASE_PROMPT = "You are an autonomous content-creation assistant."

FALLBACK_MESSAGE = (
    "I've completed several operations, but reached the maximum number of tool calls. "
    "Is there anything else you'd like me to do?"
)


def system_prompt_for_mode(mode: str) -> str:
    """Return the mode-specific system prompt (without context blocks)."""

    if mode == "chat":
        return f"""{BASE_PROMPT}

- You are in **read-only mode**. You can use read tools to explore the workspace:
{_read_tool_lines()}
- You MUST NOT perform actions that modify content or ingest new data.
- If the user asks you to make changes, explain what you would do and suggest switching to agent mode for actual changes.
- Keep replies concise (2-4 sentences) and helpful."""

    return f"""{BASE_PROMPT}

- Always analyze the user's intent from natural language.
- When the user asks you to create content, update sections, or otherwise modify workspace artifacts, prefer calling the appropriate tool instead of replying with text.
- Only respond with text when the user is chatting, asking questions, or when no tool action is required.
- Keep replies concise (2-4 sentences) and actionable.

**Tool Selection Guidelines:**
{_agent_guidelines()}"""


def build_system_prompt(mode: str, context_blocks: Sequence[str] = ()) -> str:
    """Return the full system prompt, with context blocks under a ``Context:`` heading."""

    prompt = system_prompt_for_mode(mode)
    blocks = [block for block in context_blocks if block and block.strip()]
    if blocks:
        prompt += "\n\nContext:\n" + "\n\n".join(blocks)
    return prompt


def _read_tool_lines() -> str:
    lines = []
    for spec in TOOL_SPECS.values():
        if spec.kind != ToolKind.READ:
            continue
        summary = spec.description.split(". ")[0].rstrip(".")
        lines.append(f"  - {spec.name}: {summary}")
    return "\n".join(lines)


def _agent_guidelines() -> str:
    return "\n".join(
        (
            "- For simple edits to metadata (title, slug, status, primaryKeyword, targetLocale, contentType) "
            'on existing content items, use edit_metadata. Examples: "make the title shorter", '
            '"change the status to published".',
            "- For editing specific sections of existing content, use edit_section. Examples: "
            '"make the introduction more engaging", "rewrite the conclusion".',
            "- For creating new content items from source content (context, YouTube video, etc.), use "
            'content_write with action="create". This tool only creates new content.',
            "- For refreshing an existing content item's frontmatter and JSON-LD structured data, use "
            'content_write with action="enrich".',
            "- For ingesting source content from YouTube videos or pasted text, use source_ingest with "
            'sourceType="youtube" or sourceType="context".',
            '- Never use content_write with action="create" for editing existing content; use '
            "edit_metadata or edit_section instead.",
        )
    )
