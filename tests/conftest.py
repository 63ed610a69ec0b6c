"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quillagent.ai.orchestration.events import EventChannel, EventEmitter
from quillagent.ai.orchestration.types import ToolContext
from quillagent.ai.tools.registry import ToolRegistry


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture
def emitter(channel: EventChannel) -> EventEmitter:
    return EventEmitter(channel, message_id="msg-test")


@pytest.fixture
def agent_tool_context() -> ToolContext:
    return ToolContext(mode="agent", conversation_id="conv-1", organization_id="org-1")
