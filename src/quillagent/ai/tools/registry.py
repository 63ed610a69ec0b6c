"""Registry of tool handlers keyed by catalog name.

Handlers implement the business logic behind each catalog entry and are
supplied by the host application. A handler receives the assembled
:class:`~quillagent.ai.orchestration.types.ToolInvocation` plus a
:class:`~quillagent.ai.orchestration.types.ToolContext` and may be sync or
async.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Sequence, Union

from openai.types.chat import ChatCompletionToolParam

from .definitions import TOOL_SPECS, ToolSpec
from .errors import DuplicateToolError, ToolNotFoundError

if TYPE_CHECKING:
    from ..orchestration.types import ToolContext, ToolInvocation

__all__ = [
    "ToolHandler",
    "ToolRegistration",
    "ToolRegistry",
]

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[["ToolInvocation", "ToolContext"], Union[Awaitable[Any], Any]]


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered handler.

    Attributes:
        name: Tool name.
        handler: The callable implementing the tool.
        spec: Catalog specification for the tool.
        enabled: Whether the tool is currently enabled.
        metadata: Additional registration metadata.
    """

    name: str
    handler: ToolHandler
    spec: ToolSpec
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Maps catalog tool names to their handlers.

    Only names present in the tool catalog can be registered, so every handler
    has a schema and a typed argument variant.

    Example:
        registry = ToolRegistry()

        @registry.handler("read_content")
        async def read_content(invocation, context):
            return await store.load(invocation.params.content_id)
    """

    def __init__(self, handlers: Mapping[str, ToolHandler] | None = None) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def register(
        self,
        name: str,
        handler: ToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register ``handler`` for the catalog tool ``name``.

        Raises:
            ToolNotFoundError: If ``name`` is not in the tool catalog.
            DuplicateToolError: If a handler exists and ``allow_override`` is False.
        """
        spec = TOOL_SPECS.get(name)
        if spec is None:
            raise ToolNotFoundError(name)
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        registration = ToolRegistration(
            name=name,
            handler=handler,
            spec=spec,
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool handler: %s", name)
        return registration

    def handler(self, name: str, **options: Any) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: ToolHandler) -> ToolHandler:
            self.register(name, func, **options)
            return func

        return decorator

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool handler: %s", name)
            return True
        return False

    def get(self, name: str) -> ToolHandler | None:
        """Return the handler for ``name`` if registered and enabled."""
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration.handler

    def get_required(self, name: str) -> ToolHandler:
        handler = self.get(name)
        if handler is None:
            raise ToolNotFoundError(name)
        return handler

    def get_registration(self, name: str) -> ToolRegistration | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        registration = self._tools.get(name)
        return registration is not None and registration.enabled

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [
            registration.name
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def get_openai_tools(
        self,
        *,
        filter_names: Sequence[str] | None = None,
    ) -> list[ChatCompletionToolParam]:
        """Get definitions of the enabled tools in OpenAI format.

        Args:
            filter_names: If provided, only include these tools.

        Returns:
            Tool definitions in catalog order.
        """
        tools: list[ChatCompletionToolParam] = []
        for name, spec in TOOL_SPECS.items():
            if not self.has(name):
                continue
            if filter_names is not None and name not in filter_names:
                continue
            tools.append(spec.to_openai_tool())
        return tools

    def enable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
