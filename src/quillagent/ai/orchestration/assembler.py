"""Reassembly of streamed tool-call fragments into validated invocations."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from ..streaming import ToolCallDelta
from ..tools.arguments import parse_tool_arguments
from ..tools.errors import ToolArgumentsError
from .types import PendingToolCall, ToolInvocation

__all__ = [
    "AssemblyResult",
    "MalformedToolCall",
    "ToolCallAssembler",
    "synthesize_call_id",
]

LOGGER = logging.getLogger(__name__)


def synthesize_call_id(pass_index: int, index: int) -> str:
    """Generate an id for a tool call whose provider id has not arrived."""
    return f"call_{pass_index}_{index}_{uuid.uuid4().hex[:8]}"


@dataclass(slots=True, frozen=True)
class MalformedToolCall:
    """A pending tool call that could not become an invocation.

    Attributes:
        index: Provider index of the call.
        id: Call id if one was fixed (only for announced calls).
        name: Accumulated tool name (may be empty).
        reason: Why the call was dropped.
        announced: True when a ``preparing`` notification was already raised.
    """

    index: int
    id: str | None
    name: str
    reason: str
    announced: bool


@dataclass(slots=True, frozen=True)
class AssemblyResult:
    invocations: tuple[ToolInvocation, ...] = ()
    malformed: tuple[MalformedToolCall, ...] = ()

    @property
    def has_invocations(self) -> bool:
        return bool(self.invocations)


class ToolCallAssembler:
    """Accumulates :class:`ToolCallDelta` fragments for one pass.

    Fragments are grouped by provider ``index``; name and argument parts are
    concatenated in arrival order. The call id is fixed the first time an index
    carries a name, which is also the moment :meth:`feed` reports the call as
    newly announced. :meth:`finish` validates every pending entry and clears
    the pending table.
    """

    def __init__(
        self,
        pass_index: int,
        *,
        pending: dict[int, PendingToolCall] | None = None,
        id_factory: Callable[[int, int], str] = synthesize_call_id,
    ) -> None:
        self._pass_index = pass_index
        self._pending = pending if pending is not None else {}
        self._id_factory = id_factory

    @property
    def pending(self) -> dict[int, PendingToolCall]:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def feed(self, delta: ToolCallDelta) -> PendingToolCall | None:
        """Merge one fragment.

        Returns:
            The pending entry when this fragment announced it (first name),
            otherwise ``None``.
        """

        entry = self._pending.get(delta.index)
        if entry is None:
            entry = PendingToolCall(index=delta.index)
            self._pending[delta.index] = entry

        if delta.id:
            if entry.id is None:
                entry.id = delta.id
            elif entry.id != delta.id:
                LOGGER.debug(
                    "Ignoring late id %s for tool call index %s (fixed as %s)",
                    delta.id,
                    delta.index,
                    entry.id,
                )
        if delta.name_part:
            entry.name += delta.name_part
        if delta.arguments_part:
            entry.arguments += delta.arguments_part

        if entry.name and not entry.announced:
            entry.announced = True
            if entry.id is None:
                entry.id = self._id_factory(self._pass_index, entry.index)
            return entry
        return None

    def finish(self) -> AssemblyResult:
        """Turn every pending entry into an invocation or a malformed record."""

        invocations: list[ToolInvocation] = []
        malformed: list[MalformedToolCall] = []
        seen_ids: set[str] = set()

        for index in sorted(self._pending):
            entry = self._pending[index]
            reason = self._validate(entry, seen_ids)
            if isinstance(reason, str):
                LOGGER.warning(
                    "Dropping malformed tool call (pass=%s index=%s name=%r): %s",
                    self._pass_index,
                    index,
                    entry.name,
                    reason,
                )
                malformed.append(
                    MalformedToolCall(
                        index=index,
                        id=entry.id if entry.announced else None,
                        name=entry.name,
                        reason=reason,
                        announced=entry.announced,
                    )
                )
                continue
            seen_ids.add(reason.id)
            invocations.append(reason)

        self._pending.clear()
        return AssemblyResult(invocations=tuple(invocations), malformed=tuple(malformed))

    def _validate(self, entry: PendingToolCall, seen_ids: set[str]) -> ToolInvocation | str:
        if not entry.name:
            return "missing tool name"
        call_id = entry.id or self._id_factory(self._pass_index, entry.index)
        if call_id in seen_ids:
            return f"duplicate tool call id {call_id}"
        try:
            arguments, params = parse_tool_arguments(entry.name, entry.arguments)
        except ToolArgumentsError as exc:
            return exc.message
        return ToolInvocation(
            id=call_id,
            name=entry.name,
            arguments=arguments,
            index=entry.index,
            params=params,
            raw_arguments=entry.arguments,
        )
