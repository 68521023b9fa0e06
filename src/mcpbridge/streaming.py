"""Streaming primitives for provider responses.

Providers normalise their native stream events into :class:`StreamChunk`
objects.  The :class:`ToolCallAccumulator` reassembles tool calls whose
pieces arrive across multiple chunks, in one of two argument modes:

* ``STRUCTURED``: each fragment carries a partial ``dict`` that is
  shallow-merged into the call's arguments.
* ``STRING``: each fragment carries a slice of raw JSON text.  The buffer
  is parsed opportunistically after every fragment and once more at
  :meth:`ToolCallAccumulator.finalize`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Tool arguments are JSON-compatible values keyed by parameter name.
ToolArguments = dict[str, Any]


class FinishReason:
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


class ArgumentMode(Enum):
    STRUCTURED = "structured"
    STRING = "string"


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    call_id: str | None = None
    name: str | None = None
    arguments: ToolArguments | str | None = None
    index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.call_id is not None:
            data["id"] = self.call_id
        if self.name is not None:
            data["name"] = self.name
        if self.arguments is not None:
            data["arguments"] = self.arguments
        return data


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider."""

    content: str | None = None
    tool_calls: list[ToolCallFragment] | None = None
    finish_reason: str | None = None
    usage: Usage | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by the SSE adapter; empty fields are dropped."""
        data: dict[str, Any] = {}
        if self.content is not None:
            data["content"] = self.content
        if self.tool_calls:
            data["toolCalls"] = [f.to_dict() for f in self.tool_calls]
        if self.finish_reason is not None:
            data["finishReason"] = self.finish_reason
        if self.usage is not None:
            data["usage"] = {
                "promptTokens": self.usage.prompt_tokens,
                "completionTokens": self.usage.completion_tokens,
                "totalTokens": self.usage.total_tokens,
            }
        return data


@dataclass
class ToolCall:
    """A resolved tool call ready for execution and the transcript."""

    id: str = ""
    name: str = ""
    arguments: ToolArguments = field(default_factory=dict)


@dataclass
class _PendingCall:
    call: ToolCall
    buffer: str = ""
    parsed: bool = False


def parse_arguments(raw: str) -> ToolArguments | None:
    """Parse a JSON object, returning ``None`` when *raw* is not one."""
    if not raw.strip():
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Calls are keyed by provider call id.  Continuation fragments that
    omit the id are matched by ``index`` when the provider sends one,
    and otherwise continue the most recently started call.

    Args:
        mode: How argument fragments are combined.
    """

    def __init__(self, mode: ArgumentMode = ArgumentMode.STRUCTURED) -> None:
        self.mode = mode
        self._pending: list[_PendingCall] = []
        self._by_id: dict[str, _PendingCall] = {}
        self._by_index: dict[int, _PendingCall] = {}

    @property
    def has_calls(self) -> bool:
        return bool(self._pending)

    def feed(self, fragment: ToolCallFragment) -> None:
        entry = self._locate(fragment)
        if fragment.call_id:
            entry.call.id = fragment.call_id
            self._by_id[fragment.call_id] = entry
        if fragment.index is not None:
            self._by_index[fragment.index] = entry
        if fragment.name:
            entry.call.name = fragment.name
        if fragment.arguments is not None:
            self._merge_arguments(entry, fragment.arguments)

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in first-seen order.

        String buffers that never parsed get one last attempt; a buffer
        that is still not a JSON object degrades to ``{}``.
        """
        for entry in self._pending:
            if self.mode is not ArgumentMode.STRING or entry.parsed:
                continue
            parsed = parse_arguments(entry.buffer)
            if parsed is None:
                if entry.buffer:
                    logger.warning(
                        f"Could not parse arguments for {entry.call.name or entry.call.id}: "
                        f"{entry.buffer!r}; using empty arguments"
                    )
                parsed = {}
            entry.call.arguments = parsed
            entry.parsed = True
        return [entry.call for entry in self._pending]

    def _locate(self, fragment: ToolCallFragment) -> _PendingCall:
        if fragment.call_id and fragment.call_id in self._by_id:
            return self._by_id[fragment.call_id]
        if fragment.index is not None and fragment.index in self._by_index:
            existing = self._by_index[fragment.index]
            if not fragment.call_id or not existing.call.id:
                return existing
        if not fragment.call_id and fragment.index is None and self._pending:
            return self._pending[-1]
        entry = _PendingCall(call=ToolCall())
        self._pending.append(entry)
        return entry

    def _merge_arguments(self, entry: _PendingCall, arguments: ToolArguments | str) -> None:
        if self.mode is ArgumentMode.STRING:
            if isinstance(arguments, str):
                entry.buffer += arguments
            else:
                entry.buffer += json.dumps(arguments)
            parsed = parse_arguments(entry.buffer)
            entry.parsed = parsed is not None
            if parsed is not None:
                entry.call.arguments = parsed
            return

        if isinstance(arguments, str):
            parsed = parse_arguments(arguments)
            if parsed is None:
                logger.warning(f"Dropping unparseable argument fragment for {entry.call.name}")
                return
            arguments = parsed
        entry.call.arguments.update(arguments)
