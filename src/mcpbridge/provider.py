"""LLM providers.

Every provider family speaks its own wire format.  Each provider here
owns a narrow adapter that translates conversation history into that
format and normalises the native response or stream back into
:class:`~mcpbridge.streaming.StreamChunk` objects, so the chat loop
never sees a family-specific shape.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from mcpbridge.errors import LLMError, llm_error_from_status
from mcpbridge.message import (
    AssistantMessage,
    Message,
    MessageRole,
    ToolResultBlock,
    ToolResultMessage,
    UserToolResultsMessage,
)
from mcpbridge.streaming import (
    ArgumentMode,
    FinishReason,
    StreamChunk,
    ToolCall,
    ToolCallFragment,
    Usage,
    parse_arguments,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


class ProviderFamily(Enum):
    OPENAI = "openai"
    CLAUDE = "claude"


class ProviderConfig(BaseModel):
    name: str
    api_key: str | None = None
    base_url: str | None = None
    default_model: str | None = None
    timeout: float = 600.0
    max_retries: int = 5
    extra: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ProviderCapabilities:
    streaming: bool = True
    tools: bool = True
    max_context_tokens: int = 128_000
    max_output_tokens: int = 4096


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass
class Completion:
    """A full, non-streamed provider response."""

    content: str = ""
    finish_reason: str = FinishReason.STOP
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    model: str = ""


class ModelProvider:
    """Base class for chat-completion providers.

    Subclasses set the class attributes describing their family:

    * ``argument_mode``: how the stream adapter delivers tool-call
      arguments to the accumulator.
    * ``tool_use_on_presence``: ``True`` when the family's stream does not
      reliably report a ``tool_calls`` finish reason, so any accumulated
      tool call means tools must run.
    """

    family: ProviderFamily
    argument_mode: ArgumentMode = ArgumentMode.STRUCTURED
    tool_use_on_presence: bool = False
    default_model: str = ""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.family.value

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities()

    @property
    def supports_streaming(self) -> bool:
        return self.capabilities.streaming

    @property
    def model(self) -> str:
        return self.config.default_model or self.default_model

    def validate_config(self) -> bool:
        return bool(self.config.api_key)

    async def health_check(self) -> bool:
        return True

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> Completion:
        raise NotImplementedError

    def stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> AsyncIterator[StreamChunk]:
        raise LLMError(
            f"{self.name} does not support streaming",
            code="STREAMING_UNSUPPORTED", provider=self.name,
        )

    def tool_results_message(self, results: list[ToolResultBlock]) -> list[Message]:
        """Shape tool results the way this family expects them in history.

        The OpenAI family takes one ``tool`` role message per result; the
        Claude family takes ``tool_result`` blocks inside a ``user`` message.
        """
        if self.family is ProviderFamily.OPENAI:
            return [
                ToolResultMessage(
                    content=r.content, tool_call_id=r.tool_use_id, is_error=r.is_error,
                )
                for r in results
            ]
        return [UserToolResultsMessage(results=results)]


# ----------------------------------------------------------------------
# OpenAI
# ----------------------------------------------------------------------


class OpenAIProvider(ModelProvider):
    """Chat Completions API via :class:`openai.AsyncOpenAI`.

    The stream carries tool-call arguments as raw JSON text slices, and
    tool results go back as ``tool`` role messages.
    """

    family = ProviderFamily.OPENAI
    argument_mode = ArgumentMode.STRING
    tool_use_on_presence = True
    default_model = "gpt-4o-mini"

    def __init__(self, config: ProviderConfig | None = None):
        config = config or ProviderConfig(name="OpenAI")
        if not config.api_key:
            config.api_key = os.getenv("OPENAI_API_KEY")
        super().__init__(config)
        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_context_tokens=128_000, max_output_tokens=16_384)

    async def health_check(self) -> bool:
        try:
            await self.client.models.list()
        except openai.APIError as e:
            logger.warning(f"OpenAI health check failed: {e}")
            return False
        return True

    async def complete(self, messages, tools=None, model=None, max_tokens=DEFAULT_MAX_TOKENS):
        model = model or self.model
        try:
            response = await self.client.chat.completions.create(
                **self._request(messages, tools, model, max_tokens),
            )
        except openai.APIError as e:
            raise self._convert_error(e, model) from e

        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_arguments(tc.function.arguments or "") or {},
            )
            for tc in choice.message.tool_calls or []
        ]
        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )
        return Completion(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or FinishReason.STOP,
            tool_calls=tool_calls,
            usage=usage,
            model=response.model,
        )

    async def stream(self, messages, tools=None, model=None, max_tokens=DEFAULT_MAX_TOKENS):
        model = model or self.model
        try:
            response = await self.client.chat.completions.create(
                **self._request(messages, tools, model, max_tokens),
                stream=True,
                stream_options={"include_usage": True},
            )
            async for event in response:
                chunk = self._parse_stream_event(event)
                if chunk is not None:
                    yield chunk
        except openai.APIError as e:
            raise self._convert_error(e, model) from e

    def _request(self, messages, tools, model, max_tokens) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model,
            "messages": [m for msg in messages for m in self._dump_message(msg)],
            "max_tokens": max_tokens,
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
            request["tool_choice"] = "auto"
        return request

    def _dump_message(self, message: Message) -> list[dict[str, Any]]:
        if isinstance(message, AssistantMessage) and message.tool_calls:
            return [{
                "role": "assistant",
                "content": message.text or None,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in message.tool_calls
                ],
            }]
        if isinstance(message, ToolResultMessage):
            return [{
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.text,
            }]
        if isinstance(message, UserToolResultsMessage):
            return [
                {"role": "tool", "tool_call_id": r.tool_use_id, "content": r.content}
                for r in message.results
            ]
        return [{"role": message.role.value, "content": message.text}]

    def _parse_stream_event(self, event) -> StreamChunk | None:
        chunk = StreamChunk()
        if getattr(event, "usage", None) is not None:
            chunk.usage = Usage(
                prompt_tokens=event.usage.prompt_tokens,
                completion_tokens=event.usage.completion_tokens,
            )
        if event.choices:
            choice = event.choices[0]
            delta = choice.delta
            if delta is not None and delta.content:
                chunk.content = delta.content
            if delta is not None and delta.tool_calls:
                chunk.tool_calls = [
                    ToolCallFragment(
                        call_id=tc.id,
                        name=tc.function.name if tc.function else None,
                        arguments=tc.function.arguments if tc.function else None,
                        index=tc.index,
                    )
                    for tc in delta.tool_calls
                ]
            if choice.finish_reason:
                chunk.finish_reason = choice.finish_reason
        if chunk.to_dict():
            return chunk
        return None

    def _convert_error(self, error: openai.APIError, model: str) -> LLMError:
        status = getattr(error, "status_code", None)
        return llm_error_from_status(
            f"OpenAI request failed: {error}", status, self.name,
            model=model, details=getattr(error, "body", None),
        )


# ----------------------------------------------------------------------
# Claude
# ----------------------------------------------------------------------

_CLAUDE_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
}


def map_stop_reason(reason: str | None) -> str:
    return _CLAUDE_STOP_REASONS.get(reason or "", FinishReason.STOP)


@dataclass
class _OpenToolBlock:
    call_id: str
    name: str
    partial_json: str = ""


class ClaudeProvider(ModelProvider):
    """Messages API via :class:`anthropic.AsyncAnthropic`.

    ``input_json_delta`` slices are buffered per content block inside the
    adapter and emitted as a single structured argument fragment when the
    block closes.  Tool results go back as ``tool_result`` blocks inside a
    ``user`` message.
    """

    family = ProviderFamily.CLAUDE
    argument_mode = ArgumentMode.STRUCTURED
    tool_use_on_presence = False
    default_model = "claude-3-5-sonnet-20241022"

    def __init__(self, config: ProviderConfig | None = None):
        config = config or ProviderConfig(name="Claude")
        if not config.api_key:
            config.api_key = os.getenv("ANTHROPIC_API_KEY")
        super().__init__(config)
        self.client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(max_context_tokens=200_000, max_output_tokens=8192)

    async def health_check(self) -> bool:
        try:
            await self.client.models.list()
        except anthropic.APIError as e:
            logger.warning(f"Claude health check failed: {e}")
            return False
        return True

    async def complete(self, messages, tools=None, model=None, max_tokens=DEFAULT_MAX_TOKENS):
        model = model or self.model
        try:
            response = await self.client.messages.create(
                **self._request(messages, tools, model, max_tokens),
            )
        except anthropic.APIError as e:
            raise self._convert_error(e, model) from e

        texts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id, name=block.name, arguments=dict(block.input or {}),
                ))
        return Completion(
            content="\n".join(texts),
            finish_reason=map_stop_reason(response.stop_reason),
            tool_calls=tool_calls,
            usage=Usage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            ),
            model=response.model,
        )

    async def stream(self, messages, tools=None, model=None, max_tokens=DEFAULT_MAX_TOKENS):
        model = model or self.model
        open_blocks: dict[int, _OpenToolBlock] = {}
        prompt_tokens = 0
        try:
            response = await self.client.messages.create(
                **self._request(messages, tools, model, max_tokens),
                stream=True,
            )
            async for event in response:
                if event.type == "message_start":
                    prompt_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        open_blocks[event.index] = _OpenToolBlock(block.id, block.name)
                        yield StreamChunk(tool_calls=[
                            ToolCallFragment(call_id=block.id, name=block.name),
                        ])
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta" and delta.text:
                        yield StreamChunk(content=delta.text)
                    elif delta.type == "input_json_delta" and event.index in open_blocks:
                        open_blocks[event.index].partial_json += delta.partial_json
                elif event.type == "content_block_stop":
                    block = open_blocks.pop(event.index, None)
                    if block is not None:
                        yield StreamChunk(tool_calls=[ToolCallFragment(
                            call_id=block.call_id, arguments=self._close_block(block),
                        )])
                elif event.type == "message_delta":
                    yield StreamChunk(
                        finish_reason=map_stop_reason(event.delta.stop_reason),
                        usage=Usage(
                            prompt_tokens=prompt_tokens,
                            completion_tokens=event.usage.output_tokens,
                        ),
                    )
        except anthropic.APIError as e:
            raise self._convert_error(e, model) from e

    def _close_block(self, block: _OpenToolBlock) -> dict[str, Any]:
        if not block.partial_json:
            return {}
        parsed = parse_arguments(block.partial_json)
        if parsed is None:
            logger.warning(
                f"Malformed tool input for {block.name}: {block.partial_json!r}; "
                "using empty arguments"
            )
            return {}
        return parsed

    def _request(self, messages, tools, model, max_tokens) -> dict[str, Any]:
        system = "\n".join(m.text for m in messages if m.role is MessageRole.SYSTEM)
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [
                self._dump_message(m) for m in messages
                if m.role is not MessageRole.SYSTEM
            ],
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in tools
            ]
        return request

    def _dump_message(self, message: Message) -> dict[str, Any]:
        if isinstance(message, AssistantMessage) and message.tool_calls:
            blocks: list[dict[str, Any]] = []
            if message.text:
                blocks.append({"type": "text", "text": message.text})
            blocks.extend(
                {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments}
                for tc in message.tool_calls
            )
            return {"role": "assistant", "content": blocks}
        if isinstance(message, ToolResultMessage):
            block = ToolResultBlock(
                tool_use_id=message.tool_call_id,
                content=message.text,
                is_error=message.is_error,
            )
            return {"role": "user", "content": [block.to_block()]}
        return {"role": message.role.value, "content": message.content}

    def _convert_error(self, error: anthropic.APIError, model: str) -> LLMError:
        status = getattr(error, "status_code", None)
        return llm_error_from_status(
            f"Claude request failed: {error}", status, self.name,
            model=model, details=getattr(error, "body", None),
        )
