"""Serve MCP ``sampling/createMessage`` requests with a registered provider."""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp import types

from mcpbridge.message import Message, MessageRole
from mcpbridge.registry import ProviderRegistry
from mcpbridge.streaming import FinishReason

logger = logging.getLogger(__name__)

DEFAULT_SAMPLING_MAX_TOKENS = 1000

_MCP_STOP_REASONS = {
    FinishReason.STOP: "endTurn",
    FinishReason.LENGTH: "maxTokens",
}


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(_content_text(block) for block in content)
    if getattr(content, "type", None) == "text":
        return content.text
    return json.dumps(content.model_dump(exclude_none=True))


class SamplingHandler:
    """Forwards a server's sampling request to an LLM provider.

    Pass an instance as ``sampling_callback`` to :class:`mcp.ClientSession`.
    The first model hint in the request, if any, overrides the provider's
    default model.

    Args:
        registry: Providers to sample from.
        provider: Registry name to use; the registry default when ``None``.
    """

    def __init__(self, registry: ProviderRegistry, provider: str | None = None):
        self.registry = registry
        self.provider = provider

    async def __call__(
        self, context: Any, params: types.CreateMessageRequestParams,
    ) -> types.CreateMessageResult | types.ErrorData:
        logger.info(f"Incoming sampling request with {len(params.messages)} messages")
        history = [
            Message(role=MessageRole(m.role), content=_content_text(m.content))
            for m in params.messages
        ]
        if params.systemPrompt:
            history.insert(0, Message(role=MessageRole.SYSTEM, content=params.systemPrompt))

        model = None
        preferences = params.modelPreferences
        if preferences is not None and preferences.hints and preferences.hints[0].name:
            model = preferences.hints[0].name

        try:
            llm = self.registry.get(self.provider)
            completion = await llm.complete(
                history,
                model=model,
                max_tokens=params.maxTokens or DEFAULT_SAMPLING_MAX_TOKENS,
            )
        except Exception as e:
            logger.error(f"Sampling request failed: {e}")
            return types.ErrorData(code=types.INTERNAL_ERROR, message=f"Sampling failed: {e}")

        return types.CreateMessageResult(
            role="assistant",
            content=types.TextContent(
                type="text", text=completion.content or "No response generated",
            ),
            model=completion.model or model or llm.model,
            stopReason=_MCP_STOP_REASONS.get(completion.finish_reason, completion.finish_reason),
        )
