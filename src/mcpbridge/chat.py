import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from mcpbridge.errors import LLMError
from mcpbridge.instrumentation import chat_span, record_error, record_usage, tool_span
from mcpbridge.message import (
    AssistantMessage,
    Message,
    MessageRole,
    ToolCallRecord,
    ToolResultBlock,
)
from mcpbridge.provider import DEFAULT_MAX_TOKENS, ModelProvider, ToolDefinition
from mcpbridge.registry import ProviderRegistry
from mcpbridge.repair import REPAIRABLE_TOOLS, repair_arguments
from mcpbridge.streaming import FinishReason, StreamChunk, ToolCall, ToolCallAccumulator
from mcpbridge.tools import ToolCollaborator

logger = logging.getLogger(__name__)


@dataclass
class _ToolOutcome:
    """Result of executing a single tool call."""

    block: ToolResultBlock
    error: str | None = None


class ChatBridge:
    """Runs a tool-using conversation turn against a registered provider.

    Each turn starts a fresh history from the user's message.  The bridge
    asks the provider for a response, executes any requested tools through
    the tool collaborator in the order they were requested, feeds the
    results back, and repeats until the provider answers without tools or
    ``max_rounds`` round-trips have been made.

    Tool failures are returned to the model as error results.  Provider
    failures (:class:`~mcpbridge.errors.LLMError`) propagate and end the
    turn.

    ``chat_stream()`` is the streaming entry point; ``chat()`` runs the
    same loop on full responses.

    Args:
        registry: Providers available to the bridge.
        tools: Collaborator that lists and executes tools.
        max_rounds: Maximum provider round-trips per turn.
        max_tokens: Output token limit sent with each request.
        system_prompt: Optional system message prepended to each turn.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tools: ToolCollaborator,
        max_rounds: int = 10,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        system_prompt: str | None = None,
    ):
        self.registry = registry
        self.tools = tools
        self.max_rounds = max_rounds
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self._selected: str | None = None

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    @property
    def current_provider(self) -> str | None:
        """Explicitly selected provider, else the registry's current default."""
        return self._selected or self.registry.default

    def available_providers(self) -> list[dict]:
        return self.registry.list_providers()

    def set_current_provider(self, name: str) -> None:
        if name not in self.registry:
            raise LLMError(
                f"Provider not found: {name}",
                code="PROVIDER_NOT_FOUND", provider=name,
            )
        self._selected = name
        logger.info(f"Switched to provider: {name}")

    # ------------------------------------------------------------------
    # Conversation loops
    # ------------------------------------------------------------------

    async def chat_stream(
        self, user_message: str, provider: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one turn, forwarding text as it arrives.

        Yields content chunks in arrival order, finish-reason chunks at
        the end of each provider round, and short ``[Executing tool: ...]``
        markers around each tool call.
        """
        llm = self.registry.get(provider or self.current_provider)
        if not llm.supports_streaming:
            logger.info(f"{llm.name} cannot stream; running the turn unstreamed")
            yield StreamChunk(content=await self.chat(user_message, provider))
            yield StreamChunk(finish_reason=FinishReason.STOP)
            return

        logger.info(f"Processing streaming chat request with {llm.name}")
        definitions = await self._tool_definitions()
        history = self._start_history(user_message)

        for round_number in range(1, self.max_rounds + 1):
            acc = ToolCallAccumulator(llm.argument_mode)
            content = ""
            finish_reason = None

            async with chat_span(llm.name, llm.model, round_number) as span:
                try:
                    async for chunk in llm.stream(
                        history, definitions, max_tokens=self.max_tokens,
                    ):
                        for fragment in chunk.tool_calls or []:
                            acc.feed(fragment)
                        if chunk.usage is not None:
                            record_usage(span, chunk.usage)
                        if chunk.finish_reason:
                            finish_reason = chunk.finish_reason
                        if chunk.content:
                            content += chunk.content
                        if chunk.content or chunk.finish_reason:
                            yield StreamChunk(
                                content=chunk.content,
                                finish_reason=chunk.finish_reason,
                                usage=chunk.usage,
                            )
                except Exception as e:
                    record_error(span, e)
                    raise

            calls = self._prepare_calls(acc.finalize(), user_message)
            history.append(self._assistant_message(content, calls))

            if not self._wants_tools(llm, finish_reason, calls):
                logger.info("Chat completed")
                return

            results = []
            for call in calls:
                yield StreamChunk(content=f"\n[Executing tool: {call.name}]\n")
                outcome = await self._execute_one(call)
                results.append(outcome.block)
                if outcome.error is not None:
                    yield StreamChunk(content=f"[Tool {call.name} failed: {outcome.error}]\n")
                else:
                    yield StreamChunk(content=f"[Tool {call.name} completed]\n")
            history.extend(llm.tool_results_message(results))

        logger.warning(f"Stopping turn after {self.max_rounds} rounds of tool calls")
        yield StreamChunk(content=self._round_limit_text())
        yield StreamChunk(finish_reason=FinishReason.STOP)

    async def chat(self, user_message: str, provider: str | None = None) -> str:
        """Run one turn on full responses and return the final text."""
        llm = self.registry.get(provider or self.current_provider)
        logger.info(f"Processing chat request with {llm.name}")
        definitions = await self._tool_definitions()
        history = self._start_history(user_message)

        for round_number in range(1, self.max_rounds + 1):
            async with chat_span(llm.name, llm.model, round_number) as span:
                try:
                    completion = await llm.complete(
                        history, definitions, max_tokens=self.max_tokens,
                    )
                except Exception as e:
                    record_error(span, e)
                    raise
                record_usage(span, completion.usage)

            calls = self._prepare_calls(completion.tool_calls, user_message)
            history.append(self._assistant_message(completion.content, calls))

            if not self._wants_tools(llm, completion.finish_reason, calls):
                logger.info("Chat completed")
                return completion.content

            results = [(await self._execute_one(call)).block for call in calls]
            history.extend(llm.tool_results_message(results))

        logger.warning(f"Stopping turn after {self.max_rounds} rounds of tool calls")
        return self._round_limit_text().strip()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _tool_definitions(self) -> list[ToolDefinition] | None:
        descriptors = await self.tools.list_tools()
        return [d.to_definition() for d in descriptors] or None

    def _start_history(self, user_message: str) -> list[Message]:
        history: list[Message] = []
        if self.system_prompt:
            history.append(Message(role=MessageRole.SYSTEM, content=self.system_prompt))
        history.append(Message(role=MessageRole.USER, content=user_message))
        return history

    def _round_limit_text(self) -> str:
        return f"\n[Stopped after {self.max_rounds} rounds of tool calls]\n"

    @staticmethod
    def _assistant_message(content: str, calls: list[ToolCall]) -> AssistantMessage:
        return AssistantMessage(
            content=content,
            tool_calls=[
                ToolCallRecord(id=c.id, name=c.name, arguments=c.arguments)
                for c in calls
            ],
        )

    @staticmethod
    def _wants_tools(
        llm: ModelProvider, finish_reason: str | None, calls: list[ToolCall],
    ) -> bool:
        if not calls:
            return False
        return finish_reason == FinishReason.TOOL_CALLS or llm.tool_use_on_presence

    @staticmethod
    def _prepare_calls(calls: list[ToolCall], user_message: str) -> list[ToolCall]:
        # Empty arguments for well-known tools get a heuristic fill from
        # the user's message before anything is executed or recorded.
        for call in calls:
            if not call.arguments and call.name in REPAIRABLE_TOOLS:
                call.arguments = repair_arguments(call.name, user_message)
        return calls

    async def _execute_one(self, call: ToolCall) -> _ToolOutcome:
        async with tool_span(call.name, call.id) as span:
            try:
                result = await self.tools.execute_tool(call.name, call.arguments)
            except Exception as e:
                record_error(span, e)
                logger.error(f"Tool {call.name} raised: {e}")
                return _ToolOutcome(
                    block=ToolResultBlock(
                        tool_use_id=call.id,
                        content=f"Error executing {call.name}: {e}",
                        is_error=True,
                    ),
                    error=str(e),
                )
        return _ToolOutcome(block=ToolResultBlock(
            tool_use_id=call.id, content=result.text, is_error=result.is_error,
        ))
