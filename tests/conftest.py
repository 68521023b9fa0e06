import copy

import pytest

from mcpbridge.provider import (
    Completion,
    ModelProvider,
    ProviderCapabilities,
    ProviderConfig,
    ProviderFamily,
)
from mcpbridge.registry import ProviderRegistry
from mcpbridge.streaming import (
    ArgumentMode,
    FinishReason,
    StreamChunk,
    ToolCall,
    ToolCallFragment,
)
from mcpbridge.tools import StaticToolCollaborator


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------

class ScriptedProvider(ModelProvider):
    """Provider that replays pre-queued rounds. No network calls.

    ``rounds`` holds one list of chunks per streamed round; ``completions``
    one :class:`Completion` per non-streamed round.
    """

    def __init__(
        self,
        family: ProviderFamily = ProviderFamily.CLAUDE,
        argument_mode: ArgumentMode = ArgumentMode.STRUCTURED,
        tool_use_on_presence: bool = False,
        streaming: bool = True,
    ):
        super().__init__(ProviderConfig(name="scripted", api_key="test-key"))
        self.family = family
        self.argument_mode = argument_mode
        self.tool_use_on_presence = tool_use_on_presence
        self.streaming = streaming
        self.default_model = "scripted-model"
        self.rounds: list[list[StreamChunk]] = []
        self.completions: list[Completion] = []
        self.call_log: list[dict] = []

    @property
    def capabilities(self):
        return ProviderCapabilities(streaming=self.streaming)

    async def complete(self, messages, tools=None, model=None, max_tokens=4096):
        self.call_log.append({
            "messages": copy.deepcopy(messages), "tools": tools,
            "model": model, "max_tokens": max_tokens,
        })
        return self.completions.pop(0)

    async def stream(self, messages, tools=None, model=None, max_tokens=4096):
        self.call_log.append({"messages": copy.deepcopy(messages), "tools": tools})
        for chunk in self.rounds.pop(0):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


def openai_style_provider(**kwargs) -> ScriptedProvider:
    return ScriptedProvider(
        family=ProviderFamily.OPENAI,
        argument_mode=ArgumentMode.STRING,
        tool_use_on_presence=True,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Chunk builders
# ---------------------------------------------------------------------------

def text_round(*parts: str) -> list[StreamChunk]:
    """A streamed round of plain text ending with ``stop``."""
    return [StreamChunk(content=p) for p in parts] + [
        StreamChunk(finish_reason=FinishReason.STOP),
    ]


def tool_round(
    name: str, arguments: dict, call_id: str = "call_1", *text: str,
) -> list[StreamChunk]:
    """A streamed round that requests one tool with structured arguments."""
    return [StreamChunk(content=t) for t in text] + [
        StreamChunk(tool_calls=[ToolCallFragment(call_id=call_id, name=name)]),
        StreamChunk(tool_calls=[ToolCallFragment(call_id=call_id, arguments=arguments)]),
        StreamChunk(finish_reason=FinishReason.TOOL_CALLS),
    ]


def tool_completion(name: str, arguments: dict, call_id: str = "call_1") -> Completion:
    return Completion(
        finish_reason=FinishReason.TOOL_CALLS,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class RecordingTools(StaticToolCollaborator):
    """StaticToolCollaborator that records every execution."""

    def __init__(self, functions=None):
        super().__init__(functions)
        self.calls: list[tuple[str, dict]] = []

    async def execute_tool(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        return await super().execute_tool(name, arguments)


def format_code(code: str, language: str = "typescript"):
    """Format code."""
    return f"formatted {language}: {code.strip()}"


def echo(text: str):
    """Echo text back."""
    return text


def explode():
    """Always fails."""
    raise RuntimeError("boom")


@pytest.fixture
def scripted_provider():
    return ScriptedProvider()


@pytest.fixture
def recording_tools():
    return RecordingTools([format_code, echo, explode])


@pytest.fixture
def make_registry():
    def _make(*providers: tuple[str, ModelProvider]) -> ProviderRegistry:
        registry = ProviderRegistry()
        for name, provider in providers:
            registry.add_instance(name, provider)
        return registry
    return _make
