from mcpbridge.chat import ChatBridge
from mcpbridge.config import Settings, build_registry, configure_logging
from mcpbridge.elicitation import ElicitationBroker
from mcpbridge.errors import LLMError, ToolExecutionError
from mcpbridge.instrumentation import instrument, uninstrument
from mcpbridge.registry import ProviderFactory, ProviderRegistry
from mcpbridge.sampling import SamplingHandler
from mcpbridge.schemas import TaskResult, TaskStatus
from mcpbridge.streaming import StreamChunk, ToolCall, ToolCallAccumulator
from mcpbridge.tasks import Task, TaskManager

__all__ = [
    "ChatBridge",
    "ElicitationBroker",
    "LLMError",
    "ProviderFactory",
    "ProviderRegistry",
    "SamplingHandler",
    "Settings",
    "StreamChunk",
    "Task",
    "TaskManager",
    "TaskResult",
    "TaskStatus",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolExecutionError",
    "build_registry",
    "configure_logging",
    "instrument",
    "uninstrument",
]
