"""Tool listing and execution collaborators.

The chat bridge never talks to tools directly.  It asks a
:class:`ToolCollaborator` for descriptors and hands it calls to run.
:class:`MCPToolCollaborator` forwards to a remote MCP server;
:class:`StaticToolCollaborator` wraps plain Python callables.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from contextlib import AsyncExitStack
from typing import Any, Protocol

from mcp import ClientSession, types
from mcp.client.streamable_http import streamablehttp_client
from pydantic import BaseModel, Field

from mcpbridge.elicitation import ElicitationBroker
from mcpbridge.errors import ToolExecutionError
from mcpbridge.provider import ToolDefinition
from mcpbridge.registry import ProviderRegistry
from mcpbridge.sampling import SamplingHandler
from mcpbridge.streaming import ToolArguments

logger = logging.getLogger(__name__)


class ToolDescriptor(BaseModel):
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.input_schema,
        )


class ToolExecutionResult(BaseModel):
    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str, is_error: bool = False) -> "ToolExecutionResult":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)

    @property
    def text(self) -> str:
        parts = []
        for block in self.content:
            if block.get("type") == "text":
                parts.append(block.get("text", ""))
            else:
                parts.append(json.dumps(block))
        return "\n".join(parts)


class ToolCollaborator(Protocol):
    async def list_tools(self) -> list[ToolDescriptor]:
        ...

    async def execute_tool(self, name: str, arguments: ToolArguments) -> ToolExecutionResult:
        ...


class MCPToolCollaborator:
    """Tools served by a remote MCP server over streamable HTTP.

    Usable as an async context manager::

        async with MCPToolCollaborator("http://localhost:3001/mcp") as tools:
            descriptors = await tools.list_tools()

    Until :meth:`connect` succeeds the collaborator reports no tools and
    answers calls with a non-error "not available" result.

    When a *registry* is given the session serves the server's sampling
    requests with it; when a *broker* is given, elicitation requests are
    parked on it for a UI to answer.

    Args:
        url: MCP endpoint URL.
        client_name: Name announced during initialisation.
        registry: Providers used to answer sampling requests.
        broker: Broker used to answer elicitation requests.
    """

    def __init__(
        self,
        url: str,
        client_name: str = "mcpbridge",
        registry: ProviderRegistry | None = None,
        broker: ElicitationBroker | None = None,
    ):
        self.url = url
        self.client_name = client_name
        self.sampling_handler = SamplingHandler(registry) if registry is not None else None
        self.broker = broker
        self.session: ClientSession | None = None
        self._exit_stack = AsyncExitStack()

    @property
    def connected(self) -> bool:
        return self.session is not None

    async def connect(self) -> None:
        logger.info(f"Connecting to MCP server at {self.url}")
        read, write, _ = await self._exit_stack.enter_async_context(
            streamablehttp_client(self.url)
        )
        session = await self._exit_stack.enter_async_context(ClientSession(
            read, write,
            sampling_callback=self.sampling_handler,
            elicitation_callback=self.broker.elicitation_callback if self.broker else None,
            client_info=types.Implementation(name=self.client_name, version="0.1.0"),
        ))
        await session.initialize()
        self.session = session
        logger.info(f"Connected to MCP server at {self.url}")

    async def close(self) -> None:
        await self._exit_stack.aclose()
        self.session = None

    async def __aenter__(self) -> "MCPToolCollaborator":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def list_tools(self) -> list[ToolDescriptor]:
        if self.session is None:
            logger.info("MCP client not connected, returning empty tools list")
            return []
        try:
            response = await self.session.list_tools()
        except Exception as e:
            logger.error(f"Failed to list tools from {self.url}: {e}")
            return []
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema,
            )
            for tool in response.tools
        ]

    async def execute_tool(self, name: str, arguments: ToolArguments) -> ToolExecutionResult:
        if self.session is None:
            return ToolExecutionResult.from_text(
                "Tool execution not available - MCP servers not connected"
            )
        logger.info(f"Executing tool {name} with {arguments}")
        try:
            response = await self.session.call_tool(name, arguments=arguments)
        except Exception as e:
            raise ToolExecutionError(name, f"Tool execution failed: {e}") from e
        return ToolExecutionResult(
            content=[block.model_dump(exclude_none=True) for block in response.content],
            is_error=bool(response.isError),
        )


_JSON_TYPES = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "NoneType": "null",
    "dict": "object",
    "list": "array",
    "tuple": "array",
}


def _json_type(annotation: Any) -> str:
    name = getattr(annotation, "__name__", str(annotation))
    return _JSON_TYPES.get(name, "string")


def describe_function(func: Callable) -> ToolDescriptor:
    """Build a descriptor from a function's signature and docstring."""
    signature = inspect.signature(func)
    properties = {}
    required = []
    for param_name, param in signature.parameters.items():
        properties[param_name] = {"type": _json_type(param.annotation)}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    return ToolDescriptor(
        name=func.__name__,
        description=inspect.getdoc(func) or "",
        input_schema={
            "type": "object",
            "properties": properties,
            "required": required,
        },
    )


class StaticToolCollaborator:
    """In-process tools backed by plain sync or async callables."""

    def __init__(self, functions: list[Callable] | None = None):
        self._functions: dict[str, Callable] = {}
        for func in functions or []:
            self.register(func)

    def register(self, func: Callable) -> Callable:
        self._functions[func.__name__] = func
        return func

    async def list_tools(self) -> list[ToolDescriptor]:
        return [describe_function(f) for f in self._functions.values()]

    async def execute_tool(self, name: str, arguments: ToolArguments) -> ToolExecutionResult:
        func = self._functions.get(name)
        if func is None:
            raise ToolExecutionError(name, f"Tool '{name}' not found")
        try:
            output = func(**arguments)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            raise ToolExecutionError(name, f"Error calling {name}: {e}") from e
        if isinstance(output, ToolExecutionResult):
            return output
        text = output if isinstance(output, str) else json.dumps(output)
        return ToolExecutionResult.from_text(text)
