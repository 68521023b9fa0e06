from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from mcpbridge.streaming import ToolArguments


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class ToolCallRecord(BaseModel):
    """A tool call as stored in conversation history."""

    id: str
    name: str
    arguments: ToolArguments = Field(default_factory=dict)


class Message(BaseModel):
    role: MessageRole
    content: str | list[dict[str, Any]] = ""

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @property
    def text(self) -> str:
        """Plain-text view of the content."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            block.get("text", "") for block in self.content
            if block.get("type") == "text"
        )


class AssistantMessage(Message):
    role: MessageRole = MessageRole.ASSISTANT
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)


class ToolResultMessage(Message):
    """A ``tool`` role result, the shape the OpenAI family expects."""

    role: MessageRole = MessageRole.TOOL
    tool_call_id: str
    is_error: bool = False


class ToolResultBlock(BaseModel):
    tool_use_id: str
    content: str
    is_error: bool = False

    def to_block(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


class UserToolResultsMessage(Message):
    """``tool_result`` blocks carried in a ``user`` message (Claude family)."""

    role: MessageRole = MessageRole.USER
    results: list[ToolResultBlock] = Field(default_factory=list, exclude=True)

    def model_post_init(self, __context: Any) -> None:
        self.content = [r.to_block() for r in self.results]
