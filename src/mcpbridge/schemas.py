"""Boundary records for task tracking and progress notifications.

These models are what crosses a process boundary (an MCP response or a
``notifications/progress`` message), so they are validated before being
handed out.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_serializer

ProgressToken = str | int

PROGRESS_METHOD = "notifications/progress"


class TaskStatus(Enum):
    WORKING = "working"
    INPUT_REQUIRED = "input_required"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({TaskStatus.WORKING, TaskStatus.INPUT_REQUIRED})
TERMINAL_STATUSES = frozenset({
    TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED,
})


class TaskResult(BaseModel):
    """Serializable projection of a task."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    task_id: str = Field(alias="taskId")
    status: TaskStatus
    progress: int | None = Field(default=None, ge=0, le=100)
    message: str | None = None
    result: Any | None = None
    error: str | None = None

    @field_serializer("status")
    def serialize_status(self, status: TaskStatus, _info) -> str:
        return status.value


class ProgressParams(BaseModel):
    model_config = {"populate_by_name": True}

    progress_token: ProgressToken = Field(alias="progressToken")
    progress: int = Field(ge=0, le=100)
    total: int = 100
    message: str | None = None


class ProgressNotification(BaseModel):
    method: Literal["notifications/progress"] = PROGRESS_METHOD
    params: ProgressParams
