"""In-memory tracking of long-running operations.

A :class:`TaskManager` owns every :class:`Task` it creates plus an
optional progress-token mapping.  A token's presence in that mapping is
the only cancellation check: once a task reaches a terminal state its
token is released and later progress notifications for it are dropped.
"""

from __future__ import annotations

import itertools
import logging
import secrets
import string
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from mcpbridge.schemas import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ProgressNotification,
    ProgressParams,
    ProgressToken,
    TaskResult,
    TaskStatus,
)

logger = logging.getLogger(__name__)

NotificationSink = Callable[[dict[str, Any]], Awaitable[None]]

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_task_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"task-{int(time.time() * 1000)}-{suffix}"


@dataclass
class Task:
    """A tracked long-running operation.

    ``result`` is only meaningful when ``status`` is ``completed`` and
    ``error`` only when it is ``failed``.
    """

    id: str
    title: str
    status: TaskStatus = TaskStatus.WORKING
    progress: int = 0
    message: str | None = None
    result: Any = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    # Tie-breaker for tasks touched within the same clock tick.
    revision: int = field(default=0, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskManager:
    """Creates, tracks and reports progress for long-running operations.

    Lookups on unknown task ids are silent no-ops so late updates racing
    with cleanup never raise.  Terminal tasks are kept for inspection
    until more than ``max_history_size`` of them exist, at which point
    the least recently updated ones are dropped.

    Args:
        send_notification: Async callable receiving the
            ``notifications/progress`` payload.  Failures are logged and
            swallowed.
        max_history_size: Number of terminal tasks to retain.

    Example::

        manager = TaskManager(send_notification=session.send_notification)
        task = manager.create_task("Export", progress_token="tok-1")
        await manager.update_progress(task.id, "tok-1", 50, "Halfway")
        manager.complete_task(task.id, {"rows": 120})
    """

    def __init__(
        self,
        send_notification: NotificationSink | None = None,
        max_history_size: int = 100,
    ):
        self.send_notification = send_notification
        self.max_history_size = max_history_size
        self._tasks: dict[str, Task] = {}
        self._tokens: dict[ProgressToken, str] = {}
        self._revisions = itertools.count(1)

    def create_task(
        self, title: str, progress_token: ProgressToken | None = None,
    ) -> Task:
        task = Task(id=_new_task_id(), title=title)
        task.updated_at = task.created_at
        task.revision = next(self._revisions)
        self._tasks[task.id] = task
        if progress_token is not None:
            self._tokens[progress_token] = task.id
        logger.debug(f"Created task {task.id} ({title!r})")
        return task

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_active_tasks(self) -> list[Task]:
        return [t for t in self._tasks.values() if t.status in ACTIVE_STATUSES]

    def get_task_id_by_token(self, progress_token: ProgressToken) -> str | None:
        return self._tokens.get(progress_token)

    def is_token_active(self, progress_token: ProgressToken) -> bool:
        return progress_token in self._tokens

    async def update_progress(
        self,
        task_id: str,
        progress_token: ProgressToken | None,
        progress: int | float,
        message: str | None = None,
    ) -> None:
        """Record progress and notify the sink when the token is live."""
        task = self._live_task(task_id)
        if task is None:
            return

        task.progress = int(max(0, min(100, progress)))
        task.message = message
        self._touch(task)

        if (
            progress_token is None
            or self.send_notification is None
            or not self.is_token_active(progress_token)
        ):
            return

        notification = ProgressNotification(params=ProgressParams(
            progress_token=progress_token,
            progress=task.progress,
            message=message or task.title,
        ))
        try:
            await self.send_notification(notification.model_dump(by_alias=True))
        except Exception as e:
            logger.error(f"Failed to send progress notification for {task_id}: {e}")

    def complete_task(self, task_id: str, result: Any = None) -> None:
        task = self._live_task(task_id)
        if task is None:
            return
        task.status = TaskStatus.COMPLETED
        task.progress = 100
        task.result = result
        self._finish(task)

    def fail_task(self, task_id: str, error: str) -> None:
        task = self._live_task(task_id)
        if task is None:
            return
        task.status = TaskStatus.FAILED
        task.error = error
        self._finish(task)

    def cancel_task(self, task_id: str) -> None:
        task = self._live_task(task_id)
        if task is None:
            return
        task.status = TaskStatus.CANCELLED
        self._finish(task)

    def cancel_by_token(self, progress_token: ProgressToken) -> bool:
        """Cancel the task bound to *progress_token*, if any."""
        task_id = self._tokens.get(progress_token)
        if task_id is None:
            return False
        self.cancel_task(task_id)
        return True

    def set_input_required(self, task_id: str, message: str | None = None) -> None:
        task = self._live_task(task_id)
        if task is None:
            return
        task.status = TaskStatus.INPUT_REQUIRED
        task.message = message
        self._touch(task)

    def resume_task(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None or task.status is not TaskStatus.INPUT_REQUIRED:
            return
        task.status = TaskStatus.WORKING
        self._touch(task)

    def to_task_result(self, task_id: str) -> TaskResult | None:
        """Project a task into a validated :class:`TaskResult`.

        Raises:
            pydantic.ValidationError: If the task's state does not fit the
                boundary schema.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return TaskResult.model_validate({
            "taskId": task.id,
            "status": task.status,
            "progress": task.progress,
            "message": task.message,
            "result": task.result,
            "error": task.error,
        })

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug(f"Ignoring update for unknown task {task_id}")
            return None
        if task.is_terminal:
            logger.debug(f"Ignoring update for {task.status.value} task {task_id}")
            return None
        return task

    def _touch(self, task: Task) -> None:
        task.updated_at = _utcnow()
        task.revision = next(self._revisions)

    def _finish(self, task: Task) -> None:
        self._touch(task)
        self._release_token(task.id)
        self._prune_history()
        logger.info(f"Task {task.id} {task.status.value}")

    def _release_token(self, task_id: str) -> None:
        for token, bound_id in self._tokens.items():
            if bound_id == task_id:
                del self._tokens[token]
                break

    def _prune_history(self) -> None:
        finished = sorted(
            (t for t in self._tasks.values() if t.is_terminal),
            key=lambda t: (t.updated_at, t.revision),
            reverse=True,
        )
        for stale in finished[self.max_history_size:]:
            del self._tasks[stale.id]
            logger.debug(f"Pruned task {stale.id} from history")
