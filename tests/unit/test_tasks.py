"""Unit tests for TaskManager."""

import re
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from mcpbridge.schemas import TaskResult, TaskStatus
from mcpbridge.tasks import TaskManager


class TestCreateAndLookup:
    def test_create_initial_state(self):
        manager = TaskManager()
        task = manager.create_task("Export")

        assert re.fullmatch(r"task-\d+-[a-z0-9]{7}", task.id)
        assert task.status is TaskStatus.WORKING
        assert task.progress == 0
        assert task.created_at == task.updated_at
        assert manager.get_task(task.id) is task

    def test_ids_are_unique(self):
        manager = TaskManager()
        ids = {manager.create_task("t").id for _ in range(50)}
        assert len(ids) == 50

    def test_unknown_task_is_none(self):
        assert TaskManager().get_task("missing") is None

    def test_token_registered(self):
        manager = TaskManager()
        task = manager.create_task("Export", progress_token="tok-1")

        assert manager.get_task_id_by_token("tok-1") == task.id
        assert manager.is_token_active("tok-1")
        assert not manager.is_token_active("tok-2")

    def test_numeric_token(self):
        manager = TaskManager()
        task = manager.create_task("Export", progress_token=7)
        assert manager.get_task_id_by_token(7) == task.id

    def test_active_tasks(self):
        manager = TaskManager()
        a = manager.create_task("a")
        b = manager.create_task("b")
        c = manager.create_task("c")
        manager.set_input_required(b.id)
        manager.complete_task(c.id)

        assert {t.id for t in manager.get_active_tasks()} == {a.id, b.id}


class TestProgress:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("value,expected", [
        (-5, 0), (0, 0), (42, 42), (100, 100), (150, 100), (33.7, 33),
    ])
    async def test_progress_clamped(self, value, expected):
        manager = TaskManager()
        task = manager.create_task("x", "tok")
        await manager.update_progress(task.id, "tok", value, "msg")

        assert manager.get_task(task.id).progress == expected
        assert manager.get_task(task.id).message == "msg"

    @pytest.mark.asyncio
    async def test_update_refreshes_timestamp(self):
        manager = TaskManager()
        task = manager.create_task("x")
        before = task.updated_at
        await manager.update_progress(task.id, None, 10)
        assert task.updated_at >= before
        assert task.revision > 1

    @pytest.mark.asyncio
    async def test_notification_payload(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        task = manager.create_task("Export", "tok-A")

        await manager.update_progress(task.id, "tok-A", 150, "overrun")

        sink.assert_awaited_once_with({
            "method": "notifications/progress",
            "params": {
                "progressToken": "tok-A",
                "progress": 100,
                "total": 100,
                "message": "overrun",
            },
        })

    @pytest.mark.asyncio
    async def test_notification_message_falls_back_to_title(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        task = manager.create_task("Export", 3)

        await manager.update_progress(task.id, 3, 10)

        payload = sink.await_args.args[0]
        assert payload["params"]["message"] == "Export"
        assert payload["params"]["progressToken"] == 3

    @pytest.mark.asyncio
    async def test_no_notification_without_token(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        task = manager.create_task("Export", "tok")

        await manager.update_progress(task.id, None, 10)
        sink.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_notification_for_unregistered_token(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        task = manager.create_task("Export")

        await manager.update_progress(task.id, "never-registered", 10)

        sink.assert_not_awaited()
        assert task.progress == 10

    @pytest.mark.asyncio
    async def test_no_notification_after_token_released(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        first = manager.create_task("first", "tok")
        second = manager.create_task("second")
        manager.cancel_task(first.id)

        await manager.update_progress(second.id, "tok", 10)
        sink.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notification_failure_is_swallowed(self, caplog):
        sink = AsyncMock(side_effect=ConnectionError("transport closed"))
        manager = TaskManager(send_notification=sink)
        task = manager.create_task("Export", "tok")

        await manager.update_progress(task.id, "tok", 60, "working")

        assert task.status is TaskStatus.WORKING
        assert task.progress == 60
        assert "transport closed" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_task_is_noop(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        await manager.update_progress("missing", "tok", 50)
        sink.assert_not_awaited()


class TestTransitions:
    def test_complete(self):
        manager = TaskManager()
        task = manager.create_task("X", "tok1")
        manager.complete_task(task.id, {"rows": 3})

        assert task.status is TaskStatus.COMPLETED
        assert task.progress == 100
        assert task.result == {"rows": 3}
        assert not manager.is_token_active("tok1")

    def test_fail(self):
        manager = TaskManager()
        task = manager.create_task("X", "tok1")
        manager.fail_task(task.id, "disk full")

        assert task.status is TaskStatus.FAILED
        assert task.error == "disk full"
        assert not manager.is_token_active("tok1")

    def test_cancel(self):
        manager = TaskManager()
        task = manager.create_task("X", "tok1")
        manager.cancel_task(task.id)

        assert task.status is TaskStatus.CANCELLED
        assert manager.get_task_id_by_token("tok1") is None

    def test_cancel_by_token(self):
        manager = TaskManager()
        task = manager.create_task("X", "tok1")

        assert manager.cancel_by_token("tok1") is True
        assert task.status is TaskStatus.CANCELLED
        assert manager.cancel_by_token("tok1") is False

    def test_only_own_token_released(self):
        manager = TaskManager()
        a = manager.create_task("a", "tok-a")
        manager.create_task("b", "tok-b")
        manager.complete_task(a.id)

        assert not manager.is_token_active("tok-a")
        assert manager.is_token_active("tok-b")

    def test_input_required_and_resume(self):
        manager = TaskManager()
        task = manager.create_task("X")
        manager.set_input_required(task.id, "Which branch?")

        assert task.status is TaskStatus.INPUT_REQUIRED
        assert task.message == "Which branch?"

        manager.resume_task(task.id)
        assert task.status is TaskStatus.WORKING

    def test_resume_outside_input_required_is_noop(self):
        manager = TaskManager()
        task = manager.create_task("X")
        stamp = task.updated_at
        manager.resume_task(task.id)
        assert task.status is TaskStatus.WORKING
        assert task.updated_at == stamp

        manager.complete_task(task.id)
        manager.resume_task(task.id)
        assert task.status is TaskStatus.COMPLETED

    def test_complete_from_input_required(self):
        manager = TaskManager()
        task = manager.create_task("X")
        manager.set_input_required(task.id)
        manager.complete_task(task.id, "ok")
        assert task.status is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self):
        manager = TaskManager()
        task = manager.create_task("X")
        manager.fail_task(task.id, "disk full")

        manager.complete_task(task.id, "late")
        manager.cancel_task(task.id)
        manager.set_input_required(task.id)
        await manager.update_progress(task.id, None, 5)

        assert task.status is TaskStatus.FAILED
        assert task.error == "disk full"
        assert task.result is None
        assert task.progress == 0

    @pytest.mark.asyncio
    async def test_completed_progress_stays_full(self):
        sink = AsyncMock()
        manager = TaskManager(send_notification=sink)
        task = manager.create_task("X", progress_token="tok")
        manager.complete_task(task.id, "ok")

        await manager.update_progress(task.id, "tok", 40, "late")

        assert task.progress == 100
        assert task.message != "late"
        sink.assert_not_awaited()

    def test_unknown_ids_are_noops(self):
        manager = TaskManager()
        manager.complete_task("missing")
        manager.fail_task("missing", "x")
        manager.cancel_task("missing")
        manager.set_input_required("missing")
        manager.resume_task("missing")
        assert manager.get_active_tasks() == []


class TestHistory:
    def test_prunes_oldest_terminal_tasks(self):
        manager = TaskManager(max_history_size=3)
        tasks = [manager.create_task(f"t{i}") for i in range(5)]
        for task in tasks:
            manager.complete_task(task.id)

        retained = [t for t in tasks if manager.get_task(t.id) is not None]
        assert retained == tasks[2:]

    def test_active_tasks_never_pruned(self):
        manager = TaskManager(max_history_size=1)
        active = [manager.create_task(f"a{i}") for i in range(10)]
        done = [manager.create_task(f"d{i}") for i in range(4)]
        for task in done:
            manager.cancel_task(task.id)

        assert all(manager.get_task(t.id) is not None for t in active)
        assert sum(manager.get_task(t.id) is not None for t in done) == 1
        assert manager.get_task(done[-1].id) is not None

    def test_zero_history(self):
        manager = TaskManager(max_history_size=0)
        task = manager.create_task("x")
        manager.complete_task(task.id)
        assert manager.get_task(task.id) is None
        assert manager.to_task_result(task.id) is None


class TestTaskResult:
    def test_projection(self):
        manager = TaskManager()
        task = manager.create_task("X")
        manager.complete_task(task.id, [1, 2])

        result = manager.to_task_result(task.id)

        assert isinstance(result, TaskResult)
        assert result.task_id == task.id
        assert result.status is TaskStatus.COMPLETED
        assert result.progress == 100
        assert result.result == [1, 2]
        assert result.model_dump(by_alias=True, exclude_none=True) == {
            "taskId": task.id,
            "status": "completed",
            "progress": 100,
            "result": [1, 2],
        }

    def test_failed_projection(self):
        manager = TaskManager()
        task = manager.create_task("X")
        manager.fail_task(task.id, "disk full")

        dumped = manager.to_task_result(task.id).model_dump(by_alias=True)
        assert dumped["status"] == "failed"
        assert dumped["error"] == "disk full"

    def test_unknown_is_none(self):
        assert TaskManager().to_task_result("missing") is None

    def test_corrupt_state_raises_validation_error(self):
        manager = TaskManager()
        task = manager.create_task("X")
        task.progress = 250

        with pytest.raises(ValidationError):
            manager.to_task_result(task.id)


@pytest.mark.asyncio
async def test_export_failure_scenario():
    sink = AsyncMock()
    manager = TaskManager(send_notification=sink)
    task = manager.create_task("Export", "tok-A")

    await manager.update_progress(task.id, "tok-A", -5, "start")
    assert manager.get_task(task.id).progress == 0

    await manager.update_progress(task.id, "tok-A", 150, "overrun")
    assert manager.get_task(task.id).progress == 100

    manager.fail_task(task.id, "disk full")
    assert manager.get_task(task.id).status is TaskStatus.FAILED
    assert manager.get_task(task.id).error == "disk full"
    assert manager.is_token_active("tok-A") is False
    assert sink.await_count == 2
