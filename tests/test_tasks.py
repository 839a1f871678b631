"""Tests for the Celery task wrappers."""

from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from agentbox.services.sandbox_registry import sandbox_registry
from agentbox.services.task import TaskService
from agentbox.tasks.agent_execution import _mark_error
from tests.conftest import FakeSandbox, create_test_task


def celery_task(retries: int) -> SimpleNamespace:
    return SimpleNamespace(request=SimpleNamespace(retries=retries), max_retries=3)


def processing_task(sandbox: FakeSandbox):
    task = create_test_task()
    TaskService.update_task_status(task.id, "processing")
    TaskService.update_task(task.id, sandbox_id=sandbox.mock.sandbox_id)
    sandbox_registry.register(task.id, sandbox.mock)
    return task


def test_final_retry_marks_error_and_releases_sandbox():
    sandbox = FakeSandbox()
    task = processing_task(sandbox)
    exc = OperationalError("UPDATE tasks", {}, Exception("connection lost"))

    _mark_error(celery_task(retries=3), task.id, exc)

    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "error"
    assert "connection lost" in updated.error
    sandbox.mock.kill.assert_called_once()
    assert sandbox_registry.get(task.id) is None


def test_earlier_retry_keeps_task_and_sandbox():
    sandbox = FakeSandbox()
    task = processing_task(sandbox)
    exc = OperationalError("UPDATE tasks", {}, Exception("connection lost"))

    _mark_error(celery_task(retries=1), task.id, exc)

    assert TaskService.get_task_by_id(task.id).status == "processing"
    sandbox.mock.kill.assert_not_called()
    assert sandbox_registry.get(task.id) is sandbox.mock
