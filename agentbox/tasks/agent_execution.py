"""Agent execution Celery tasks."""

import logging
from uuid import UUID

from sqlalchemy.exc import OperationalError

from agentbox.celery_app import app
from agentbox.services.agent_execution import AgentExecutionService
from agentbox.services.task import TaskService

logger = logging.getLogger(__name__)


def _mark_error(task, task_uuid: UUID, exc: Exception) -> None:
    """On the final retry, record the failure and release the sandbox."""
    if task.request.retries < task.max_retries:
        return
    try:
        failed = TaskService.update_task_status(task_uuid, "error", error=f"Error: {exc!s}")
        AgentExecutionService.release_sandbox(failed)
    except Exception as e:
        logger.error(f"Could not mark task {task_uuid} as error: {e}")


@app.task(
    bind=True,
    name="agentbox.tasks.agent_execution.execute_agent_task",
    autoretry_for=(OperationalError,),
    max_retries=3,
    retry_backoff=5,
    retry_jitter=True,
)
def execute_agent_task(self, task_id: str):
    """Execute an agent task in a sandbox.

    This is a thin Celery wrapper around AgentExecutionService.

    Args:
        task_id: UUID of the task to execute
    """
    task_uuid = UUID(task_id)

    try:
        return AgentExecutionService.execute_task(task_uuid)
    except OperationalError as exc:
        logger.error(f"Database error executing task {task_id}: {exc}")
        _mark_error(self, task_uuid, exc)
        raise


@app.task(
    bind=True,
    name="agentbox.tasks.agent_execution.continue_agent_task",
    autoretry_for=(OperationalError,),
    max_retries=3,
    retry_backoff=5,
    retry_jitter=True,
)
def continue_agent_task(self, task_id: str, prompt: str):
    """Run a follow-up message on an existing task.

    Args:
        task_id: UUID of the task to continue
        prompt: Follow-up instruction
    """
    task_uuid = UUID(task_id)

    try:
        return AgentExecutionService.continue_task(task_uuid, prompt)
    except OperationalError as exc:
        logger.error(f"Database error continuing task {task_id}: {exc}")
        _mark_error(self, task_uuid, exc)
        raise
