"""Task service for business logic."""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlmodel import select

from agentbox.core.config import settings
from agentbox.core.database import get_session
from agentbox.core.errors import (
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from agentbox.models import Task, TaskLog, TaskMessage
from agentbox.models.task import AGENT_TYPES

logger = logging.getLogger(__name__)

# Allowed status changes. A task that never started may be stopped or fail
# directly; finished tasks only move again through reopen_task, which
# AgentExecutionService.continue_task uses for follow-up messages.
STATUS_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"processing", "stopped", "error"},
    "processing": {"completed", "error", "stopped"},
    "completed": set(),
    "error": set(),
    "stopped": set(),
}
TERMINAL_STATUSES = {"completed", "error", "stopped"}
MESSAGE_ROLES = ("user", "agent")


class TaskService:
    """Service for task-related business logic."""

    @staticmethod
    def create_task(
        prompt: str,
        repo_url: str,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        max_duration: int | None = None,
        keep_alive: bool = False,
        title: str | None = None,
        enqueue: bool = True,
    ) -> Task:
        """Create a new task and queue it for execution.

        Raises:
            ValidationError: If the prompt is empty or the agent is unknown
        """
        if not prompt.strip():
            raise ValidationError("Prompt is required")
        if selected_agent not in AGENT_TYPES:
            raise ValidationError(f"Unknown agent type: {selected_agent}")

        with get_session() as session:
            task = Task(
                prompt=prompt,
                title=title,
                repo_url=repo_url,
                selected_agent=selected_agent,
                selected_model=selected_model,
                install_dependencies=install_dependencies,
                max_duration=max_duration or settings.max_task_duration,
                keep_alive=keep_alive,
                status="pending",
            )
            session.add(task)
            session.commit()
            session.refresh(task)

        if enqueue:
            # Queue task for execution
            from agentbox.tasks import execute_agent_task

            execute_agent_task.delay(str(task.id))

        return task

    @staticmethod
    def get_task_by_id(task_id: UUID) -> Task:
        """Get task by ID."""
        with get_session() as session:
            statement = select(Task).where(Task.id == task_id)
            task = session.execute(statement).scalar_one_or_none()

            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            return task

    @staticmethod
    def list_tasks(limit: int = 100, offset: int = 0) -> tuple[list[Task], int]:
        """List all tasks with pagination, newest first."""
        with get_session() as session:
            count_statement = select(func.count()).select_from(Task)
            total = session.execute(count_statement).scalar()

            statement = (
                select(Task)
                .order_by(Task.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            tasks = session.execute(statement).scalars().all()

            return list(tasks), total

    @staticmethod
    def update_task(task_id: UUID, **fields: Any) -> Task:
        """Overwrite the given task fields.

        Status changes go through update_task_status so transitions are
        checked; passing ``status`` here is rejected.
        """
        if "status" in fields:
            raise ValidationError("Use update_task_status to change status")

        with get_session() as session:
            task = session.execute(
                select(Task).where(Task.id == task_id)
            ).scalar_one_or_none()
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            for name, value in fields.items():
                if not hasattr(task, name):
                    raise ValidationError(f"Unknown task field: {name}")
                setattr(task, name, value)
            task.updated_at = datetime.now(UTC)

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def update_task_status(
        task_id: UUID,
        status: str,
        error: str | None = None,
    ) -> Task:
        """Move a task to a new status.

        Raises:
            NotFoundError: If task not found
            InvalidStatusTransitionError: If the current status cannot reach ``status``
        """
        with get_session() as session:
            task = session.execute(
                select(Task).where(Task.id == task_id)
            ).scalar_one_or_none()
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            if task.status != status and status not in STATUS_TRANSITIONS.get(
                task.status, set()
            ):
                raise InvalidStatusTransitionError(
                    f"Cannot move task {task_id} from {task.status} to {status}"
                )

            now = datetime.now(UTC)
            task.status = status
            task.updated_at = now
            if error is not None:
                task.error = error
            if status in TERMINAL_STATUSES:
                task.completed_at = now

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def reopen_task(task_id: UUID) -> Task:
        """Move a finished task back to processing for a follow-up message."""
        with get_session() as session:
            task = session.execute(
                select(Task).where(Task.id == task_id)
            ).scalar_one_or_none()
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")
            if task.status not in TERMINAL_STATUSES:
                raise InvalidStatusTransitionError(
                    f"Task {task_id} is {task.status}, only finished tasks can continue"
                )

            task.status = "processing"
            task.error = None
            task.completed_at = None
            task.updated_at = datetime.now(UTC)

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def is_task_stopped(task_id: UUID) -> bool:
        """Cancellation predicate polled at workflow checkpoints."""
        try:
            return TaskService.get_task_by_id(task_id).status == "stopped"
        except NotFoundError:
            return True

    @staticmethod
    def stop_task(task_id: UUID) -> Task:
        """Request cancellation of a pending or running task."""
        return TaskService.update_task_status(task_id, "stopped")

    @staticmethod
    def insert_message(task_id: UUID, role: str, content: str) -> TaskMessage:
        """Append a message to a task."""
        if role not in MESSAGE_ROLES:
            raise ValidationError(f"Unknown message role: {role}")

        with get_session() as session:
            message = TaskMessage(task_id=task_id, role=role, content=content)
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    @staticmethod
    def update_message_content(message_id: UUID, content: str) -> None:
        """Overwrite the content of a message (last write wins)."""
        with get_session() as session:
            message = session.execute(
                select(TaskMessage).where(TaskMessage.id == message_id)
            ).scalar_one_or_none()
            if message is None:
                raise NotFoundError(f"Message with id {message_id} not found")

            message.content = content
            session.add(message)

    @staticmethod
    def get_task_messages(task_id: UUID) -> list[TaskMessage]:
        """Get all messages of a task in creation order."""
        TaskService.get_task_by_id(task_id)

        with get_session() as session:
            statement = (
                select(TaskMessage)
                .where(TaskMessage.task_id == task_id)
                .order_by(TaskMessage.created_at)
            )
            return list(session.execute(statement).scalars().all())

    @staticmethod
    def add_task_log(task_id: UUID, level: str, message: str) -> TaskLog:
        """Persist one user-visible log entry."""
        with get_session() as session:
            entry = TaskLog(task_id=task_id, level=level, message=message)
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    @staticmethod
    def get_task_logs(
        task_id: UUID, limit: int = 100, offset: int = 0
    ) -> tuple[list[TaskLog], int]:
        """Get logs for a task with pagination, oldest first.

        Args:
            task_id: UUID of the task
            limit: Maximum number of entries to return
            offset: Number of entries to skip

        Returns:
            Tuple of (logs, total_count)
        """
        TaskService.get_task_by_id(task_id)

        with get_session() as session:
            total = session.execute(
                select(func.count())
                .select_from(TaskLog)
                .where(TaskLog.task_id == task_id)
            ).scalar()

            statement = (
                select(TaskLog)
                .where(TaskLog.task_id == task_id)
                .order_by(TaskLog.created_at)
                .offset(offset)
                .limit(limit)
            )
            return list(session.execute(statement).scalars().all()), total
