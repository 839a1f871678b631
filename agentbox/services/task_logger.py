"""User-visible task logging."""

import logging
from uuid import UUID

from agentbox.core.redaction import redact_sensitive_info
from agentbox.services.task import TaskService

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "command": logging.INFO,
    "success": logging.INFO,
    "error": logging.ERROR,
}


class TaskLogger:
    """Writes redacted progress entries for a task.

    Entries are persisted as TaskLog rows and mirrored to the operator log.
    Without a task id, entries only go to the operator log.
    """

    def __init__(self, task_id: UUID | None = None):
        self.task_id = task_id

    def _log(self, level: str, message: str) -> None:
        redacted = redact_sensitive_info(message)
        prefix = f"[task {self.task_id}] " if self.task_id else ""
        logger.log(_LEVELS[level], f"{prefix}{redacted}")

        if self.task_id is None:
            return
        try:
            TaskService.add_task_log(self.task_id, level, redacted)
        except Exception as e:
            # Never let log persistence interrupt the task
            logger.warning(f"Failed to persist task log for {self.task_id}: {e}")

    def info(self, message: str) -> None:
        self._log("info", message)

    def command(self, message: str) -> None:
        self._log("command", f"$ {message}")

    def error(self, message: str) -> None:
        self._log("error", message)

    def success(self, message: str) -> None:
        self._log("success", message)
