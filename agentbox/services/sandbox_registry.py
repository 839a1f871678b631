"""In-process registry of live sandboxes for cancellation."""

import logging
import threading
from dataclasses import dataclass

from e2b_code_interpreter import Sandbox

from agentbox.core.config import settings
from agentbox.services.commands import CommandService

logger = logging.getLogger(__name__)

# Long-running processes started by dev servers and installs
CHILD_PROCESSES = ("node", "python", "npm", "yarn", "pnpm")


@dataclass
class KillResult:
    success: bool
    message: str


def stop_sandbox(sandbox: Sandbox) -> None:
    """Stop known child processes, then tear the sandbox down.

    Best effort: failures are logged, never raised.
    """
    for process in CHILD_PROCESSES:
        CommandService.run_command(sandbox, "pkill", ["-f", process], timeout=10)

    try:
        sandbox.kill()
        logger.info(f"Sandbox {sandbox.sandbox_id} killed")
    except Exception as e:
        logger.error(f"Error killing sandbox: {e}")


class SandboxRegistry:
    """Maps task ids to the sandboxes running in this process.

    Not durable: a kept-alive sandbox is found again through the task's
    persisted ``sandbox_id``. Insertion order is kept so the oldest entry
    is known.
    """

    def __init__(self):
        self._sandboxes: dict[str, Sandbox] = {}
        self._lock = threading.Lock()

    def register(self, task_id, sandbox: Sandbox) -> None:
        with self._lock:
            self._sandboxes[str(task_id)] = sandbox
        logger.info(f"Registered sandbox for task {task_id}")

    def unregister(self, task_id) -> None:
        with self._lock:
            self._sandboxes.pop(str(task_id), None)

    def get(self, task_id) -> Sandbox | None:
        with self._lock:
            return self._sandboxes.get(str(task_id))

    def active_count(self) -> int:
        with self._lock:
            return len(self._sandboxes)

    def clear(self) -> None:
        with self._lock:
            self._sandboxes.clear()

    def kill(self, task_id, allow_fallback: bool | None = None) -> KillResult:
        """Stop the sandbox registered for ``task_id``.

        With ``allow_fallback`` (default from SANDBOX_KILL_FALLBACK) and no
        exact match, the oldest active sandbox is stopped instead.
        """
        if allow_fallback is None:
            allow_fallback = settings.sandbox_kill_fallback

        key = str(task_id)
        with self._lock:
            sandbox = self._sandboxes.pop(key, None)
            fallback_key = None
            if sandbox is None and allow_fallback and self._sandboxes:
                fallback_key = next(iter(self._sandboxes))
                sandbox = self._sandboxes.pop(fallback_key)

        if sandbox is None:
            return KillResult(success=False, message="No active sandbox found for this task")

        stop_sandbox(sandbox)
        if fallback_key is not None:
            logger.warning(
                f"No sandbox registered for task {task_id}, killed the one for task {fallback_key}"
            )
            return KillResult(
                success=True, message=f"Killed sandbox for task {fallback_key} (fallback)"
            )
        return KillResult(success=True, message=f"Killed sandbox for task {task_id}")


sandbox_registry = SandboxRegistry()
