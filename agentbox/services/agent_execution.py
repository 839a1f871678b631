"""Agent execution workflow: provision, dispatch, publish, release."""

import logging
from uuid import UUID

from e2b_code_interpreter import Sandbox
from sqlalchemy.exc import OperationalError

from agentbox.core.config import settings
from agentbox.core.errors import AgentExecutionError, SandboxError
from agentbox.core.redaction import redact_sensitive_info
from agentbox.models import Task
from agentbox.services.agents import AgentCredentials, AgentOptions, execute_agent_in_sandbox
from agentbox.services.connector import ConnectorService
from agentbox.services.git import GitService
from agentbox.services.port_detection import detect_port_from_repo
from agentbox.services.sandbox import SandboxConfig, SandboxService
from agentbox.services.sandbox_registry import KillResult, sandbox_registry
from agentbox.services.task import TaskService
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


def _stopped(task_id: UUID) -> dict[str, str]:
    return {"status": "stopped", "task_id": str(task_id)}


def _sandbox_timeout_minutes(task: Task) -> int:
    """Hard lifetime of the task's sandbox."""
    return min(task.max_duration, settings.sandbox_timeout_minutes)


class AgentExecutionService:
    """Service for agent execution business logic."""

    @staticmethod
    def execute_task(
        task_id: UUID, credentials: AgentCredentials | None = None
    ) -> dict[str, str | bool | None]:
        """Execute an agent task end to end.

        A task already in ``processing`` is a retried execution: the prompt is
        not recorded twice and the sandbox from the earlier attempt is
        reconnected when it is still alive.

        Args:
            task_id: UUID of the task to execute
            credentials: Secrets for this execution, defaults to the system keys

        Returns:
            Dict with the final status and, on success, branch and change info

        Raises:
            NotFoundError: If task not found
            OperationalError: If the task store is unreachable
        """
        task = TaskService.get_task_by_id(task_id)
        if task.status == "stopped":
            logger.info(f"Task {task_id} was stopped before it started")
            return _stopped(task_id)

        retry = task.status == "processing"
        if not retry:
            TaskService.update_task_status(task_id, "processing")

        messages = TaskService.get_task_messages(task_id)
        if not any(m.role == "user" and m.content == task.prompt for m in messages):
            TaskService.insert_message(task_id, "user", task.prompt)

        sandbox = None
        if retry and task.sandbox_id:
            logger.info(f"Retrying task {task_id}, reusing sandbox {task.sandbox_id}")
            sandbox = AgentExecutionService._reconnect(task)

        return AgentExecutionService._run(
            task, task.prompt, credentials or AgentCredentials.from_settings(), sandbox=sandbox
        )

    @staticmethod
    def continue_task(
        task_id: UUID, prompt: str, credentials: AgentCredentials | None = None
    ) -> dict[str, str | bool | None]:
        """Run a follow-up instruction on a finished task.

        A kept-alive sandbox is reconnected and the agent session resumed;
        otherwise a fresh sandbox is prepared on the task's branch.
        """
        task = TaskService.reopen_task(task_id)
        TaskService.insert_message(task_id, "user", prompt)

        sandbox = None
        if task.keep_alive and task.sandbox_id:
            sandbox = AgentExecutionService._reconnect(task)

        return AgentExecutionService._run(
            task, prompt, credentials or AgentCredentials.from_settings(), sandbox=sandbox
        )

    @staticmethod
    def stop_task(task_id: UUID) -> KillResult:
        """Mark a task stopped and tear down its sandbox."""
        task = TaskService.stop_task(task_id)
        return AgentExecutionService.release_sandbox(task)

    @staticmethod
    def release_sandbox(task: Task) -> KillResult:
        """Tear down a task's sandbox.

        The in-process registry is tried first; a sandbox from an earlier
        execution is found through the persisted sandbox id.
        """
        task_id = task.id
        result = sandbox_registry.kill(task_id)
        if result.success or not task.sandbox_id:
            return result

        try:
            sandbox = SandboxService.connect_sandbox(task.sandbox_id)
        except Exception as e:
            logger.info(f"Sandbox {task.sandbox_id} is not reachable: {e}")
            return result
        SandboxService.shutdown_sandbox(sandbox)
        return KillResult(success=True, message=f"Killed sandbox {task.sandbox_id}")

    @staticmethod
    def _reconnect(task: Task) -> Sandbox | None:
        try:
            sandbox = SandboxService.connect_sandbox(task.sandbox_id)
        except Exception as e:
            logger.warning(
                f"Could not reconnect to sandbox {task.sandbox_id} for task {task.id}: {e}"
            )
            return None
        sandbox_registry.register(task.id, sandbox)
        return sandbox

    @staticmethod
    def _release(task_id: UUID, sandbox: Sandbox) -> None:
        sandbox_registry.unregister(task_id)
        SandboxService.shutdown_sandbox(sandbox)

    @staticmethod
    def _provision(
        task: Task,
        credentials: AgentCredentials,
        task_logger: TaskLogger,
        is_cancelled,
    ) -> tuple[Sandbox | None, str | None]:
        """Prepare a sandbox; (None, None) when the task was cancelled.

        Raises:
            SandboxError: If the sandbox could not be prepared
        """
        port = detect_port_from_repo(task.repo_url, credentials.github_token)
        ports = [port, *(p for p in settings.sandbox_ports if p != port)]

        config = SandboxConfig(
            task_id=task.id,
            repo_url=task.repo_url,
            credentials=credentials,
            selected_agent=task.selected_agent,
            timeout_minutes=_sandbox_timeout_minutes(task),
            ports=ports,
            install_dependencies=task.install_dependencies,
            branch_name=task.branch_name,
            is_cancelled=is_cancelled,
        )
        result = SandboxService.create_sandbox(config, task_logger)
        if result.cancelled:
            return None, None
        if not result.success:
            raise SandboxError(result.error or "Failed to create sandbox")

        TaskService.update_task(
            task.id,
            sandbox_id=result.sandbox.sandbox_id,
            sandbox_url=result.domain,
            branch_name=result.branch_name,
        )
        return result.sandbox, result.branch_name

    @staticmethod
    def _run(
        task: Task,
        prompt: str,
        credentials: AgentCredentials,
        sandbox: Sandbox | None = None,
    ) -> dict[str, str | bool | None]:
        task_id = task.id
        task_logger = TaskLogger(task_id)
        resumed = sandbox is not None

        def is_cancelled() -> bool:
            return TaskService.is_task_stopped(task_id)

        try:
            if resumed:
                branch_name = task.branch_name
                task_logger.info(f"Reconnected to sandbox {task.sandbox_id}")
            else:
                sandbox, branch_name = AgentExecutionService._provision(
                    task, credentials, task_logger, is_cancelled
                )
                if sandbox is None:
                    return _stopped(task_id)

            connectors = ConnectorService.get_connected_configs()
            if connectors:
                task_logger.info(f"Using {len(connectors)} MCP connector(s)")

            # A retried execution keeps writing into its earlier agent message
            messages = TaskService.get_task_messages(task_id)
            if messages and messages[-1].role == "agent":
                message = messages[-1]
            else:
                message = TaskService.insert_message(task_id, "agent", "")
            options = AgentOptions(
                credentials=credentials,
                model=task.selected_model,
                connectors=connectors,
                is_resumed=resumed,
                session_id=task.agent_session_id if resumed else None,
                sink=lambda content: TaskService.update_message_content(message.id, content),
                soft_timeout=max(
                    _sandbox_timeout_minutes(task) * 60 - settings.agent_soft_timeout_warning, 0
                ),
            )

            task_logger.info(f"Starting {task.selected_agent} agent")
            result = execute_agent_in_sandbox(
                sandbox,
                task.selected_agent,
                prompt,
                options,
                task_logger,
                is_cancelled=is_cancelled,
            )

            if is_cancelled():
                task_logger.info("Task was stopped during agent execution")
                AgentExecutionService._release(task_id, sandbox)
                return _stopped(task_id)

            if not result.success:
                raise AgentExecutionError(result.error or "Agent execution failed")

            if result.session_id:
                TaskService.update_task(task_id, agent_session_id=result.session_id)
            if result.agent_response:
                TaskService.update_message_content(message.id, result.agent_response)

            push = GitService.push_changes_to_branch(
                sandbox, branch_name, GitService.commit_message_for(prompt), task_logger
            )
            if not push.success:
                raise AgentExecutionError(f"Failed to commit changes: {push.error}")
            if push.push_failed:
                logger.warning(f"Task {task_id}: changes committed but push failed")

            if task.keep_alive:
                task_logger.info("Keeping sandbox alive for follow-up messages")
            else:
                AgentExecutionService._release(task_id, sandbox)
                task_logger.info("Sandbox shut down")

            TaskService.update_task_status(task_id, "completed")
            task_logger.success("Task completed successfully")
            logger.info(f"Task {task_id} completed")
            return {
                "status": "completed",
                "task_id": str(task_id),
                "branch_name": branch_name,
                "changes_detected": result.changes_detected,
                "push_failed": push.push_failed,
                "session_id": result.session_id,
            }

        except OperationalError:
            # The sandbox stays up for the retry, which finds it by sandbox_id
            raise

        except Exception as e:
            error = redact_sensitive_info(str(e) or e.__class__.__name__)
            logger.error(f"Task {task_id} failed: {error}")
            if sandbox is not None and not task.keep_alive:
                AgentExecutionService._release(task_id, sandbox)

            if is_cancelled():
                return _stopped(task_id)

            task_logger.error(error)
            TaskService.update_task_status(task_id, "error", error=error)
            return {"status": "error", "task_id": str(task_id), "error": error}
