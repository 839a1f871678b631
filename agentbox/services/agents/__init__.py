"""Agent backend adapters keyed by agent type."""

import logging
from collections.abc import Callable

from e2b_code_interpreter import Sandbox

from agentbox.services.agents.claude import ClaudeAgent
from agentbox.services.agents.cline import ClineAgent
from agentbox.services.agents.codex import CodexAgent
from agentbox.services.agents.common import (
    AgentAdapter,
    AgentCredentials,
    AgentExecutionResult,
    AgentOptions,
    InstallResult,
    failure,
    sanitize_instruction,
)
from agentbox.services.agents.copilot import CopilotAgent
from agentbox.services.agents.cursor import CursorAgent
from agentbox.services.agents.gemini import GeminiAgent
from agentbox.services.agents.kilo import KiloAgent
from agentbox.services.agents.mcp import ConnectorConfig
from agentbox.services.agents.opencode import OpenCodeAgent
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

AGENT_ADAPTERS: dict[str, AgentAdapter] = {
    "claude": ClaudeAgent(),
    "codex": CodexAgent(),
    "copilot": CopilotAgent(),
    "cursor": CursorAgent(),
    "gemini": GeminiAgent(),
    "cline": ClineAgent(),
    "kilo": KiloAgent(),
    "opencode": OpenCodeAgent(),
}


def get_agent(agent_type: str) -> AgentAdapter | None:
    return AGENT_ADAPTERS.get(agent_type)


def execute_agent_in_sandbox(
    sandbox: Sandbox,
    agent_type: str,
    instruction: str,
    options: AgentOptions,
    task_logger: TaskLogger,
    is_cancelled: Callable[[], bool] | None = None,
) -> AgentExecutionResult:
    """Dispatch an instruction to the adapter registered for ``agent_type``.

    Args:
        sandbox: Prepared sandbox with the project checked out
        agent_type: Backend identifier, e.g. "claude"
        instruction: Natural language instruction
        options: Model, connectors, resume state, sink and credentials
        task_logger: User-visible log
        is_cancelled: Checked once before dispatch

    Returns:
        AgentExecutionResult from the adapter
    """
    if is_cancelled is not None and is_cancelled():
        task_logger.info("Task was stopped before agent execution")
        return failure(agent_type, "Task was stopped before agent execution")

    adapter = get_agent(agent_type)
    if adapter is None:
        return failure(agent_type, f"Unknown agent type: {agent_type}")

    logger.info(f"Dispatching instruction to {adapter.name} agent")
    return adapter.execute(sandbox, sanitize_instruction(instruction), options, task_logger)


__all__ = [
    "AGENT_ADAPTERS",
    "AgentAdapter",
    "AgentCredentials",
    "AgentExecutionResult",
    "AgentOptions",
    "ConnectorConfig",
    "InstallResult",
    "execute_agent_in_sandbox",
    "get_agent",
]
