"""Business logic services."""

from .agent_execution import AgentExecutionService
from .connector import ConnectorService
from .sandbox import SandboxService
from .task import TaskService

__all__ = ["AgentExecutionService", "ConnectorService", "SandboxService", "TaskService"]
