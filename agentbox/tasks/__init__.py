"""Celery tasks."""

from .agent_execution import continue_agent_task, execute_agent_task

__all__ = ["continue_agent_task", "execute_agent_task"]
