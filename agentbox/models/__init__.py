"""Database models."""

from .connector import Connector
from .task import Task
from .task_log import TaskLog
from .task_message import TaskMessage

__all__ = ["Connector", "Task", "TaskLog", "TaskMessage"]
