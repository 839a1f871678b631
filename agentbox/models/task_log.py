"""Task log model for user-visible execution logs."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel

LOG_LEVELS = ("info", "command", "error", "success")


class TaskLog(SQLModel, table=True):
    """Log entry for task execution."""

    __tablename__ = "task_logs"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the log entry",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True), index=True),
        description="Timestamp when the log entry was created",
    )
    task_id: UUID = Field(
        sa_column=Column(ForeignKey("tasks.id", ondelete="CASCADE"), index=True),
        description="ID of the task this log belongs to",
    )
    level: str = Field(
        sa_column=Column(String),
        description="Entry kind: info, command, error or success",
    )
    message: str = Field(
        sa_column=Column(Text),
        description="Redacted log message",
    )
