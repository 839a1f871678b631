"""Chat message exchanged between the user and an agent."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel


class TaskMessage(SQLModel, table=True):
    """One exchange turn of a task, ordered by creation time."""

    __tablename__ = "task_messages"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the message",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True), index=True),
        description="Timestamp when the message was created",
    )
    task_id: UUID = Field(
        sa_column=Column(ForeignKey("tasks.id", ondelete="CASCADE"), index=True),
        description="ID of the task this message belongs to",
    )
    role: str = Field(
        sa_column=Column(String),
        description="Message author: user or agent",
    )
    content: str = Field(
        default="",
        sa_column=Column(Text),
        description="Message text; agent messages grow while output streams",
    )
