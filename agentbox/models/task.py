"""Task model for agent execution."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

TASK_STATUSES = ("pending", "processing", "completed", "error", "stopped")
PR_STATUSES = ("open", "closed", "merged")
AGENT_TYPES = (
    "claude",
    "codex",
    "copilot",
    "cursor",
    "gemini",
    "cline",
    "kilo",
    "opencode",
)


class Task(SQLModel, table=True):
    """Task for agent execution."""

    __tablename__ = "tasks"

    # Primary key and timestamps
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the task",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was created",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was last updated",
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
        description="Timestamp when the task reached a terminal status",
    )

    # Request
    prompt: str = Field(
        sa_column=Column(Text),
        description="Natural language instruction for the agent",
    )
    title: str | None = Field(default=None, description="Short display title")
    repo_url: str = Field(description="Repository URL to clone and work on")
    selected_agent: str = Field(
        default="claude", description="Agent backend identifier"
    )
    selected_model: str | None = Field(
        default=None, description="Model identifier passed to the agent backend"
    )
    install_dependencies: bool = Field(
        default=False, description="Install project dependencies before running"
    )
    max_duration: int = Field(
        default=300, description="Maximum execution time in minutes"
    )
    keep_alive: bool = Field(
        default=False, description="Keep the sandbox running after completion"
    )

    # Lifecycle
    status: str = Field(
        default="pending",
        sa_column=Column(String, index=True),
        description="Task status: pending, processing, completed, error, stopped",
    )
    error: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True), description="Error message"
    )

    # Sandbox and agent state
    branch_name: str | None = Field(default=None, description="Working branch")
    sandbox_id: str | None = Field(
        default=None, description="ID of the sandbox where the task is running"
    )
    sandbox_url: str | None = Field(
        default=None, description="Public URL of the sandbox dev server"
    )
    agent_session_id: str | None = Field(
        default=None, description="Backend session ID for resumption"
    )

    # Pull request metadata
    pr_url: str | None = Field(default=None, description="Pull request URL")
    pr_number: int | None = Field(default=None, description="Pull request number")
    pr_status: str | None = Field(
        default=None, description="Pull request status: open, closed, merged"
    )
