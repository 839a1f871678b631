"""MCP connector model."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


class Connector(SQLModel, table=True):
    """External tool server made available to agents.

    Secrets (``oauth_client_secret`` and ``env``) are stored Fernet-encrypted.
    """

    __tablename__ = "connectors"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the connector",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the connector was created",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the connector was last updated",
    )

    name: str = Field(description="Display name; slugged into the server key")
    description: str | None = Field(default=None, description="What the server does")
    type: str = Field(
        default="remote",
        sa_column=Column(String),
        description="Connector type: local or remote",
    )
    base_url: str | None = Field(default=None, description="Remote server URL")
    oauth_client_id: str | None = Field(default=None, description="OAuth client ID")
    oauth_client_secret: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Encrypted OAuth client secret",
    )
    command: str | None = Field(
        default=None, description="Local server command line (executable + args)"
    )
    env: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Encrypted JSON object of environment variables",
    )
    status: str = Field(
        default="connected",
        sa_column=Column(String, index=True),
        description="Connector status: connected or disconnected",
    )
