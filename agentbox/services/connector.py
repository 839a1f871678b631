"""Connector service: MCP server definitions stored with encrypted secrets."""

import logging
import shlex
from datetime import UTC, datetime
from uuid import UUID

from cryptography.fernet import InvalidToken
from sqlmodel import select

from agentbox.core.config import settings
from agentbox.core.database import get_session
from agentbox.core.encryption import decrypt_data, decrypt_json, encrypt_data, encrypt_json
from agentbox.core.errors import NotFoundError, RecordAlreadyExistsError, ValidationError
from agentbox.models import Connector
from agentbox.services.agents.mcp import ConnectorConfig

logger = logging.getLogger(__name__)

CONNECTOR_TYPES = ("local", "remote")
CONNECTOR_STATUSES = ("connected", "disconnected")


class ConnectorService:
    """Service for connector business logic."""

    @staticmethod
    def create_connector(
        name: str,
        type: str = "remote",
        base_url: str | None = None,
        command: str | None = None,
        env: dict[str, str] | None = None,
        oauth_client_id: str | None = None,
        oauth_client_secret: str | None = None,
        description: str | None = None,
    ) -> Connector:
        """Create a connector, encrypting its secret and environment.

        Raises:
            ValidationError: If required fields for the connector type are missing
            RecordAlreadyExistsError: If a connector with this name exists
        """
        if not name.strip():
            raise ValidationError("Connector name is required")
        if type not in CONNECTOR_TYPES:
            raise ValidationError(f"Unknown connector type: {type}")
        if type == "local":
            if not (command and command.strip()):
                raise ValidationError("Local connectors require a command")
            try:
                shlex.split(command)
            except ValueError as e:
                raise ValidationError(f"Invalid connector command: {e}") from e
        if type == "remote" and not base_url:
            raise ValidationError("Remote connectors require a base URL")
        if (oauth_client_secret or env) and not settings.encryption_key:
            raise ValidationError("ENCRYPTION_KEY is required to store connector secrets")

        with get_session() as session:
            existing = session.execute(
                select(Connector).where(Connector.name == name)
            ).scalar_one_or_none()
            if existing is not None:
                raise RecordAlreadyExistsError(f"Connector {name} already exists")

            connector = Connector(
                name=name,
                description=description,
                type=type,
                base_url=base_url,
                command=command,
                oauth_client_id=oauth_client_id,
                oauth_client_secret=(
                    encrypt_data(oauth_client_secret, settings.encryption_key)
                    if oauth_client_secret
                    else None
                ),
                env=encrypt_json(env, settings.encryption_key) if env else None,
            )
            session.add(connector)
            session.commit()
            session.refresh(connector)
            return connector

    @staticmethod
    def list_connectors(status: str | None = None) -> list[Connector]:
        with get_session() as session:
            statement = select(Connector).order_by(Connector.created_at)
            if status is not None:
                statement = statement.where(Connector.status == status)
            return list(session.execute(statement).scalars().all())

    @staticmethod
    def set_connector_status(connector_id: UUID, status: str) -> Connector:
        """Connect or disconnect a connector."""
        if status not in CONNECTOR_STATUSES:
            raise ValidationError(f"Unknown connector status: {status}")

        with get_session() as session:
            connector = session.execute(
                select(Connector).where(Connector.id == connector_id)
            ).scalar_one_or_none()
            if connector is None:
                raise NotFoundError(f"Connector with id {connector_id} not found")

            connector.status = status
            connector.updated_at = datetime.now(UTC)
            session.add(connector)
            session.commit()
            session.refresh(connector)
            return connector

    @staticmethod
    def to_config(connector: Connector) -> ConnectorConfig:
        """Decrypt a stored connector into the read-only adapter view.

        Raises:
            ValueError: If the encryption key is missing
            InvalidToken: If a secret cannot be decrypted
        """
        key = settings.encryption_key
        return ConnectorConfig(
            name=connector.name,
            type=connector.type,
            command=connector.command,
            env=decrypt_json(connector.env, key) if connector.env else {},
            base_url=connector.base_url,
            oauth_client_id=connector.oauth_client_id,
            oauth_client_secret=(
                decrypt_data(connector.oauth_client_secret, key)
                if connector.oauth_client_secret
                else None
            ),
        )

    @staticmethod
    def get_connected_configs() -> list[ConnectorConfig]:
        """Decrypted configs of all connected connectors.

        Connectors whose secrets cannot be decrypted are skipped.
        """
        configs = []
        for connector in ConnectorService.list_connectors(status="connected"):
            try:
                configs.append(ConnectorService.to_config(connector))
            except (InvalidToken, ValueError) as e:
                logger.warning(f"Skipping connector {connector.name}: {e}")
        return configs
