"""Core exception classes for the application."""


class RecordAlreadyExistsError(Exception):
    """Raised when trying to create a record that already exists."""


class NotFoundError(Exception):
    """Raised when a resource is not found."""


class ValidationError(Exception):
    """Raised when validation fails."""


class InvalidStatusTransitionError(ValidationError):
    """Raised when a task is moved to a status its current status cannot reach."""


class SandboxError(Exception):
    """Raised when a sandbox cannot be provisioned or prepared."""


class AgentExecutionError(Exception):
    """Raised when an agent backend reports an unrecoverable failure."""
