"""Application configuration."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _int_list(value: str) -> list[int]:
    return [int(part) for part in value.split(",") if part.strip()]


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Environment
    env: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    # Default uses local socket connection with trust auth
    database_url: str = os.getenv(
        "DATABASE_URL", "postgresql:///agentbox?user=postgres"
    )

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379")

    # Sandbox provider
    e2b_api_key: str | None = os.getenv("E2B_API_KEY")
    e2b_domain: str | None = os.getenv("E2B_DOMAIN")
    sandbox_template: str = os.getenv("SANDBOX_TEMPLATE", "agentbox-node22")
    sandbox_runtime: str = os.getenv("SANDBOX_RUNTIME", "node22")
    sandbox_vcpus: int = int(os.getenv("SANDBOX_VCPUS", "4"))
    sandbox_timeout_minutes: int = int(os.getenv("SANDBOX_TIMEOUT_MINUTES", "60"))
    sandbox_ports: list[int] = _int_list(os.getenv("SANDBOX_PORTS", "3000,5173"))
    sandbox_home: str = os.getenv("SANDBOX_HOME", "/home/user")
    project_dir: str = os.getenv("PROJECT_DIR", "/home/user/project")
    sandbox_kill_fallback: bool = (
        os.getenv("SANDBOX_KILL_FALLBACK", "false").lower() == "true"
    )

    # Timeouts (in seconds unless noted)
    command_timeout: int = int(os.getenv("COMMAND_TIMEOUT", "600"))  # 10 minutes
    agent_poll_interval: float = float(os.getenv("AGENT_POLL_INTERVAL", "1"))
    command_kill_grace: float = float(os.getenv("COMMAND_KILL_GRACE", "5"))
    agent_soft_timeout_warning: int = int(
        os.getenv("AGENT_SOFT_TIMEOUT_WARNING", "60")
    )
    max_task_duration: int = int(os.getenv("MAX_TASK_DURATION", "300"))  # minutes
    dev_server_start_delay: float = float(os.getenv("DEV_SERVER_START_DELAY", "3"))

    # Git identity
    git_author_name: str = os.getenv("GIT_AUTHOR_NAME", "Coding Agent")
    git_author_email: str = os.getenv("GIT_AUTHOR_EMAIL", "agent@example.com")

    # Agent credentials
    system_anthropic_api_key: str | None = os.getenv("SYSTEM_ANTHROPIC_API_KEY")
    system_openai_api_key: str | None = os.getenv("SYSTEM_OPENAI_API_KEY")
    system_gemini_api_key: str | None = os.getenv("SYSTEM_GEMINI_API_KEY")
    system_cursor_api_key: str | None = os.getenv("SYSTEM_CURSOR_API_KEY")
    system_ai_gateway_api_key: str | None = os.getenv("SYSTEM_AI_GATEWAY_API_KEY")
    system_openrouter_api_key: str | None = os.getenv("SYSTEM_OPENROUTER_API_KEY")
    system_github_token: str | None = os.getenv("SYSTEM_GITHUB_TOKEN")
    github_api_url: str = os.getenv("GITHUB_API_URL", "https://api.github.com")

    # Connector secrets at rest
    encryption_key: str | None = os.getenv("ENCRYPTION_KEY")


settings = Settings()
