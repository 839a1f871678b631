"""Types and helpers shared by the agent adapters."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from e2b_code_interpreter import Sandbox

from agentbox.core.config import settings
from agentbox.services.agents.mcp import ConnectorConfig
from agentbox.services.commands import CommandResult, CommandService
from agentbox.services.streaming import LineParser, MessageSink, StreamNormalizer
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"(?:session[_\s-]?id|Session)[:\s]+([a-f0-9-]+)", re.I)

# Agent runs are bounded only by the sandbox lifetime (0 disables the command limit)
AGENT_COMMAND_TIMEOUT = 0


@dataclass(frozen=True)
class AgentCredentials:
    """Secrets for one execution, passed to subprocesses through ``envs``."""

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    cursor_api_key: str | None = None
    ai_gateway_api_key: str | None = None
    openrouter_api_key: str | None = None
    github_token: str | None = None

    @classmethod
    def from_settings(cls) -> "AgentCredentials":
        return cls(
            anthropic_api_key=settings.system_anthropic_api_key,
            openai_api_key=settings.system_openai_api_key,
            gemini_api_key=settings.system_gemini_api_key,
            cursor_api_key=settings.system_cursor_api_key,
            ai_gateway_api_key=settings.system_ai_gateway_api_key,
            openrouter_api_key=settings.system_openrouter_api_key,
            github_token=settings.system_github_token,
        )


@dataclass
class AgentOptions:
    """Per-execution options shared by every adapter."""

    credentials: AgentCredentials
    model: str | None = None
    connectors: list[ConnectorConfig] = field(default_factory=list)
    is_resumed: bool = False
    session_id: str | None = None
    sink: MessageSink | None = None
    soft_timeout: float | None = None


@dataclass
class InstallResult:
    success: bool
    error: str | None = None


@dataclass
class AgentExecutionResult:
    """Contract every adapter returns.

    ``success`` says nothing about code changes; ``changes_detected`` comes
    from ``git status`` after the run, not from the agent.
    """

    success: bool
    cli_name: str
    output: str | None = None
    agent_response: str | None = None
    changes_detected: bool = False
    error: str | None = None
    session_id: str | None = None


class AgentAdapter(Protocol):
    """Capability contract implemented by each backend module."""

    name: str
    cli_name: str

    def missing_credentials(self, credentials: AgentCredentials) -> str | None: ...

    def is_installed(self, sandbox: Sandbox) -> bool: ...

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult: ...

    def execute(
        self,
        sandbox: Sandbox,
        instruction: str,
        options: AgentOptions,
        task_logger: TaskLogger,
    ) -> AgentExecutionResult: ...


def home_path(relative: str) -> str:
    return f"{settings.sandbox_home}/{relative}"


def cli_available(sandbox: Sandbox, binary: str) -> bool:
    """Check for a CLI on PATH (or at an absolute path)."""
    if binary.startswith("/"):
        return CommandService.run_command(sandbox, "test", ["-x", binary]).success
    return CommandService.run_command(sandbox, "which", [binary]).success


def ensure_installed(
    adapter: AgentAdapter,
    sandbox: Sandbox,
    options: AgentOptions,
    task_logger: TaskLogger,
) -> InstallResult:
    """Install the backend CLI unless it is already present."""
    if adapter.is_installed(sandbox):
        task_logger.info(f"{adapter.cli_name} CLI already installed, skipping installation")
        return InstallResult(success=True)

    task_logger.info(f"Installing {adapter.cli_name} CLI...")
    result = adapter.install(sandbox, options, task_logger)
    if not result.success:
        task_logger.error(f"Failed to install {adapter.cli_name} CLI")
        return result

    if not adapter.is_installed(sandbox):
        return InstallResult(
            success=False,
            error=f"{adapter.cli_name} CLI not found after installation",
        )

    task_logger.info(f"{adapter.cli_name} CLI installed successfully")
    return result


def npm_install_global(
    sandbox: Sandbox, package: str, task_logger: TaskLogger
) -> InstallResult:
    task_logger.command(f"npm install -g {package}")
    result = CommandService.run_command(sandbox, "npm", ["install", "-g", package])
    if not result.success:
        return InstallResult(
            success=False, error=f"Failed to install {package}: {result.error[-500:]}"
        )
    return InstallResult(success=True)


def write_config_file(
    sandbox: Sandbox,
    relative_path: str,
    content: str | dict[str, Any],
    task_logger: TaskLogger,
) -> bool:
    """Write a config file under the sandbox home directory.

    Failures are logged and reported as False; callers carry on.
    """
    path = home_path(relative_path)
    data = content if isinstance(content, str) else json.dumps(content, indent=2)
    directory = path.rsplit("/", 1)[0]
    try:
        CommandService.run_command(sandbox, "mkdir", ["-p", directory])
        sandbox.files.write(path, data)
    except Exception as e:
        task_logger.info(f"Warning: Failed to write {path}: {e}")
        return False

    task_logger.info(f"Wrote {path}")
    return True


def detect_changes(sandbox: Sandbox) -> bool:
    """Whether the project working tree differs from HEAD."""
    result = CommandService.run_in_project(sandbox, "git", ["status", "--porcelain"])
    return result.success and bool(result.output.strip())


def extract_session_id(output: str) -> str | None:
    match = SESSION_ID_PATTERN.search(output)
    return match.group(1) if match else None


def sanitize_instruction(instruction: str) -> str:
    """Indent lines starting with a dash so CLIs do not read them as flags."""
    return "\n".join(
        f" {line}" if line.startswith("-") else line for line in instruction.split("\n")
    )


def failure(cli_name: str, error: str) -> AgentExecutionResult:
    return AgentExecutionResult(success=False, cli_name=cli_name, error=error)


def finish_execution(
    cli_name: str,
    label: str,
    sandbox: Sandbox,
    *,
    exited_ok: bool,
    error_detail: str,
    task_logger: TaskLogger,
    agent_response: str | None = None,
    session_id: str | None = None,
) -> AgentExecutionResult:
    """Build the result from the exit status and an independent git check.

    A failed exit that still left changes behind is reported as success.
    """
    changes = detect_changes(sandbox)
    suffix = "Changes detected" if changes else "No changes made"

    if exited_ok:
        task_logger.success(f"{label} executed successfully")
        return AgentExecutionResult(
            success=True,
            cli_name=cli_name,
            output=f"{label} executed successfully ({suffix})",
            agent_response=agent_response,
            changes_detected=changes,
            session_id=session_id,
        )

    if changes:
        task_logger.info(f"{label} reported a failure but changes were made")
        return AgentExecutionResult(
            success=True,
            cli_name=cli_name,
            output=f"{label} finished with errors ({suffix})",
            agent_response=agent_response,
            changes_detected=True,
            session_id=session_id,
        )

    task_logger.error(f"{label} failed: {error_detail[-500:]}")
    return AgentExecutionResult(
        success=False,
        cli_name=cli_name,
        output=f"{label} failed",
        agent_response=agent_response,
        changes_detected=False,
        error=f"{label} failed: {error_detail}" if error_detail else f"{label} failed",
    )


def run_streaming_agent(
    sandbox: Sandbox,
    command: str,
    args: list[str],
    parse_line: LineParser,
    options: AgentOptions,
    task_logger: TaskLogger,
    envs: dict[str, str] | None = None,
) -> tuple[StreamNormalizer, bool, str]:
    """Run an agent detached, streaming its output into the message sink.

    Returns:
        (normalizer, exited_ok, error_detail)
    """
    normalizer = StreamNormalizer(parse_line, sink=options.sink)

    def warn() -> None:
        task_logger.info("Agent is still running and approaching its time limit")

    result = CommandService.run_streaming_command(
        sandbox,
        command,
        args,
        on_stdout=normalizer.feed,
        is_complete=normalizer.is_completed,
        cwd=settings.project_dir,
        envs=envs,
        warn_after=options.soft_timeout,
        on_warning=warn,
    )
    normalizer.flush()

    if result.error and not normalizer.completed:
        return normalizer, False, result.error
    return normalizer, result.success, result.stderr


def buffered_output(result: CommandResult) -> str:
    return "\n".join(part for part in (result.output, result.error) if part).strip()


def provider_api_key(credentials: AgentCredentials) -> tuple[str, str] | None:
    """First available (provider, key) among OpenRouter, Anthropic and OpenAI."""
    for provider, key in (
        ("openrouter", credentials.openrouter_api_key),
        ("anthropic", credentials.anthropic_api_key),
        ("openai", credentials.openai_api_key),
    ):
        if key:
            return provider, key
    return None


PROVIDER_ENV_VARS = {
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}
