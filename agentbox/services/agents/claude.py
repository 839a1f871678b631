"""Claude Code CLI adapter."""

import logging

from e2b_code_interpreter import Sandbox

from agentbox.services.agents.common import (
    AgentCredentials,
    AgentExecutionResult,
    AgentOptions,
    InstallResult,
    cli_available,
    ensure_installed,
    failure,
    finish_execution,
    npm_install_global,
    run_streaming_agent,
    write_config_file,
)
from agentbox.services.agents.mcp import claude_mcp_commands
from agentbox.services.commands import CommandService
from agentbox.services.streaming import claude_stream_line
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


class ClaudeAgent:
    """Runs Claude Code in print mode with stream-json output."""

    name = "claude"
    cli_name = "claude"
    package = "@anthropic-ai/claude-code"

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if not credentials.anthropic_api_key:
            return "ANTHROPIC_API_KEY is required for Claude CLI"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "claude")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        return npm_install_global(sandbox, self.package, task_logger)

    def configure(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> None:
        """Write the CLI config and register MCP servers."""
        write_config_file(
            sandbox,
            ".config/claude/config.json",
            {
                "api_key": options.credentials.anthropic_api_key,
                "default_model": options.model or DEFAULT_MODEL,
            },
            task_logger,
        )

        envs = {"ANTHROPIC_API_KEY": options.credentials.anthropic_api_key}
        for server_name, argv in claude_mcp_commands(options.connectors):
            result = CommandService.run_command(sandbox, argv[0], argv[1:], envs=envs)
            if result.success:
                task_logger.info(f"Added MCP server {server_name}")
            else:
                task_logger.info(
                    f"Warning: Failed to add MCP server {server_name}: {result.error}"
                )

    def build_args(self, instruction: str, options: AgentOptions) -> list[str]:
        args = [
            "-p",
            "--model",
            options.model or DEFAULT_MODEL,
            "--dangerously-skip-permissions",
            "--output-format",
            "stream-json",
            "--verbose",
        ]
        if options.is_resumed:
            args += ["--resume", options.session_id] if options.session_id else ["--continue"]
        args.append(instruction)
        return args

    def execute(
        self,
        sandbox: Sandbox,
        instruction: str,
        options: AgentOptions,
        task_logger: TaskLogger,
    ) -> AgentExecutionResult:
        """Run an instruction with Claude Code.

        Args:
            sandbox: Sandbox with the cloned project
            instruction: Natural language instruction
            options: Model, connectors, resume state and message sink
            task_logger: User-visible log

        Returns:
            AgentExecutionResult; agent_response is omitted when streamed
        """
        missing = self.missing_credentials(options.credentials)
        if missing:
            return failure(self.cli_name, missing)

        installed = ensure_installed(self, sandbox, options, task_logger)
        if not installed.success:
            return failure(self.cli_name, installed.error or "Failed to install Claude CLI")

        self.configure(sandbox, options, task_logger)

        if options.is_resumed and options.session_id:
            task_logger.info(f"Resuming Claude session {options.session_id}")
        task_logger.info(f"Executing Claude CLI with model {options.model or DEFAULT_MODEL}")

        normalizer, exited_ok, error_detail = run_streaming_agent(
            sandbox,
            "claude",
            self.build_args(instruction, options),
            claude_stream_line,
            options,
            task_logger,
            envs={"ANTHROPIC_API_KEY": options.credentials.anthropic_api_key},
        )

        return finish_execution(
            self.cli_name,
            "Claude CLI",
            sandbox,
            exited_ok=exited_ok,
            error_detail=error_detail,
            task_logger=task_logger,
            agent_response=None if options.sink else normalizer.content or normalizer.raw_output,
            session_id=normalizer.session_id,
        )
