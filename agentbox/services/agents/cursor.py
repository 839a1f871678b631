"""Cursor agent CLI adapter."""

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
    home_path,
    run_streaming_agent,
    write_config_file,
)
from agentbox.services.agents.mcp import mcp_servers_json
from agentbox.services.commands import CommandService
from agentbox.services.streaming import cursor_stream_line
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

INSTALL_SCRIPT = "curl https://cursor.com/install -fsS | bash"


class CursorAgent:
    """Runs ``cursor-agent`` with its own stream-json dialect."""

    name = "cursor"
    cli_name = "cursor"

    @property
    def binary(self) -> str:
        return home_path(".local/bin/cursor-agent")

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if not credentials.cursor_api_key:
            return "CURSOR_API_KEY is required for Cursor CLI"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, self.binary)

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        task_logger.command(INSTALL_SCRIPT)
        result = CommandService.run_command(sandbox, "sh", ["-c", INSTALL_SCRIPT])
        if not result.success:
            return InstallResult(
                success=False, error=f"Failed to install Cursor CLI: {result.error[-500:]}"
            )
        return InstallResult(success=True)

    def build_args(self, instruction: str, options: AgentOptions) -> list[str]:
        args = ["-p", "--force", "--output-format", "stream-json"]
        if options.model:
            args += ["--model", options.model]
        if options.is_resumed and options.session_id:
            args += ["--resume", options.session_id]
        args.append(instruction)
        return args

    def execute(
        self,
        sandbox: Sandbox,
        instruction: str,
        options: AgentOptions,
        task_logger: TaskLogger,
    ) -> AgentExecutionResult:
        missing = self.missing_credentials(options.credentials)
        if missing:
            return failure(self.cli_name, missing)

        installed = ensure_installed(self, sandbox, options, task_logger)
        if not installed.success:
            return failure(self.cli_name, installed.error or "Failed to install Cursor CLI")

        if options.connectors:
            write_config_file(
                sandbox, ".cursor/mcp.json", mcp_servers_json(options.connectors), task_logger
            )

        task_logger.info("Executing Cursor CLI")
        normalizer, exited_ok, error_detail = run_streaming_agent(
            sandbox,
            self.binary,
            self.build_args(instruction, options),
            cursor_stream_line,
            options,
            task_logger,
            envs={"CURSOR_API_KEY": options.credentials.cursor_api_key},
        )

        return finish_execution(
            self.cli_name,
            "Cursor CLI",
            sandbox,
            exited_ok=exited_ok,
            error_detail=error_detail,
            task_logger=task_logger,
            agent_response=None if options.sink else normalizer.content or normalizer.raw_output,
            session_id=normalizer.session_id,
        )
