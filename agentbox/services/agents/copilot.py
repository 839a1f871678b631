"""GitHub Copilot CLI adapter."""

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
    npm_install_global,
    run_streaming_agent,
    write_config_file,
)
from agentbox.services.agents.mcp import copilot_mcp_json
from agentbox.services.streaming import copilot_text_line
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

MCP_CONFIG_PATH = ".copilot/mcp-config.json"


class CopilotAgent:
    """Runs ``copilot -p`` and streams its plain-text output."""

    name = "copilot"
    cli_name = "copilot"
    package = "@github/copilot"

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if not credentials.github_token:
            return "GitHub token is required for Copilot CLI"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "copilot")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        return npm_install_global(sandbox, self.package, task_logger)

    def build_args(
        self, instruction: str, options: AgentOptions, mcp_config: bool
    ) -> list[str]:
        args = ["-p", instruction, "--allow-all-tools", "--no-color"]
        if options.model:
            args += ["--model", options.model]
        if options.is_resumed and options.session_id:
            args += ["--resume", options.session_id]
        if mcp_config:
            args += ["--additional-mcp-config", f"@{home_path(MCP_CONFIG_PATH)}"]
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
            return failure(self.cli_name, installed.error or "Failed to install Copilot CLI")

        mcp_config = bool(options.connectors) and write_config_file(
            sandbox, MCP_CONFIG_PATH, copilot_mcp_json(options.connectors), task_logger
        )

        token = options.credentials.github_token
        task_logger.info("Executing Copilot CLI")
        normalizer, exited_ok, error_detail = run_streaming_agent(
            sandbox,
            "copilot",
            self.build_args(instruction, options, mcp_config),
            copilot_text_line,
            options,
            task_logger,
            envs={"GH_TOKEN": token, "GITHUB_TOKEN": token},
        )

        return finish_execution(
            self.cli_name,
            "Copilot CLI",
            sandbox,
            exited_ok=exited_ok,
            error_detail=error_detail,
            task_logger=task_logger,
            agent_response=None if options.sink else normalizer.content.strip() or None,
        )
