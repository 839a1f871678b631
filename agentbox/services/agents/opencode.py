"""OpenCode CLI adapter."""

import logging

from e2b_code_interpreter import Sandbox

from agentbox.services.agents.common import (
    AGENT_COMMAND_TIMEOUT,
    PROVIDER_ENV_VARS,
    AgentCredentials,
    AgentExecutionResult,
    AgentOptions,
    InstallResult,
    buffered_output,
    cli_available,
    ensure_installed,
    extract_session_id,
    failure,
    finish_execution,
    npm_install_global,
    write_config_file,
)
from agentbox.services.agents.mcp import opencode_config_json
from agentbox.services.commands import CommandService
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


class OpenCodeAgent:
    """Runs ``opencode run`` with buffered plain-text output."""

    name = "opencode"
    cli_name = "opencode"
    package = "opencode-ai"

    def provider_keys(self, credentials: AgentCredentials) -> dict[str, str]:
        keys = {}
        if credentials.openai_api_key:
            keys[PROVIDER_ENV_VARS["openai"]] = credentials.openai_api_key
        if credentials.anthropic_api_key:
            keys[PROVIDER_ENV_VARS["anthropic"]] = credentials.anthropic_api_key
        return keys

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if not self.provider_keys(credentials):
            return "OpenAI or Anthropic API key is required for OpenCode"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "opencode")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        return npm_install_global(sandbox, self.package, task_logger)

    def build_args(self, instruction: str, options: AgentOptions) -> list[str]:
        args = ["run"]
        if options.model:
            args += ["--model", options.model]
        if options.is_resumed:
            args += ["--session", options.session_id] if options.session_id else ["--continue"]
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
            return failure(self.cli_name, installed.error or "Failed to install OpenCode CLI")

        if options.connectors:
            write_config_file(
                sandbox,
                ".opencode/config.json",
                opencode_config_json(options.connectors),
                task_logger,
            )

        task_logger.info("Executing OpenCode CLI")
        result = CommandService.run_in_project(
            sandbox,
            "opencode",
            self.build_args(instruction, options),
            envs=self.provider_keys(options.credentials),
            timeout=AGENT_COMMAND_TIMEOUT,
        )
        output = buffered_output(result)

        return finish_execution(
            self.cli_name,
            "OpenCode CLI",
            sandbox,
            exited_ok=result.success,
            error_detail=result.error or output,
            task_logger=task_logger,
            agent_response=output or None,
            session_id=extract_session_id(output),
        )
