"""Google Gemini CLI adapter."""

import json
import logging

from e2b_code_interpreter import Sandbox

from agentbox.services.agents.common import (
    AGENT_COMMAND_TIMEOUT,
    AgentCredentials,
    AgentExecutionResult,
    AgentOptions,
    InstallResult,
    buffered_output,
    cli_available,
    ensure_installed,
    failure,
    finish_execution,
    npm_install_global,
    write_config_file,
)
from agentbox.services.agents.mcp import gemini_mcp_json
from agentbox.services.commands import CommandResult, CommandService
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


def is_tool_registry_error(result: CommandResult) -> bool:
    return (
        not result.success
        and "Tool" in result.error
        and "not found in registry" in result.error
    )


def parse_json_response(output: str) -> str:
    """Return the ``response`` field of ``-o json`` output, or the raw text."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return output
    if isinstance(data, dict) and isinstance(data.get("response"), str):
        return data["response"]
    return output


class GeminiAgent:
    """Runs ``gemini`` in YOLO mode with buffered JSON output."""

    name = "gemini"
    cli_name = "gemini"
    package = "@google/gemini-cli"

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if not credentials.gemini_api_key:
            return "GEMINI_API_KEY is required for Gemini CLI"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "gemini")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        return npm_install_global(sandbox, self.package, task_logger)

    def attempts(self, instruction: str, options: AgentOptions) -> list[list[str]]:
        """Argument lists to try in order; later ones drop flags the sandbox rejects."""
        model_args = ["-m", options.model] if options.model else []
        return [
            [*model_args, "--yolo", "-o", "json", instruction],
            [*model_args, "--approval-mode", "auto_edit", "-o", "text", instruction],
            [*model_args, instruction],
        ]

    def execute(
        self,
        sandbox: Sandbox,
        instruction: str,
        options: AgentOptions,
        task_logger: TaskLogger,
    ) -> AgentExecutionResult:
        """Run an instruction with Gemini; sessions are not resumable."""
        missing = self.missing_credentials(options.credentials)
        if missing:
            return failure(self.cli_name, missing)

        installed = ensure_installed(self, sandbox, options, task_logger)
        if not installed.success:
            return failure(self.cli_name, installed.error or "Failed to install Gemini CLI")

        if options.connectors:
            write_config_file(
                sandbox, ".gemini/settings.json", gemini_mcp_json(options.connectors), task_logger
            )

        envs = {"GEMINI_API_KEY": options.credentials.gemini_api_key}
        task_logger.info("Executing Gemini CLI")
        result = None
        for index, args in enumerate(self.attempts(instruction, options)):
            if index:
                task_logger.info("Tool registry error, retrying with fewer flags...")
            result = CommandService.run_in_project(
                sandbox, "gemini", args, envs=envs, timeout=AGENT_COMMAND_TIMEOUT
            )
            if not is_tool_registry_error(result):
                break

        output = buffered_output(result)
        error_detail = result.error or output
        if not result.success and (
            "authentication" in result.error or "login" in result.error
        ):
            error_detail = f"authentication failed, check GEMINI_API_KEY. {result.error}"
        elif is_tool_registry_error(result):
            error_detail = (
                "tool registry error, file operations may be restricted in this "
                f"sandbox. {result.error}"
            )

        return finish_execution(
            self.cli_name,
            "Gemini CLI",
            sandbox,
            exited_ok=result.success,
            error_detail=error_detail,
            task_logger=task_logger,
            agent_response=parse_json_response(result.output.strip()) or output or None,
        )
