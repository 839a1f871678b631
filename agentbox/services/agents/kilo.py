"""Kilo Code CLI adapter."""

import logging

from e2b_code_interpreter import Sandbox

from agentbox.services.agents.common import (
    PROVIDER_ENV_VARS,
    AgentCredentials,
    AgentExecutionResult,
    AgentOptions,
    InstallResult,
    cli_available,
    ensure_installed,
    failure,
    finish_execution,
    npm_install_global,
    provider_api_key,
    run_streaming_agent,
    write_config_file,
)
from agentbox.services.agents.mcp import mcp_servers_json
from agentbox.services.commands import CommandService
from agentbox.services.streaming import claude_stream_line
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openrouter/claude-3-5-sonnet"


class KiloAgent:
    """Runs ``kilo``; npm first, pip as the fallback installer."""

    name = "kilo"
    cli_name = "kilo"
    package = "kilo-ai"

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if provider_api_key(credentials) is None:
            return "OpenRouter, Anthropic, or OpenAI API key is required for Kilo"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "kilo")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        result = npm_install_global(sandbox, self.package, task_logger)
        if result.success:
            return result

        task_logger.info("npm install failed, trying pip")
        pip = CommandService.run_command(sandbox, "pip3", ["install", self.package])
        if not pip.success:
            return InstallResult(
                success=False, error=f"Failed to install Kilo CLI: {pip.error[-500:]}"
            )
        return InstallResult(success=True)

    def build_args(self, instruction: str, options: AgentOptions) -> list[str]:
        args = [
            "--model",
            options.model or DEFAULT_MODEL,
            "--dangerously-skip-permissions",
            "--output-format",
            "stream-json",
            "--verbose",
        ]
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
            return failure(self.cli_name, installed.error or "Failed to install Kilo CLI")

        provider, api_key = provider_api_key(options.credentials)
        model = options.model or DEFAULT_MODEL
        task_logger.info(f"Using {provider} for Kilo authentication")
        write_config_file(
            sandbox,
            ".config/kilo/config.json",
            {"api_key": api_key, "provider": provider, "default_model": model},
            task_logger,
        )
        if options.connectors:
            write_config_file(
                sandbox,
                ".config/kilo/mcp_settings.json",
                mcp_servers_json(options.connectors),
                task_logger,
            )

        task_logger.info(f"Executing Kilo CLI with model {model}")
        normalizer, exited_ok, error_detail = run_streaming_agent(
            sandbox,
            "kilo",
            self.build_args(instruction, options),
            claude_stream_line,
            options,
            task_logger,
            envs={PROVIDER_ENV_VARS[provider]: api_key},
        )

        return finish_execution(
            self.cli_name,
            "Kilo CLI",
            sandbox,
            exited_ok=exited_ok,
            error_detail=error_detail,
            task_logger=task_logger,
            agent_response=None if options.sink else normalizer.content or normalizer.raw_output,
            session_id=normalizer.session_id,
        )
