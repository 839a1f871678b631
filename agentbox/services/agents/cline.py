"""Cline CLI adapter."""

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
from agentbox.services.streaming import claude_stream_line
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openrouter/claude-3-5-sonnet"


class ClineAgent:
    """Runs ``cline`` with Claude-compatible stream-json output."""

    name = "cline"
    cli_name = "cline"
    package = "cline"

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        if provider_api_key(credentials) is None:
            return "OpenRouter, Anthropic, or OpenAI API key is required for Cline"
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "cline")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        return npm_install_global(sandbox, self.package, task_logger)

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
            return failure(self.cli_name, installed.error or "Failed to install Cline CLI")

        provider, api_key = provider_api_key(options.credentials)
        model = options.model or DEFAULT_MODEL
        task_logger.info(f"Using {provider} for Cline authentication")
        write_config_file(
            sandbox,
            ".config/cline/config.json",
            {"api_key": api_key, "provider": provider, "default_model": model},
            task_logger,
        )
        if options.connectors:
            write_config_file(
                sandbox,
                ".config/cline/mcp_settings.json",
                mcp_servers_json(options.connectors),
                task_logger,
            )

        task_logger.info(f"Executing Cline CLI with model {model}")
        normalizer, exited_ok, error_detail = run_streaming_agent(
            sandbox,
            "cline",
            self.build_args(instruction, options),
            claude_stream_line,
            options,
            task_logger,
            envs={PROVIDER_ENV_VARS[provider]: api_key},
        )

        return finish_execution(
            self.cli_name,
            "Cline CLI",
            sandbox,
            exited_ok=exited_ok,
            error_detail=error_detail,
            task_logger=task_logger,
            agent_response=None if options.sink else normalizer.content or normalizer.raw_output,
            session_id=normalizer.session_id,
        )
