"""OpenAI Codex CLI adapter."""

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
    extract_session_id,
    failure,
    finish_execution,
    npm_install_global,
    write_config_file,
)
from agentbox.services.agents.mcp import codex_mcp_toml
from agentbox.services.commands import CommandService
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openai/gpt-4o"

# Key prefix -> (provider id, display name, base URL, wire API)
PROVIDERS = {
    "vck_": ("vercel-ai-gateway", "Vercel AI Gateway", "https://ai-gateway.vercel.sh/v1", "chat"),
    "sk-": ("openai", "OpenAI", "https://api.openai.com/v1", "responses"),
}


def _provider_for_key(api_key: str) -> tuple[str, str, str, str] | None:
    for prefix, provider in PROVIDERS.items():
        if api_key.startswith(prefix):
            return provider
    return None


def build_config_toml(model: str, api_key: str, options: AgentOptions) -> str:
    """Render ``~/.codex/config.toml`` for one execution."""
    provider_id, provider_name, base_url, wire_api = _provider_for_key(api_key)
    lines = [
        f"model = {json.dumps(model)}",
        f"model_provider = {json.dumps(provider_id)}",
    ]
    if any(not c.is_local for c in options.connectors):
        lines.append("experimental_use_rmcp_client = true")
    lines += [
        "",
        f"[model_providers.{provider_id}]",
        f"name = {json.dumps(provider_name)}",
        f"base_url = {json.dumps(base_url)}",
        'env_key = "AI_GATEWAY_API_KEY"',
        f"wire_api = {json.dumps(wire_api)}",
    ]
    config = "\n".join(lines) + "\n"

    servers = codex_mcp_toml(options.connectors)
    if servers:
        config += "\n" + servers + "\n"
    return config


class CodexAgent:
    """Runs ``codex exec`` with buffered plain-text output."""

    name = "codex"
    cli_name = "codex"
    package = "@openai/codex"

    def missing_credentials(self, credentials: AgentCredentials) -> str | None:
        api_key = credentials.ai_gateway_api_key
        if not api_key:
            return "AI Gateway API key not found. Please set AI_GATEWAY_API_KEY."
        if _provider_for_key(api_key) is None:
            return (
                "Invalid API key format. Expected an OpenAI key (sk-) "
                "or a Vercel AI Gateway key (vck_)."
            )
        return None

    def is_installed(self, sandbox: Sandbox) -> bool:
        return cli_available(sandbox, "codex")

    def install(
        self, sandbox: Sandbox, options: AgentOptions, task_logger: TaskLogger
    ) -> InstallResult:
        return npm_install_global(sandbox, self.package, task_logger)

    def build_args(self, instruction: str, options: AgentOptions) -> list[str]:
        args = ["exec", "--dangerously-bypass-approvals-and-sandbox"]
        if options.is_resumed:
            args += ["resume", options.session_id] if options.session_id else ["resume", "--last"]
        args.append(instruction)
        return args

    def execute(
        self,
        sandbox: Sandbox,
        instruction: str,
        options: AgentOptions,
        task_logger: TaskLogger,
    ) -> AgentExecutionResult:
        """Run an instruction with Codex; output is returned at completion."""
        missing = self.missing_credentials(options.credentials)
        if missing:
            return failure(self.cli_name, missing)

        installed = ensure_installed(self, sandbox, options, task_logger)
        if not installed.success:
            return failure(self.cli_name, installed.error or "Failed to install Codex CLI")

        api_key = options.credentials.ai_gateway_api_key
        model = options.model or DEFAULT_MODEL
        write_config_file(
            sandbox,
            ".codex/config.toml",
            build_config_toml(model, api_key, options),
            task_logger,
        )

        task_logger.info(f"Executing Codex CLI with model {model}")
        result = CommandService.run_in_project(
            sandbox,
            "codex",
            self.build_args(instruction, options),
            envs={"AI_GATEWAY_API_KEY": api_key, "OPENAI_API_KEY": api_key, "CI": "true"},
            timeout=AGENT_COMMAND_TIMEOUT,
        )
        output = buffered_output(result)

        return finish_execution(
            self.cli_name,
            "Codex CLI",
            sandbox,
            exited_ok=result.success,
            error_detail=result.error or output,
            task_logger=task_logger,
            agent_response=output or None,
            session_id=extract_session_id(output),
        )
