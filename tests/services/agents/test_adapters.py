"""Tests shared by every agent adapter, plus backend-specific behavior."""

import json

import pytest

from agentbox.services.agents import (
    AGENT_ADAPTERS,
    AgentCredentials,
    AgentOptions,
    ConnectorConfig,
    execute_agent_in_sandbox,
    get_agent,
)
from agentbox.services.task_logger import TaskLogger
from tests.conftest import FakeSandbox, full_credentials

INSTALL_MARKERS = ("npm install -g", "cursor.com/install", "pip3 install")
LOCAL = ConnectorConfig(
    name="Tool Server", type="local", command="tool --flag value", env={"K": "V"}
)


def options(**overrides) -> AgentOptions:
    values = {"credentials": full_credentials()}
    values.update(overrides)
    return AgentOptions(**values)


def result_line(session_id: str) -> str:
    return json.dumps({"type": "result", "session_id": session_id}) + "\n"


def test_registry_covers_every_backend():
    assert set(AGENT_ADAPTERS) == {
        "claude", "codex", "copilot", "cursor", "gemini", "cline", "kilo", "opencode"
    }
    assert get_agent("unknown") is None


@pytest.mark.parametrize("agent_type", sorted(AGENT_ADAPTERS))
def test_missing_credentials_spawn_nothing(agent_type):
    sandbox = FakeSandbox()
    adapter = AGENT_ADAPTERS[agent_type]

    result = adapter.execute(
        sandbox.mock, "Add tests", options(credentials=AgentCredentials()), TaskLogger()
    )

    assert result.success is False
    assert result.error
    assert sandbox.commands == []
    sandbox.mock.files.write.assert_not_called()


@pytest.mark.parametrize("agent_type", sorted(AGENT_ADAPTERS))
def test_present_cli_is_not_reinstalled(agent_type):
    sandbox = FakeSandbox()
    adapter = AGENT_ADAPTERS[agent_type]

    result = adapter.execute(sandbox.mock, "Add tests", options(), TaskLogger())

    assert result.success is True
    assert result.cli_name == adapter.cli_name
    assert result.changes_detected is False
    assert not any(
        marker in command for command in sandbox.commands for marker in INSTALL_MARKERS
    )


@pytest.mark.parametrize("agent_type", sorted(AGENT_ADAPTERS))
def test_changes_are_detected_from_git_status(agent_type):
    sandbox = FakeSandbox().on("git status --porcelain", stdout=" M src/app.py\n")

    result = AGENT_ADAPTERS[agent_type].execute(
        sandbox.mock, "Fix bug", options(), TaskLogger()
    )

    assert result.changes_detected is True


def test_install_runs_once_and_rechecks():
    sandbox = FakeSandbox().on("which claude", exit_code=1)

    result = AGENT_ADAPTERS["claude"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.success is False
    assert "not found after installation" in result.error
    installs = [c for c in sandbox.commands if "npm install -g @anthropic-ai/claude-code" in c]
    assert len(installs) == 1
    assert sandbox.background == []


def test_install_failure_is_fatal():
    sandbox = (
        FakeSandbox()
        .on("which codex", exit_code=1)
        .on("npm install -g", exit_code=1, stderr="EACCES")
    )

    result = AGENT_ADAPTERS["codex"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.success is False
    assert "Failed to install @openai/codex" in result.error
    assert not sandbox.ran("codex exec")


def test_non_zero_exit_with_changes_is_partial_success():
    sandbox = (
        FakeSandbox()
        .on("claude -p", exit_code=1, stderr="rate limited")
        .on("git status --porcelain", stdout="?? new.py\n")
    )

    result = AGENT_ADAPTERS["claude"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.success is True
    assert result.changes_detected is True
    assert "finished with errors" in result.output


def test_non_zero_exit_without_changes_fails():
    sandbox = FakeSandbox().on("claude -p", exit_code=1, stderr="rate limited")

    result = AGENT_ADAPTERS["claude"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.success is False
    assert "rate limited" in result.error


def test_claude_streams_into_sink_and_captures_session():
    stream = [
        json.dumps(
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Done"}]}}
        )
        + "\n",
        result_line("sess-42"),
    ]
    sandbox = FakeSandbox().on("claude -p", stream=stream)
    writes = []

    result = AGENT_ADAPTERS["claude"].execute(
        sandbox.mock, "Hi", options(sink=writes.append), TaskLogger()
    )

    assert result.success is True
    assert result.session_id == "sess-42"
    assert result.agent_response is None
    assert writes == ["Done"]


def test_claude_resume_and_envs():
    sandbox = FakeSandbox()

    AGENT_ADAPTERS["claude"].execute(
        sandbox.mock,
        "Continue",
        options(is_resumed=True, session_id="sess-1", model="claude-opus-4"),
        TaskLogger(),
    )

    command = sandbox.background[0]
    assert "--model claude-opus-4" in command
    assert "--resume sess-1" in command
    call = next(
        c for c in sandbox.mock.commands.run.call_args_list if c.kwargs.get("background")
    )
    assert call.kwargs["envs"] == {"ANTHROPIC_API_KEY": "sk-ant-test-key-123456"}


def test_claude_registers_mcp_servers():
    sandbox = FakeSandbox()

    AGENT_ADAPTERS["claude"].execute(
        sandbox.mock, "Hi", options(connectors=[LOCAL]), TaskLogger()
    )

    assert sandbox.ran("claude mcp add tool-server -e K=V -- tool --flag value")


def test_mcp_config_write_failure_is_soft():
    sandbox = FakeSandbox()
    sandbox.mock.files.write.side_effect = RuntimeError("disk full")

    result = AGENT_ADAPTERS["cursor"].execute(
        sandbox.mock, "Hi", options(connectors=[LOCAL]), TaskLogger()
    )

    assert result.success is True


def test_unparseable_connector_command_is_skipped():
    broken = ConnectorConfig(name="bad", type="local", command='tool "unterminated')
    sandbox = FakeSandbox()

    result = AGENT_ADAPTERS["cursor"].execute(
        sandbox.mock, "Hi", options(connectors=[broken]), TaskLogger()
    )

    assert result.success is True
    written = sandbox.mock.files.write.call_args.args[1]
    assert json.loads(written) == {"mcpServers": {}}


@pytest.mark.parametrize(
    ("agent_type", "prefix"),
    [("codex", "codex exec"), ("gemini", "gemini --yolo"), ("opencode", "opencode run")],
)
def test_buffered_agents_run_without_command_timeout(agent_type, prefix):
    sandbox = FakeSandbox()

    AGENT_ADAPTERS[agent_type].execute(sandbox.mock, "Hi", options(), TaskLogger())

    call = next(
        c for c in sandbox.mock.commands.run.call_args_list if c.args[0].startswith(prefix)
    )
    assert call.kwargs["timeout"] == 0

def test_codex_buffers_output_and_scrapes_session():
    sandbox = FakeSandbox().on("codex exec", stdout="All done\nsession id: 0199-abcd-ef01\n")

    result = AGENT_ADAPTERS["codex"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.agent_response.startswith("All done")
    assert result.session_id == "0199-abcd-ef01"
    assert sandbox.background == []


def test_codex_rejects_unknown_key_format():
    sandbox = FakeSandbox()
    creds = AgentCredentials(ai_gateway_api_key="bogus-key")

    result = AGENT_ADAPTERS["codex"].execute(
        sandbox.mock, "Hi", options(credentials=creds), TaskLogger()
    )

    assert "Invalid API key format" in result.error
    assert sandbox.commands == []


def test_codex_resume_last_without_session():
    sandbox = FakeSandbox()

    AGENT_ADAPTERS["codex"].execute(
        sandbox.mock, "Again", options(is_resumed=True), TaskLogger()
    )

    assert sandbox.ran("codex exec --dangerously-bypass-approvals-and-sandbox resume --last Again")


def test_gemini_retries_on_tool_registry_error():
    sandbox = FakeSandbox().on(
        "--yolo", exit_code=1, stderr='Tool "run_shell_command" not found in registry'
    )

    result = AGENT_ADAPTERS["gemini"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.success is True
    assert sandbox.ran("gemini --yolo -o json Hi")
    assert sandbox.ran("gemini --approval-mode auto_edit -o text Hi")


def test_gemini_extracts_json_response():
    sandbox = FakeSandbox().on("gemini", stdout=json.dumps({"response": "Explained it"}))

    result = AGENT_ADAPTERS["gemini"].execute(sandbox.mock, "Hi", options(), TaskLogger())

    assert result.agent_response == "Explained it"


def test_copilot_passes_mcp_config_file():
    sandbox = FakeSandbox()

    AGENT_ADAPTERS["copilot"].execute(
        sandbox.mock, "Hi", options(connectors=[LOCAL]), TaskLogger()
    )

    assert "--additional-mcp-config @/home/user/.copilot/mcp-config.json" in sandbox.background[0]


def test_opencode_session_resume():
    sandbox = FakeSandbox()

    AGENT_ADAPTERS["opencode"].execute(
        sandbox.mock, "Again", options(is_resumed=True, session_id="ses_1"), TaskLogger()
    )

    assert sandbox.ran("opencode run --session ses_1 Again")


def test_dispatch_sanitizes_instruction():
    sandbox = FakeSandbox()

    execute_agent_in_sandbox(
        sandbox.mock, "codex", "Do this:\n- first\n- second", options(), TaskLogger()
    )

    command = next(c for c in sandbox.commands if c.startswith("codex exec"))
    assert "\n - first\n - second" in command


def test_dispatch_unknown_agent():
    result = execute_agent_in_sandbox(
        FakeSandbox().mock, "aider", "Hi", options(), TaskLogger()
    )

    assert result.success is False
    assert result.error == "Unknown agent type: aider"


def test_dispatch_checks_cancellation_first():
    sandbox = FakeSandbox()

    result = execute_agent_in_sandbox(
        sandbox.mock, "claude", "Hi", options(), TaskLogger(), is_cancelled=lambda: True
    )

    assert result.success is False
    assert sandbox.commands == []
