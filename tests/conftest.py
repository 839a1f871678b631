"""Pytest configuration and fixtures."""

import os

# Configure the environment before the package reads its settings
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///./test_agentbox.db"
os.environ["ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OTAxMjM0NTY3ODkwMTIzNDU2Nzg5MDE="
os.environ["AGENT_POLL_INTERVAL"] = "0.01"
os.environ["DEV_SERVER_START_DELAY"] = "0"
os.environ["E2B_API_KEY"] = "e2b_test_key"
os.environ["SANDBOX_KILL_FALLBACK"] = "false"

from collections.abc import Callable  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402

from agentbox.core.database import clean_database, close_db, create_tables  # noqa: E402
from agentbox.models import Task  # noqa: E402
from agentbox.services.agents import AgentCredentials  # noqa: E402
from agentbox.services.sandbox_registry import sandbox_registry  # noqa: E402
from agentbox.services.task import TaskService  # noqa: E402

Matcher = str | Callable[[str], bool]


class FakeSandbox:
    """MagicMock sandbox whose ``commands.run`` records every command string.

    Responses are scripted with ``on(matcher, ...)``; the most recently added
    matching rule wins and unmatched commands exit 0 with no output.
    Background runs return a handle whose ``wait`` feeds ``stream`` lines to
    ``on_stdout``.
    """

    def __init__(self, sandbox_id: str = "sbx-test-123"):
        self.mock = MagicMock()
        self.mock.sandbox_id = sandbox_id
        self.mock.get_host.side_effect = lambda port: f"{port}-{sandbox_id}.e2b.app"
        self.mock.commands.run.side_effect = self._run
        self.commands: list[str] = []
        self.background: list[str] = []
        self.rules: list[tuple[Matcher, int, str, str, list[str] | None]] = []

    def on(
        self,
        matcher: Matcher,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        stream: list[str] | None = None,
    ) -> "FakeSandbox":
        self.rules.append((matcher, exit_code, stdout, stderr, stream))
        return self

    def _match(self, command: str):
        for matcher, exit_code, stdout, stderr, stream in reversed(self.rules):
            matched = matcher(command) if callable(matcher) else matcher in command
            if matched:
                return exit_code, stdout, stderr, stream
        return 0, "", "", None

    def _run(self, command: str, background: bool = False, **kwargs):
        self.commands.append(command)
        exit_code, stdout, stderr, stream = self._match(command)
        result = MagicMock(exit_code=exit_code, stdout=stdout, stderr=stderr)

        if not background:
            return result

        self.background.append(command)
        handle = MagicMock()

        def wait(on_stdout=None, on_stderr=None):
            for line in stream or ([stdout] if stdout else []):
                if on_stdout is not None:
                    on_stdout(line)
            if stderr and on_stderr is not None:
                on_stderr(stderr)
            return result

        handle.wait.side_effect = wait
        return handle

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    def index_of(self, fragment: str) -> int:
        for index, command in enumerate(self.commands):
            if fragment in command:
                return index
        return -1


def create_test_task(
    prompt: str = "Test task prompt",
    repo_url: str = "https://github.com/test/repo.git",
    **kwargs,
) -> Task:
    """Helper function to create a test task with default values."""
    return TaskService.create_task(prompt=prompt, repo_url=repo_url, **kwargs)


def full_credentials() -> AgentCredentials:
    return AgentCredentials(
        anthropic_api_key="sk-ant-test-key-123456",
        openai_api_key="sk-openai-test-key-123456",
        gemini_api_key="gemini-test-key-123456",
        cursor_api_key="cursor-test-key-123456",
        ai_gateway_api_key="vck_gateway-test-key-123456",
        openrouter_api_key="sk-or-test-key-123456",
        github_token="ghp_testtoken1234567890",
    )


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture(autouse=True, scope="function")
def mock_celery_task(mocker):
    """Mock Celery task execution for all tests."""
    mocker.patch("agentbox.tasks.agent_execution.execute_agent_task.delay")
    mocker.patch("agentbox.tasks.agent_execution.continue_agent_task.delay")


@pytest.fixture(autouse=True, scope="function")
def clean_db():
    """Initialize and clean database for each test."""
    create_tables()

    # Clean all tables before test to ensure isolation
    clean_database()
    sandbox_registry.clear()

    yield

    sandbox_registry.clear()
    close_db()
