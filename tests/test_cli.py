"""Tests for the agentbox CLI."""

from uuid import uuid4

from typer.testing import CliRunner

from agentbox.cli import app
from agentbox.services import TaskService
from agentbox.services.connector import ConnectorService
from agentbox.tasks.agent_execution import continue_agent_task, execute_agent_task
from tests.conftest import create_test_task

runner = CliRunner()


def test_task_create_queues_execution():
    result = runner.invoke(app, ["task", "create", "Add a README", "--repo", "acme/widgets"])

    assert result.exit_code == 0, result.output
    assert "Task created" in result.output

    tasks, total = TaskService.list_tasks()
    assert total == 1
    assert tasks[0].repo_url == "https://github.com/acme/widgets.git"
    execute_agent_task.delay.assert_called_once_with(str(tasks[0].id))


def test_task_create_rejects_unknown_agent():
    result = runner.invoke(
        app, ["task", "create", "Hi", "--repo", "acme/widgets", "--agent", "aider"]
    )

    assert result.exit_code == 1
    assert "Unknown agent type" in result.output


def test_task_get_not_found():
    result = runner.invoke(app, ["task", "get", str(uuid4())])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_task_get_invalid_id():
    result = runner.invoke(app, ["task", "get", "not-a-uuid"])

    assert result.exit_code == 1
    assert "Invalid ID" in result.output


def test_task_list():
    create_test_task(prompt="Refactor the parser")

    result = runner.invoke(app, ["task", "list"])

    assert result.exit_code == 0
    assert "Refactor the parser" in result.output


def test_task_stop():
    task = create_test_task()

    result = runner.invoke(app, ["task", "stop", str(task.id)])

    assert result.exit_code == 0
    assert "Task stopped" in result.output
    assert TaskService.get_task_by_id(task.id).status == "stopped"


def test_task_continue_queues_follow_up():
    task = create_test_task()
    TaskService.stop_task(task.id)

    result = runner.invoke(app, ["task", "continue", str(task.id), "Try again"])

    assert result.exit_code == 0
    continue_agent_task.delay.assert_called_once_with(str(task.id), "Try again")


def test_connector_add_and_list():
    result = runner.invoke(
        app,
        ["connector", "add", "files", "--type", "local", "--command", "mcp-files /data", "-e", "ROOT=/data"],
    )
    assert result.exit_code == 0, result.output

    [config] = ConnectorService.get_connected_configs()
    assert config.env == {"ROOT": "/data"}

    listing = runner.invoke(app, ["connector", "list"])
    assert "files" in listing.output


def test_connector_add_rejects_bad_env():
    result = runner.invoke(
        app, ["connector", "add", "files", "--type", "local", "--command", "x", "-e", "ROOT"]
    )

    assert result.exit_code == 1
    assert ConnectorService.list_connectors() == []


def test_connector_add_duplicate():
    runner.invoke(app, ["connector", "add", "docs", "--url", "https://mcp.example.com"])

    result = runner.invoke(app, ["connector", "add", "docs", "--url", "https://mcp.example.com"])

    assert result.exit_code == 1
    assert "already exists" in result.output


def test_sandbox_kill_without_match():
    result = runner.invoke(app, ["sandbox", "kill", str(uuid4()), "--exact"])

    assert result.exit_code == 1
    assert "No active sandbox" in result.output
