"""Tests for the in-process sandbox registry."""

from agentbox.services.sandbox_registry import SandboxRegistry, stop_sandbox
from tests.conftest import FakeSandbox


def test_register_and_get():
    registry = SandboxRegistry()
    sandbox = FakeSandbox()

    registry.register("task-1", sandbox.mock)

    assert registry.get("task-1") is sandbox.mock
    assert registry.active_count() == 1


def test_kill_exact_match():
    registry = SandboxRegistry()
    sandbox = FakeSandbox()
    registry.register("task-1", sandbox.mock)

    result = registry.kill("task-1")

    assert result.success is True
    assert result.message == "Killed sandbox for task task-1"
    assert registry.get("task-1") is None
    sandbox.mock.kill.assert_called_once()


def test_kill_without_match_is_exact_by_default():
    registry = SandboxRegistry()
    other = FakeSandbox()
    registry.register("task-1", other.mock)

    result = registry.kill("task-2")

    assert result.success is False
    assert result.message == "No active sandbox found for this task"
    other.mock.kill.assert_not_called()
    assert registry.active_count() == 1


def test_kill_fallback_stops_oldest():
    registry = SandboxRegistry()
    oldest, newest = FakeSandbox("sbx-old"), FakeSandbox("sbx-new")
    registry.register("task-1", oldest.mock)
    registry.register("task-2", newest.mock)

    result = registry.kill("task-3", allow_fallback=True)

    assert result.success is True
    assert result.message == "Killed sandbox for task task-1 (fallback)"
    oldest.mock.kill.assert_called_once()
    newest.mock.kill.assert_not_called()


def test_kill_fallback_with_empty_registry():
    result = SandboxRegistry().kill("task-1", allow_fallback=True)

    assert result.success is False


def test_stop_sandbox_kills_child_processes_first():
    sandbox = FakeSandbox()

    stop_sandbox(sandbox.mock)

    assert sandbox.commands == [
        "pkill -f node",
        "pkill -f python",
        "pkill -f npm",
        "pkill -f yarn",
        "pkill -f pnpm",
    ]
    sandbox.mock.kill.assert_called_once()


def test_stop_sandbox_swallows_provider_errors():
    sandbox = FakeSandbox()
    sandbox.mock.kill.side_effect = RuntimeError("already gone")

    stop_sandbox(sandbox.mock)
