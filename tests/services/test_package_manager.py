"""Tests for PackageManagerService."""

import pytest

from agentbox.services.package_manager import PackageManager, PackageManagerService
from agentbox.services.task_logger import TaskLogger
from tests.conftest import FakeSandbox


def no_files(sandbox: FakeSandbox, *present: str) -> FakeSandbox:
    """Make every ``test -f`` fail except for the given files."""
    sandbox.on("test -f", exit_code=1)
    for name in present:
        sandbox.on(f"test -f {name}")
    return sandbox


@pytest.mark.parametrize(
    "present, expected",
    [
        (("pnpm-lock.yaml", "yarn.lock", "package-lock.json"), PackageManager.PNPM),
        (("yarn.lock", "package-lock.json"), PackageManager.YARN),
        (("package-lock.json",), PackageManager.NPM),
        ((), PackageManager.NPM),
    ],
)
def test_detect_package_manager_priority(present, expected):
    sandbox = no_files(FakeSandbox(), *present)

    assert PackageManagerService.detect_package_manager(sandbox.mock) == expected


def test_detect_package_manager_is_read_only():
    sandbox = no_files(FakeSandbox(), "yarn.lock")

    PackageManagerService.detect_package_manager(sandbox.mock)

    assert all(command.startswith("test -f") for command in sandbox.commands)


def test_dev_command_args():
    assert PackageManagerService.dev_command_args(PackageManager.NPM) == ["run", "dev"]
    assert PackageManagerService.dev_command_args(PackageManager.PNPM) == ["dev"]


def test_ensure_package_manager_installs_missing_pnpm():
    sandbox = FakeSandbox().on("which pnpm", exit_code=1)

    manager = PackageManagerService.ensure_package_manager(
        sandbox.mock, PackageManager.PNPM, TaskLogger()
    )

    assert manager == PackageManager.PNPM
    assert sandbox.ran("npm install -g pnpm")


def test_ensure_package_manager_falls_back_to_npm():
    sandbox = FakeSandbox().on("which yarn", exit_code=1).on("npm install -g yarn", exit_code=1)

    manager = PackageManagerService.ensure_package_manager(
        sandbox.mock, PackageManager.YARN, TaskLogger()
    )

    assert manager == PackageManager.NPM


def test_install_pnpm_uses_tmp_store_and_frozen_lockfile():
    sandbox = no_files(FakeSandbox(), "pnpm-lock.yaml")

    assert PackageManagerService.install_node_dependencies(sandbox.mock, TaskLogger())
    assert sandbox.ran("pnpm config set store-dir /tmp/pnpm-store")
    assert sandbox.ran("pnpm install --frozen-lockfile")
    assert not sandbox.ran("npm install --no-audit")


def test_install_falls_back_to_npm_once():
    sandbox = no_files(FakeSandbox(), "yarn.lock").on("yarn install", exit_code=1)

    assert PackageManagerService.install_node_dependencies(sandbox.mock, TaskLogger())
    assert sandbox.ran("npm install --no-audit --no-fund")


def test_install_failure_is_not_fatal():
    sandbox = (
        no_files(FakeSandbox(), "yarn.lock")
        .on("yarn install", exit_code=1)
        .on("npm install --no-audit", exit_code=1)
    )

    assert PackageManagerService.install_node_dependencies(sandbox.mock, TaskLogger()) is False
    assert len([c for c in sandbox.commands if "install --no-audit" in c]) == 1


def test_install_python_dependencies():
    sandbox = FakeSandbox()

    assert PackageManagerService.install_python_dependencies(sandbox.mock, TaskLogger())
    assert sandbox.ran("python3 -m pip install --upgrade pip")
    assert sandbox.ran("python3 -m pip install -r requirements.txt")


def test_install_python_dependencies_bootstraps_pip():
    sandbox = FakeSandbox().on("python3 -m pip --version", exit_code=1)

    PackageManagerService.install_python_dependencies(sandbox.mock, TaskLogger())

    assert sandbox.ran("get-pip.py")
    assert not sandbox.ran("apt-get")
