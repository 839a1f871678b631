"""Package manager detection and dependency installation."""

import logging
from enum import StrEnum

from e2b_code_interpreter import Sandbox

from agentbox.services.commands import CommandResult, CommandService
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


class PackageManager(StrEnum):
    """Node.js package managers, npm being the baseline."""

    PNPM = "pnpm"
    YARN = "yarn"
    NPM = "npm"


# Lockfile markers in priority order
LOCKFILES: list[tuple[str, PackageManager]] = [
    ("pnpm-lock.yaml", PackageManager.PNPM),
    ("yarn.lock", PackageManager.YARN),
    ("package-lock.json", PackageManager.NPM),
]


class PackageManagerService:
    """Service for choosing a package manager and installing dependencies."""

    @staticmethod
    def project_file_exists(sandbox: Sandbox, filename: str) -> bool:
        """Check whether a file exists at the project root."""
        return CommandService.run_in_project(sandbox, "test", ["-f", filename]).success

    @staticmethod
    def detect_package_manager(sandbox: Sandbox) -> PackageManager:
        """Pick the package manager from the first lockfile found.

        Falls back to npm when the project has no lockfile.
        """
        for lockfile, manager in LOCKFILES:
            if PackageManagerService.project_file_exists(sandbox, lockfile):
                return manager
        return PackageManager.NPM

    @staticmethod
    def dev_command_args(manager: PackageManager) -> list[str]:
        """Arguments that start the ``dev`` script with the given manager."""
        if manager == PackageManager.NPM:
            return ["run", "dev"]
        return ["dev"]

    @staticmethod
    def ensure_package_manager(
        sandbox: Sandbox, manager: PackageManager, task_logger: TaskLogger
    ) -> PackageManager:
        """Make sure the manager binary exists, installing pnpm/yarn with npm.

        Returns:
            The manager to use, npm if pnpm or yarn could not be installed
        """
        if manager == PackageManager.NPM:
            return manager

        if CommandService.run_command(sandbox, "which", [manager.value]).success:
            return manager

        task_logger.info(f"Installing {manager.value}...")
        result = CommandService.run_command(sandbox, "npm", ["install", "-g", manager.value])
        if result.success:
            task_logger.info(f"{manager.value} installed successfully")
            return manager

        task_logger.info(f"Failed to install {manager.value}, falling back to npm")
        return PackageManager.NPM

    @staticmethod
    def install_dependencies(
        sandbox: Sandbox, manager: PackageManager, task_logger: TaskLogger
    ) -> CommandResult:
        """Install Node.js dependencies with one package manager."""
        if manager == PackageManager.PNPM:
            # Keep the store outside the project so it is never committed
            CommandService.run_in_project(
                sandbox, "pnpm", ["config", "set", "store-dir", "/tmp/pnpm-store"]
            )
            args = ["install", "--frozen-lockfile"]
        elif manager == PackageManager.YARN:
            args = ["install", "--frozen-lockfile"]
        else:
            args = ["install", "--no-audit", "--no-fund"]

        task_logger.command(CommandService.build_command(manager.value, args))
        result = CommandService.run_in_project(sandbox, manager.value, args)
        if result.success:
            task_logger.info("Node.js dependencies installed")
        else:
            task_logger.error(f"{manager.value} install failed: {result.error[-500:]}")
        return result

    @staticmethod
    def install_node_dependencies(sandbox: Sandbox, task_logger: TaskLogger) -> bool:
        """Install Node.js dependencies, falling back to npm once.

        Dependency failures never abort provisioning.

        Returns:
            True if an install succeeded
        """
        detected = PackageManagerService.detect_package_manager(sandbox)
        task_logger.info(f"Detected package manager: {detected.value}")
        manager = PackageManagerService.ensure_package_manager(
            sandbox, detected, task_logger
        )

        result = PackageManagerService.install_dependencies(sandbox, manager, task_logger)
        if result.success:
            return True

        if manager != PackageManager.NPM:
            task_logger.info("Retrying dependency install with npm")
            result = PackageManagerService.install_dependencies(
                sandbox, PackageManager.NPM, task_logger
            )
            if result.success:
                return True

        task_logger.info(
            "Warning: Failed to install Node.js dependencies, but continuing"
        )
        return False

    @staticmethod
    def install_python_dependencies(sandbox: Sandbox, task_logger: TaskLogger) -> bool:
        """Install requirements.txt with pip, bootstrapping pip if needed."""
        pip_check = CommandService.run_command(
            sandbox, "python3", ["-m", "pip", "--version"]
        )
        if pip_check.success:
            CommandService.run_command(
                sandbox, "python3", ["-m", "pip", "install", "--upgrade", "pip"]
            )
        else:
            task_logger.info("pip not found, installing it")
            bootstrap = CommandService.run_command(
                sandbox,
                "sh",
                [
                    "-c",
                    "cd /tmp && curl -sS https://bootstrap.pypa.io/get-pip.py -o get-pip.py"
                    " && python3 get-pip.py",
                ],
            )
            if not bootstrap.success:
                apt = CommandService.run_command(
                    sandbox,
                    "sh",
                    ["-c", "sudo apt-get update && sudo apt-get install -y python3-pip"],
                )
                if not apt.success:
                    task_logger.info("Warning: Could not install pip, skipping Python dependencies")
                    return False

        task_logger.command("python3 -m pip install -r requirements.txt")
        result = CommandService.run_in_project(
            sandbox, "python3", ["-m", "pip", "install", "-r", "requirements.txt"]
        )
        if result.success:
            task_logger.info("Python dependencies installed")
            return True

        task_logger.info(
            "Warning: Failed to install Python dependencies, but continuing"
        )
        return False
