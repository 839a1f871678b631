"""Sandbox lifecycle: provision, clone, install, dev server, git branch."""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from e2b import TimeoutException
from e2b_code_interpreter import Sandbox

from agentbox.core.config import settings
from agentbox.core.errors import SandboxError
from agentbox.core.redaction import redact_sensitive_info
from agentbox.services.agents import AgentCredentials, get_agent
from agentbox.services.commands import CommandService
from agentbox.services.git import GitService
from agentbox.services.package_manager import PackageManager, PackageManagerService
from agentbox.services.port_detection import DEFAULT_PORT, VITE_PORT
from agentbox.services.sandbox_registry import sandbox_registry, stop_sandbox
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = (
    "Sandbox creation timed out. Try with a smaller repository or fewer dependencies."
)
GLOBAL_GITIGNORE = "~/.gitignore_global"
VITE_HOST_PATCH = """cp vite.config.js vite.config.js.backup
if grep -q "server:" vite.config.js; then
  sed -i "/server:[[:space:]]*{/a\\    host: true," vite.config.js
else
  sed -i "/export default defineConfig/a\\  server: { host: true }," vite.config.js
fi"""


class SetupCancelled(Exception):
    """Raised inside create_sandbox when a cancellation checkpoint trips."""


@dataclass
class SandboxConfig:
    """Everything needed to prepare a sandbox for one task."""

    task_id: UUID | str
    repo_url: str
    credentials: AgentCredentials
    selected_agent: str = "claude"
    timeout_minutes: int | None = None
    ports: list[int] = field(default_factory=lambda: list(settings.sandbox_ports))
    runtime: str = field(default_factory=lambda: settings.sandbox_runtime)
    vcpus: int = field(default_factory=lambda: settings.sandbox_vcpus)
    install_dependencies: bool = False
    branch_name: str | None = None
    git_author_name: str | None = None
    git_author_email: str | None = None
    github_username: str | None = None
    is_cancelled: Callable[[], bool] | None = None


@dataclass
class SandboxResult:
    success: bool
    sandbox: Sandbox | None = None
    domain: str | None = None
    branch_name: str | None = None
    error: str | None = None
    cancelled: bool = False


def _is_timeout(error: Exception) -> bool:
    message = str(error)
    return (
        isinstance(error, TimeoutException)
        or "timeout" in message.lower()
        or "ETIMEDOUT" in message
    )


def generate_branch_name() -> str:
    """``agent/<UTC timestamp>-<random suffix>`` for tasks without a branch."""
    timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S")
    return f"agent/{timestamp}-{uuid4().hex[:12]}"


class SandboxService:
    """Service for sandbox provisioning and preparation."""

    @staticmethod
    def validate_environment(config: SandboxConfig) -> list[str]:
        """List the missing credentials for this task, empty when ready."""
        errors = []
        adapter = get_agent(config.selected_agent)
        if adapter is None:
            errors.append(f"Unknown agent type: {config.selected_agent}")
        else:
            missing = adapter.missing_credentials(config.credentials)
            if missing:
                errors.append(missing)
        if not config.credentials.github_token:
            errors.append("GitHub token is required to clone and push")
        if not settings.e2b_api_key:
            errors.append("E2B_API_KEY is required to create sandboxes")
        return errors

    @staticmethod
    def provision(config: SandboxConfig) -> Sandbox:
        """Create the sandbox with explicit provider credentials."""
        timeout_minutes = config.timeout_minutes or settings.sandbox_timeout_minutes
        return Sandbox.create(
            template=settings.sandbox_template,
            timeout=timeout_minutes * 60,
            metadata={
                "task_id": str(config.task_id),
                "runtime": config.runtime,
                "vcpus": str(config.vcpus),
                "ports": ",".join(str(port) for port in config.ports),
            },
            api_key=settings.e2b_api_key,
            domain=settings.e2b_domain,
        )

    @staticmethod
    def connect_sandbox(sandbox_id: str) -> Sandbox:
        """Reconnect to a kept-alive sandbox by its persisted ID."""
        return Sandbox.connect(
            sandbox_id, api_key=settings.e2b_api_key, domain=settings.e2b_domain
        )

    @staticmethod
    def shutdown_sandbox(sandbox: Sandbox) -> None:
        stop_sandbox(sandbox)

    @staticmethod
    def endpoint_url(sandbox: Sandbox, port: int) -> str:
        return f"https://{sandbox.get_host(port)}"

    @staticmethod
    def create_sandbox(
        config: SandboxConfig, task_logger: TaskLogger | None = None
    ) -> SandboxResult:
        """Provision a sandbox and prepare a git-ready workspace.

        Phases: validate-env, provision, clone, detect-project, install-deps,
        configure-dev-server, git-init/branch. ``config.is_cancelled`` is
        polled before each phase; a cancelled setup returns
        ``cancelled=True`` and tears down anything already provisioned.

        Args:
            config: Task, repository, credentials and setup options
            task_logger: User-visible log

        Returns:
            SandboxResult with the handle, endpoint URL and branch name
        """
        task_logger = task_logger or TaskLogger()
        sandbox = None

        def checkpoint(phase: str) -> None:
            if config.is_cancelled is not None and config.is_cancelled():
                task_logger.info(f"Task was stopped before {phase}")
                raise SetupCancelled(phase)

        try:
            checkpoint("environment validation")
            errors = SandboxService.validate_environment(config)
            if errors:
                raise SandboxError(", ".join(errors))

            auth_url = GitService.create_authenticated_repo_url(
                config.repo_url, config.credentials.github_token
            )

            checkpoint("sandbox creation")
            task_logger.info("Creating sandbox...")
            sandbox = SandboxService.provision(config)
            sandbox_registry.register(config.task_id, sandbox)
            task_logger.info(f"Sandbox created: {sandbox.sandbox_id}")

            checkpoint("repository clone")
            SandboxService.clone_repository(sandbox, auth_url, task_logger)

            checkpoint("project detection")
            has_package_json = PackageManagerService.project_file_exists(
                sandbox, "package.json"
            )
            has_requirements = PackageManagerService.project_file_exists(
                sandbox, "requirements.txt"
            )

            if config.install_dependencies:
                checkpoint("dependency installation")
                if has_package_json:
                    task_logger.info("Node.js project detected, installing dependencies...")
                    PackageManagerService.install_node_dependencies(sandbox, task_logger)
                elif has_requirements:
                    task_logger.info("Python project detected, installing dependencies...")
                    PackageManagerService.install_python_dependencies(sandbox, task_logger)
                else:
                    task_logger.info(
                        "No package.json or requirements.txt found, skipping dependency installation"
                    )
            else:
                task_logger.info("Skipping dependency installation")

            checkpoint("dev server startup")
            port = config.ports[0] if config.ports else DEFAULT_PORT
            domain = None
            if has_package_json and config.install_dependencies:
                domain = SandboxService.start_dev_server(sandbox, task_logger)
            if domain is None:
                domain = SandboxService.endpoint_url(sandbox, port)
            SandboxService.log_project_hints(sandbox, has_package_json, has_requirements, task_logger)

            checkpoint("git configuration")
            SandboxService.configure_git(sandbox, config, task_logger)
            branch_name = SandboxService.checkout_branch(
                sandbox, config.branch_name, task_logger
            )

            return SandboxResult(
                success=True, sandbox=sandbox, domain=domain, branch_name=branch_name
            )

        except SetupCancelled:
            SandboxService._discard(config, sandbox)
            return SandboxResult(success=False, cancelled=True, error="Task was cancelled")
        except Exception as e:
            message = TIMEOUT_MESSAGE if _is_timeout(e) else str(e)
            message = redact_sensitive_info(message or e.__class__.__name__)
            logger.error(f"Sandbox creation failed for task {config.task_id}: {message}")
            task_logger.error(f"Error occurred during sandbox creation: {message}")
            SandboxService._discard(config, sandbox)
            return SandboxResult(success=False, error=message)

    @staticmethod
    def _discard(config: SandboxConfig, sandbox: Sandbox | None) -> None:
        if sandbox is None:
            return
        sandbox_registry.unregister(config.task_id)
        stop_sandbox(sandbox)

    @staticmethod
    def clone_repository(sandbox: Sandbox, auth_url: str, task_logger: TaskLogger) -> None:
        """Shallow-clone the repository into the project directory.

        Raises:
            SandboxError: If the clone fails
        """
        project_dir = settings.project_dir
        CommandService.run_command(sandbox, "mkdir", ["-p", project_dir])

        task_logger.info("Cloning repository...")
        result = CommandService.run_command(
            sandbox, "git", ["clone", "--depth", "1", auth_url, project_dir]
        )
        if not result.success:
            task_logger.error(f"Git clone failed: {result.error}")
            raise SandboxError(f"Failed to clone repository: {result.error}")
        task_logger.info("Repository cloned successfully")

    @staticmethod
    def read_package_json(sandbox: Sandbox) -> dict | None:
        result = CommandService.run_in_project(sandbox, "cat", ["package.json"])
        if not result.success:
            return None
        try:
            data = json.loads(result.output)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def ignore_globally(sandbox: Sandbox, pattern: str, task_logger: TaskLogger) -> None:
        """Add a pattern to the global git excludes file."""
        escaped = pattern.replace(".", "\\.").replace("*", "")
        CommandService.run_command(
            sandbox,
            "sh",
            [
                "-c",
                f'grep -q "^{escaped}" {GLOBAL_GITIGNORE} 2>/dev/null'
                f' || echo "{pattern}" >> {GLOBAL_GITIGNORE}',
            ],
        )
        CommandService.run_in_project(
            sandbox, "git", ["config", "--global", "core.excludesfile", GLOBAL_GITIGNORE]
        )
        task_logger.info(f"Added {pattern} to global gitignore")

    @staticmethod
    def start_dev_server(sandbox: Sandbox, task_logger: TaskLogger) -> str | None:
        """Start the ``dev`` script detached and return its endpoint URL.

        Vite configs are patched to bind all hosts; the patched file is
        ignored globally before it is touched.
        """
        package = SandboxService.read_package_json(sandbox)
        if package is None:
            task_logger.info("Could not parse package.json, skipping auto-start of dev server")
            return None
        if not (package.get("scripts") or {}).get("dev"):
            return None

        dependencies = {
            **(package.get("dependencies") or {}),
            **(package.get("devDependencies") or {}),
        }
        port = DEFAULT_PORT
        extra_args = []

        if "vite" in dependencies:
            port = VITE_PORT
            task_logger.info("Vite project detected, using port 5173")
            SandboxService.ignore_globally(sandbox, "vite.config.*", task_logger)
            if PackageManagerService.project_file_exists(sandbox, "vite.config.js"):
                patch = CommandService.run_in_project(sandbox, "sh", ["-c", VITE_HOST_PATCH])
                if patch.success:
                    task_logger.info("Modified vite.config.js to allow external hosts")
            extra_args.append("--host")

        next_version = str(dependencies.get("next", ""))
        if next_version.lstrip("^~").startswith("16."):
            task_logger.info("Next.js 16 detected, adding --webpack flag")
            extra_args.append("--webpack")

        manager = PackageManagerService.detect_package_manager(sandbox)
        args = PackageManagerService.dev_command_args(manager)
        if extra_args:
            args += ["--", *extra_args] if manager == PackageManager.NPM else extra_args

        task_logger.info("Dev script detected, starting development server...")
        handle = CommandService.start_detached(
            sandbox, manager.value, args, cwd=settings.project_dir
        )
        if handle is None:
            task_logger.info("Warning: Failed to start development server")
            return None

        time.sleep(settings.dev_server_start_delay)
        task_logger.info("Development server is running")
        return SandboxService.endpoint_url(sandbox, port)

    @staticmethod
    def log_project_hints(
        sandbox: Sandbox,
        has_package_json: bool,
        has_requirements: bool,
        task_logger: TaskLogger,
    ) -> None:
        if has_package_json:
            task_logger.info("Node.js project is ready")
        elif has_requirements:
            if PackageManagerService.project_file_exists(sandbox, "app.py"):
                task_logger.info("Flask app.py detected, run with: python3 app.py")
            elif PackageManagerService.project_file_exists(sandbox, "manage.py"):
                task_logger.info(
                    "Django manage.py detected, run with: python3 manage.py runserver 0.0.0.0:8000"
                )
            else:
                task_logger.info("Python project is ready")
        else:
            task_logger.info("Project is ready")

    @staticmethod
    def configure_git(sandbox: Sandbox, config: SandboxConfig, task_logger: TaskLogger) -> None:
        """Set the commit identity and make sure the project is a repository with a HEAD.

        An empty repository is bootstrapped with a README commit on main.

        Raises:
            SandboxError: If the README bootstrap commit cannot be created
        """
        name = config.git_author_name or settings.git_author_name
        if config.git_author_email:
            email = config.git_author_email
        elif config.github_username:
            email = f"{config.github_username}@users.noreply.github.com"
        else:
            email = settings.git_author_email

        if not CommandService.run_in_project(sandbox, "git", ["rev-parse", "--git-dir"]).success:
            task_logger.info("Not a git repository, initializing...")
            init = CommandService.run_in_project(sandbox, "git", ["init"])
            if not init.success:
                raise SandboxError("Failed to initialize Git repository")

        # Repository-local identity, so it needs the repository to exist
        CommandService.run_in_project(sandbox, "git", ["config", "user.name", name])
        CommandService.run_in_project(sandbox, "git", ["config", "user.email", email])

        if CommandService.run_in_project(sandbox, "git", ["rev-parse", "HEAD"]).success:
            return

        task_logger.info("Empty repository detected, creating initial commit")
        repo_name = GitService.repo_name(config.repo_url)
        try:
            sandbox.files.write(f"{settings.project_dir}/README.md", f"# {repo_name}\n")
        except Exception as e:
            raise SandboxError(f"Failed to create initial README: {e}") from e

        for args, error in (
            (["checkout", "-b", "main"], "Failed to create main branch"),
            (["add", "README.md"], "Failed to add README to git"),
            (["commit", "-m", "Initial commit"], "Failed to commit initial README"),
        ):
            if not CommandService.run_in_project(sandbox, "git", args).success:
                raise SandboxError(error)

        push = CommandService.run_in_project(sandbox, "git", ["push", "-u", "origin", "main"])
        if push.success:
            task_logger.info("Pushed initial commit to main")
        else:
            task_logger.info("Warning: Failed to push initial commit, continuing")

    @staticmethod
    def checkout_branch(
        sandbox: Sandbox, branch_name: str | None, task_logger: TaskLogger
    ) -> str:
        """Check out ``branch_name`` (local, then remote, then new) or a fresh branch.

        Raises:
            SandboxError: If no branch could be checked out
        """

        def git(*args: str):
            return CommandService.run_in_project(sandbox, "git", list(args))

        if not branch_name:
            branch_name = generate_branch_name()
            task_logger.info(f"No branch name given, using {branch_name}")
            if not git("checkout", "-b", branch_name).success:
                raise SandboxError("Failed to create Git branch")
            return branch_name

        if git("show-ref", "--verify", "--quiet", f"refs/heads/{branch_name}").success:
            task_logger.info(f"Branch {branch_name} exists locally, checking it out")
            if not git("checkout", branch_name).success:
                raise SandboxError("Failed to checkout existing Git branch")
            return branch_name

        remote = git("ls-remote", "--heads", "origin", branch_name)
        if remote.success and remote.output.strip():
            task_logger.info(f"Branch {branch_name} exists on remote, fetching it")
            if git("fetch", "origin", f"{branch_name}:{branch_name}").success:
                if not git("checkout", branch_name).success:
                    raise SandboxError("Failed to checkout remote Git branch")
                return branch_name

            task_logger.info("Failed to fetch remote branch, trying to track it")
            if not git("fetch", "origin").success:
                raise SandboxError("Failed to fetch from remote Git repository")
            if not git("checkout", "-b", branch_name, "--track", f"origin/{branch_name}").success:
                raise SandboxError("Failed to checkout remote Git branch")
            return branch_name

        task_logger.info(f"Creating new branch {branch_name}")
        if not git("checkout", "-b", branch_name).success:
            raise SandboxError("Failed to create Git branch")
        return branch_name
