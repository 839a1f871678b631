"""Git service for repository URLs and the sandbox publish pipeline."""

import logging
import re
import subprocess
from dataclasses import dataclass
from urllib.parse import quote, urlsplit, urlunsplit

from e2b_code_interpreter import Sandbox

from agentbox.services.commands import CommandService
from agentbox.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

GITHUB_REPO_PATTERN = re.compile(r"github\.com[:/](.+/.+?)(?:\.git)?/?$")
PERMISSION_MARKERS = ("Permission", "access_denied", "403")
MAX_COMMIT_SUBJECT = 72


class GitError(Exception):
    """Raised when git operations fail."""


@dataclass
class PushResult:
    """Outcome of the publish pipeline.

    ``push_failed`` with ``success=True`` means the commit exists locally
    but could not be pushed.
    """

    success: bool
    committed: bool = False
    push_failed: bool = False
    error: str | None = None


class GitService:
    """Service for git-related operations."""

    @staticmethod
    def get_current_repo() -> tuple[str, str]:
        """Get the HTTPS URL and org/name of the repository in the working directory.

        Raises:
            GitError: If not in a git repository or no remote found
        """
        try:
            result = subprocess.run(
                ["git", "remote", "get-url", "origin"],
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise GitError("Not in a git repository or no remote 'origin' found") from e

        remote_url = result.stdout.strip()
        try:
            return GitService.parse_github_url(remote_url)
        except ValueError as e:
            raise GitError(str(e)) from e

    @staticmethod
    def normalize_repo_url(repo: str) -> str:
        """Normalize org/name, HTTPS or SSH input to an HTTPS GitHub URL.

        Non-GitHub URLs are returned unchanged.
        """
        if not repo.startswith(("http://", "https://", "git@")):
            return f"https://github.com/{repo.strip('/')}.git"
        if "github.com" not in repo:
            return repo
        return GitService.parse_github_url(repo)[0]

    @staticmethod
    def parse_github_url(repo: str) -> tuple[str, str]:
        """Parse a GitHub URL (HTTPS or SSH) into (https_url, org/repo).

        Raises:
            ValueError: If URL cannot be parsed as a GitHub repository
        """
        match = GITHUB_REPO_PATTERN.search(repo)
        if not match:
            raise ValueError(f"Could not parse GitHub repo from URL: {repo}")

        org_repo = match.group(1)
        return f"https://github.com/{org_repo}.git", org_repo

    @staticmethod
    def repo_name(repo_url: str) -> str:
        """Last path segment of a repository URL without ``.git``."""
        match = re.search(r"([^/:]+?)(?:\.git)?/?$", repo_url)
        return match.group(1) if match else "repository"

    @staticmethod
    def create_authenticated_repo_url(repo_url: str, token: str | None) -> str:
        """Embed a token as URL userinfo for github.com HTTPS URLs.

        Other hosts and token-less calls get the URL back unchanged.
        """
        if not token:
            return repo_url

        parts = urlsplit(repo_url)
        if parts.scheme not in ("http", "https") or parts.hostname != "github.com":
            return repo_url

        netloc = f"{quote(token, safe='')}:x-oauth-basic@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    @staticmethod
    def commit_message_for(prompt: str) -> str:
        """Fallback commit message derived from the task prompt."""
        subject = " ".join(prompt.split())
        if len(subject) <= MAX_COMMIT_SUBJECT:
            return subject
        return f"{subject[: MAX_COMMIT_SUBJECT - 3]}..."

    @staticmethod
    def push_changes_to_branch(
        sandbox: Sandbox,
        branch_name: str,
        commit_message: str,
        task_logger: TaskLogger,
    ) -> PushResult:
        """Stage, commit and push all changes in the project.

        A clean tree is a successful no-op. Staging or commit failures are
        fatal; a push failure keeps ``success=True`` with ``push_failed``.

        Args:
            sandbox: Sandbox with the project checked out
            branch_name: Branch to push to origin
            commit_message: Commit message
            task_logger: User-visible log

        Returns:
            PushResult
        """
        status = CommandService.run_in_project(sandbox, "git", ["status", "--porcelain"])
        if not status.success:
            task_logger.error("Failed to check git status")
            return PushResult(success=False, error=status.error or "git status failed")

        if not status.output.strip():
            task_logger.info("No changes to commit")
            return PushResult(success=True)

        task_logger.info("Changes detected, committing...")
        add = CommandService.run_in_project(sandbox, "git", ["add", "."])
        if not add.success:
            task_logger.error("Failed to add changes")
            return PushResult(success=False, error=add.error or "git add failed")

        commit = CommandService.run_in_project(sandbox, "git", ["commit", "-m", commit_message])
        if not commit.success:
            task_logger.error("Failed to commit changes")
            return PushResult(success=False, error=commit.error or "git commit failed")

        task_logger.info("Changes committed successfully")

        push = CommandService.run_in_project(sandbox, "git", ["push", "origin", branch_name])
        if push.success:
            task_logger.success(f"Successfully pushed changes to branch: {branch_name}")
            return PushResult(success=True, committed=True)

        error_text = push.error or push.output
        task_logger.error(f"Failed to push to branch {branch_name}: {error_text}")
        if any(marker in error_text for marker in PERMISSION_MARKERS):
            task_logger.info(
                "Note: This appears to be a permission issue. The token may lack "
                "write access to this repository."
            )
            task_logger.info("Changes were committed locally but not pushed.")
        return PushResult(success=True, committed=True, push_failed=True, error=error_text)
