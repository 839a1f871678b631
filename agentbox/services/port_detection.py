"""Dev server port detection from a repository's package.json."""

import logging

import httpx

from agentbox.core.config import settings
from agentbox.services.git import GitService

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
VITE_PORT = 5173


def port_for_package(package: dict) -> int:
    """Vite projects serve on 5173, everything else on 3000."""
    dependencies = {
        **(package.get("dependencies") or {}),
        **(package.get("devDependencies") or {}),
    }
    return VITE_PORT if "vite" in dependencies else DEFAULT_PORT


def detect_port_from_repo(repo_url: str, github_token: str | None = None) -> int:
    """Ask the GitHub contents API for package.json and pick the dev port.

    Any failure (non-GitHub URL, missing file, network error) falls back to
    the default port.
    """
    try:
        _, org_repo = GitService.parse_github_url(repo_url)
    except ValueError:
        return DEFAULT_PORT

    headers = {"Accept": "application/vnd.github.raw+json"}
    if github_token:
        headers["Authorization"] = f"Bearer {github_token}"

    try:
        with httpx.Client(base_url=settings.github_api_url, headers=headers, timeout=10.0) as client:
            response = client.get(f"/repos/{org_repo}/contents/package.json")
            response.raise_for_status()
            package = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.info(f"Could not read package.json for {org_repo}: {e}")
        return DEFAULT_PORT

    if not isinstance(package, dict):
        return DEFAULT_PORT
    return port_for_package(package)
