"""
Format checks for git registry sources, and branch suggestions.

Nothing here clones or reads the repository: whether the file exists is only
known once a sync runs. Branch suggestions come from the GitHub API when a
GitHubService is configured and the repository is on GitHub, otherwise from
a fixed list of common branch names.
"""
import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from app.schemas.source_checks import GitBranch, GitCheckResult
from app.services.github_service import GitHubService

logger = logging.getLogger(__name__)

GIT_HOSTS = ("github.com", "gitlab.com", "bitbucket.org")
BRANCH_PATTERN = re.compile(r"^[a-zA-Z0-9._/-]+$")
INVALID_PATH_CHARS = re.compile(r'[<>:"|?*]')
REGISTRY_FILE_EXTENSIONS = (".json", ".yaml", ".yml")
DEFAULT_BRANCH = "main"
COMMON_BRANCHES = (
    "main", "master", "develop", "dev", "staging", "production", "release", "feature", "hotfix",
)


def is_git_url(url: str) -> bool:
    """HTTPS URL on a known host with at least owner/repository in the path."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme != "https" or not parsed.hostname:
        return False
    if not any(parsed.hostname == host or parsed.hostname.endswith(f".{host}") for host in GIT_HOSTS):
        return False
    return len([part for part in parsed.path.split("/") if part]) >= 2


def check_repository(url: str) -> GitCheckResult:
    if not is_git_url(url):
        return GitCheckResult(
            valid=False,
            error="Invalid Git URL format. Expected HTTPS URL (e.g., https://github.com/user/repo.git)",
        )
    return GitCheckResult(valid=True)


def check_file_path(path: Optional[str]) -> GitCheckResult:
    if not path or not path.strip():
        return GitCheckResult(valid=False, file_exists=False, error="File path is required")
    if INVALID_PATH_CHARS.search(path) or any(ord(ch) < 32 for ch in path):
        return GitCheckResult(valid=False, file_exists=False, error="File path contains invalid characters")
    if path.startswith(("/", "\\")):
        return GitCheckResult(
            valid=False,
            file_exists=False,
            error='File path should be relative to repository root (e.g., "registry.json" or "data/registry.json")',
        )
    if not path.lower().endswith(REGISTRY_FILE_EXTENSIONS):
        return GitCheckResult(valid=True, warning="Common registry file extensions are .json, .yaml, or .yml")
    return GitCheckResult(valid=True)


def check_git_source(repository: str, branch: Optional[str] = None, path: Optional[str] = None) -> GitCheckResult:
    """Repository URL, then branch name, then file path; the first failure wins."""
    result = check_repository(repository)
    if not result.valid:
        return result
    if branch and not BRANCH_PATTERN.match(branch):
        return GitCheckResult(
            valid=False,
            error="Branch name contains invalid characters. Use only letters, numbers, dots, "
                  "underscores, hyphens, and forward slashes.",
        )
    if path:
        return check_file_path(path)
    return GitCheckResult(valid=True)


def _match_branches(branches: List[GitBranch], search: Optional[str]) -> List[GitBranch]:
    if not search:
        return branches
    needle = search.lower()
    matched = [b for b in branches if needle in b.name.lower()]
    # An unknown name is offered as-is so users can pick a custom branch
    if not matched and len(search) >= 2:
        matched = [GitBranch(name=search, is_default=False)]
    return matched


class GitSourceChecker:
    """Branch suggestions for the git source form."""

    def __init__(self, github: Optional[GitHubService] = None):
        self.github = github

    async def repository_branches(self, repository: str, search: Optional[str] = None) -> List[GitBranch]:
        branches = None
        if self.github is not None:
            found = await self.github.get_branches(repository)
            if found is not None:
                default, names = found
                branches = [GitBranch(name=n, is_default=n == default) for n in names]
                branches.sort(key=lambda b: not b.is_default)
        if branches is None:
            logger.debug(f"Suggesting common branch names for {repository}")
            branches = [GitBranch(name=n, is_default=n == DEFAULT_BRANCH) for n in COMMON_BRANCHES]
        return _match_branches(branches, search)
