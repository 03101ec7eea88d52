"""GitHub issue lookup for swarm children"""

from typing import List, Optional, TYPE_CHECKING
from urllib.parse import urlparse

import git
from github import Auth, Github, GithubException

from git_loom.config import Settings
from git_loom.exceptions import IssueTrackerError
from git_loom.logging_config import get_logger
from git_loom.models.loom import SwarmChildIssue

if TYPE_CHECKING:
    from github.Repository import Repository

logger = get_logger(__name__)


def parse_github_repo(remote_url: str) -> str:
    """Extract ``owner/name`` from an SSH or HTTPS GitHub remote URL."""
    if remote_url.startswith("git@"):
        # git@github.com:org/repo.git
        if ":" not in remote_url:
            raise IssueTrackerError("parse_remote", f"Unrecognized remote URL: {remote_url}")
        path = remote_url.split(":", 1)[1]
    else:
        # https://github.com/org/repo.git
        path = urlparse(remote_url).path.strip("/")

    if path.endswith(".git"):
        path = path[:-4]
    if path.count("/") != 1:
        raise IssueTrackerError("parse_remote", f"Unrecognized remote URL: {remote_url}")
    return path


class GitHubIssueService:
    """Fetches issue text from GitHub using PyGithub."""

    def __init__(self, repo_path: str, settings: Settings, github_client: Optional[Github] = None):
        self.repo_path = repo_path
        self.settings = settings
        self.github = github_client
        self.github_repo: Optional[str] = None
        self.gh_repo: Optional["Repository"] = None

    def _remote_url(self) -> str:
        repo = git.Repo(self.repo_path, search_parent_directories=True)
        try:
            return repo.remotes.origin.url
        except AttributeError as e:
            raise IssueTrackerError("setup", "Repository has no 'origin' remote") from e
        finally:
            repo.close()

    def setup_github_api(self) -> None:
        """Connect to the repository behind the ``origin`` remote.

        Raises:
            IssueTrackerError: If there is no token, no GitHub remote, or the API call fails
        """
        if self.gh_repo is not None:
            return

        self.github_repo = parse_github_repo(self._remote_url())
        if self.github is None:
            token = self.settings.resolved_github_token()
            if not token:
                raise IssueTrackerError(
                    "setup", "GitHub token required. Set GITHUB_TOKEN or 'github_token' in settings."
                )
            self.github = Github(auth=Auth.Token(token))

        try:
            self.gh_repo = self.github.get_repo(self.github_repo)
        except GithubException as e:
            raise IssueTrackerError("setup", f"Cannot access {self.github_repo}: {e}") from e
        logger.debug(f"GitHub integration enabled for: {self.github_repo}")

    def fetch_child_issues(self, numbers: List[str]) -> List[SwarmChildIssue]:
        """Fetch title, body and URL for each issue number (``123`` or ``#123``).

        Raises:
            IssueTrackerError: If any issue cannot be fetched
        """
        self.setup_github_api()
        if self.gh_repo is None:
            raise IssueTrackerError("fetch_issue", f"GitHub repository {self.github_repo} is not available")

        issues = []
        for raw in numbers:
            number = str(raw).lstrip("#")
            if not number.isdigit():
                raise IssueTrackerError("fetch_issue", f"Invalid GitHub issue number: {raw}")
            try:
                issue = self.gh_repo.get_issue(int(number))
            except GithubException as e:
                raise IssueTrackerError("fetch_issue", f"Could not fetch issue #{number}: {e}") from e
            issues.append(
                SwarmChildIssue(
                    number=f"#{number}",
                    title=issue.title,
                    body=issue.body or "",
                    url=issue.html_url,
                )
            )
            logger.debug(f"Fetched issue #{number}: {issue.title}")
        return issues
