"""Repository prelude and postlude.

Clones the target repository before the service starts and, when a session's
stream closes, commits any changes to a branch, pushes it and opens a draft
pull request through the GitHub REST API.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import httpx

from agentwire.engine.executor import CommandExecutor
from agentwire.logging import get_logger

log = get_logger("repo")

GITHUB_API_URL = "https://api.github.com"
BRANCH_PREFIX = "agentwire/"
COMMIT_AUTHOR_NAME = "agentwire"
COMMIT_AUTHOR_EMAIL = "agentwire@users.noreply.github.com"

_GITHUB_REPO_RE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")


class GitError(Exception):
    """A git command or repository API call failed."""


@dataclass
class PullRequest:
    url: str
    number: int


def inject_token_into_github_url(repo_url: str, token: str | None) -> str:
    """Embed an access token into an https GitHub URL.

    Example:
        >>> inject_token_into_github_url("https://github.com/o/r.git", "T")
        'https://x-access-token:T@github.com/o/r.git'
    """
    if not token:
        return repo_url
    if not repo_url.startswith("https://"):
        raise GitError("Only https:// Git URLs are supported for token injection")
    return repo_url.replace("https://", f"https://x-access-token:{token}@", 1)


def parse_github_repo(repo_url: str) -> tuple[str, str]:
    """Return (owner, repo) from a GitHub https or ssh URL."""
    match = _GITHUB_REPO_RE.search(repo_url)
    if not match:
        raise GitError(f"Unable to parse owner/repo from {repo_url}")
    return match.group(1), match.group(2)


def _redact(text: str, token: str | None) -> str:
    return text.replace(token, "***") if token else text


async def _git(
    executor: CommandExecutor,
    *args: str,
    cwd: str | Path,
    token: str | None = None,
) -> str:
    result = await executor.run(["git", *args], cwd=str(cwd))
    if not result.success:
        raise GitError(f"git {args[0]} failed: {_redact(result.output.strip(), token)}")
    return result.output


async def clone_repository(
    repo_url: str,
    workspace: str | Path,
    token: str | None = None,
    provider: str = "github",
    executor: CommandExecutor | None = None,
) -> Path:
    """Shallow-clone ``repo_url`` into ``<workspace>/repo``.

    With a GitHub token the clone is authenticated and origin keeps the
    authenticated URL for later pushes.

    Raises:
        GitError: If the clone fails.
    """
    executor = executor or CommandExecutor(timeout=600.0)
    workspace = Path(workspace)
    workspace.mkdir(parents=True, exist_ok=True)
    repo_dir = workspace / "repo"

    use_token = provider.lower() == "github" and bool(token)
    auth_url = inject_token_into_github_url(repo_url, token) if use_token else repo_url

    log.info("Cloning %s into %s", repo_url, repo_dir)
    await _git(executor, "clone", "--depth", "1", auth_url, str(repo_dir), cwd=workspace, token=token)

    if auth_url != repo_url:
        await _git(executor, "remote", "set-url", "origin", auth_url, cwd=repo_dir, token=token)

    return repo_dir


async def commit_push_and_open_pull_request(
    repo_dir: str | Path,
    session_id: str,
    *,
    repo_url: str,
    token: str | None,
    provider: str = "github",
    executor: CommandExecutor | None = None,
    client: httpx.AsyncClient | None = None,
    api_url: str = GITHUB_API_URL,
) -> PullRequest | None:
    """Publish the working tree's changes as a draft pull request.

    Returns None when there is nothing to publish or publishing is not
    possible (non-GitHub provider, no token).

    Raises:
        GitError: If a git command fails.
        httpx.HTTPError: If the GitHub API rejects a request.
    """
    if provider.lower() != "github":
        log.warning("Only the GitHub provider is supported; skipping pull request")
        return None
    if not token:
        log.warning("No GitHub access token; cannot push or open a pull request")
        return None

    executor = executor or CommandExecutor(timeout=300.0)

    status = await _git(executor, "status", "--porcelain", cwd=repo_dir)
    if not status.strip():
        log.info("No changes in %s; no pull request for session %s", repo_dir, session_id)
        return None

    original_branch = (await _git(executor, "rev-parse", "--abbrev-ref", "HEAD", cwd=repo_dir)).strip()
    branch = f"{BRANCH_PREFIX}{session_id}"

    await _git(executor, "config", "user.name", COMMIT_AUTHOR_NAME, cwd=repo_dir)
    await _git(executor, "config", "user.email", COMMIT_AUTHOR_EMAIL, cwd=repo_dir)
    await _git(executor, "checkout", "-b", branch, cwd=repo_dir)
    await _git(executor, "add", "--all", cwd=repo_dir)
    await _git(executor, "commit", "-m", f"agentwire changes for session {session_id}", cwd=repo_dir)
    await _git(executor, "push", "-u", "origin", branch, cwd=repo_dir, token=token)
    if original_branch and original_branch != "HEAD":
        await _git(executor, "checkout", original_branch, cwd=repo_dir)

    owner, repo = parse_github_repo(repo_url)
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=30.0)
    try:
        response = await http.get(f"{api_url}/repos/{owner}/{repo}", headers=headers)
        response.raise_for_status()
        base = response.json()["default_branch"]

        response = await http.post(
            f"{api_url}/repos/{owner}/{repo}/pulls",
            headers=headers,
            json={
                "title": f"agentwire changes ({session_id})",
                "head": branch,
                "base": base,
                "draft": True,
            },
        )
        response.raise_for_status()
        data = response.json()
    finally:
        if owns_client:
            await http.aclose()

    pr = PullRequest(url=data["html_url"], number=data["number"])
    log.info("Created draft PR #%d: %s", pr.number, pr.url)
    return pr
