"""Repository clone and pull-request publication."""

from agentwire.repo.git import (
    GitError,
    PullRequest,
    clone_repository,
    commit_push_and_open_pull_request,
    inject_token_into_github_url,
    parse_github_repo,
)

__all__ = [
    "GitError",
    "PullRequest",
    "clone_repository",
    "commit_push_and_open_pull_request",
    "inject_token_into_github_url",
    "parse_github_repo",
]
