"""
Integrations module for external service clients.

Provides the PyGithub wrapper used by every governance operation.
"""

from queen.integrations.github_client import (
    GitHubClient,
    IssueData,
    CommentData,
    PullRequestData,
    LinkedIssue,
    ClientStats,
    get_github_client,
    close_github_client,
)

__all__ = [
    "GitHubClient",
    "IssueData",
    "CommentData",
    "PullRequestData",
    "LinkedIssue",
    "ClientStats",
    "get_github_client",
    "close_github_client",
]
