"""
Data models for the Hivemoot Queen governance bot.

Provides:
- Governance references, labels and outcome enums
- GitHub webhook payload models
"""

from queen.models.governance import (
    IssueRef,
    IntakeTrigger,
    Label,
    Phase,
    PHASE_LABELS,
    VotingOutcome,
)
from queen.models.github import (
    GitHubComment,
    GitHubIssue,
    GitHubLabel,
    GitHubPullRequest,
    GitHubRepository,
    GitHubReview,
    GitHubUser,
    GitHubWebhookPayload,
)

__all__ = [
    # Governance models
    "IssueRef",
    "IntakeTrigger",
    "Label",
    "Phase",
    "PHASE_LABELS",
    "VotingOutcome",
    # GitHub models
    "GitHubComment",
    "GitHubIssue",
    "GitHubLabel",
    "GitHubPullRequest",
    "GitHubRepository",
    "GitHubReview",
    "GitHubUser",
    "GitHubWebhookPayload",
]
