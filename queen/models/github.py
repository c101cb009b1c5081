"""
Pydantic models for GitHub webhook payloads.

These models provide type-safe parsing of the parts of GitHub webhook
events that the event router reads. Unknown fields are ignored so the
models keep working as GitHub adds payload fields.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _label_names(labels) -> list[str]:
    if labels is None:
        return []
    return [
        label.get("name", "") if isinstance(label, dict) else str(label)
        for label in labels
    ]


class GitHubLabel(BaseModel):
    """A GitHub issue or PR label."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    name: str = Field(..., max_length=256)
    color: Optional[str] = None


class GitHubUser(BaseModel):
    """A GitHub user (issue author, sender, reviewer, etc.)."""

    model_config = ConfigDict(extra="ignore")

    login: str = Field(..., max_length=256)
    id: Optional[int] = None
    type: Optional[str] = None

    @property
    def is_bot(self) -> bool:
        """Bot accounts either report type Bot or carry a [bot] suffix."""
        return self.type == "Bot" or self.login.endswith("[bot]")


class GitHubRepository(BaseModel):
    """A GitHub repository reference."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    name: str = Field(..., max_length=256)
    full_name: str = Field(..., max_length=512)
    owner: Optional[GitHubUser] = None
    default_branch: str = "main"

    @property
    def owner_login(self) -> str:
        if self.owner is not None:
            return self.owner.login
        return self.full_name.split("/", 1)[0]


class GitHubIssue(BaseModel):
    """An issue (or the issue view of a PR) from a webhook payload."""

    model_config = ConfigDict(extra="ignore")

    number: int = Field(..., ge=1, description="Issue number")
    title: str = ""
    body: Optional[str] = None
    state: str = "open"
    labels: list[str] = Field(default_factory=list)
    user: Optional[GitHubUser] = None
    pull_request: Optional[dict] = Field(
        None, description="Present only when the issue is a pull request"
    )

    @field_validator("labels", mode="before")
    @classmethod
    def flatten_labels(cls, v):
        """Accept both label objects and bare label names."""
        return _label_names(v)

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class GitHubBranchRef(BaseModel):
    """The base or head ref of a pull request."""

    model_config = ConfigDict(extra="ignore")

    ref: str
    sha: Optional[str] = None


class GitHubPullRequest(BaseModel):
    """A pull request from a webhook payload."""

    model_config = ConfigDict(extra="ignore")

    number: int = Field(..., ge=1)
    title: str = ""
    body: Optional[str] = None
    state: str = "open"
    merged: bool = False
    labels: list[str] = Field(default_factory=list)
    user: Optional[GitHubUser] = None
    base: Optional[GitHubBranchRef] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("labels", mode="before")
    @classmethod
    def flatten_labels(cls, v):
        return _label_names(v)

    @field_validator("merged", mode="before")
    @classmethod
    def default_merged(cls, v):
        return bool(v)


class GitHubReview(BaseModel):
    """A pull request review from a webhook payload."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    state: str = ""
    user: Optional[GitHubUser] = None


class GitHubComment(BaseModel):
    """An issue comment from a webhook payload."""

    model_config = ConfigDict(extra="ignore")

    id: int
    body: Optional[str] = None
    user: Optional[GitHubUser] = None
    performed_via_github_app: Optional[dict] = None


class GitHubWebhookPayload(BaseModel):
    """
    Parsed GitHub webhook payload.

    Every event the router handles carries an action and a repository;
    the remaining sections are present depending on the event type.
    """

    model_config = ConfigDict(extra="ignore")

    action: Optional[str] = None
    repository: GitHubRepository
    sender: Optional[GitHubUser] = None
    issue: Optional[GitHubIssue] = None
    pull_request: Optional[GitHubPullRequest] = None
    review: Optional[GitHubReview] = None
    comment: Optional[GitHubComment] = None
    label: Optional[GitHubLabel] = None
    changes: dict = Field(default_factory=dict)

    @property
    def body_changed(self) -> bool:
        """True when an `edited` delivery changed the PR/issue body."""
        return "body" in self.changes
