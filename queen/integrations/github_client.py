"""
GitHub Client wrapper for the Hivemoot Queen governance bot.

Provides a narrow interface around PyGithub exposing exactly the issue and
pull request operations the governance engine needs: labels, comments,
close/lock, label history, reactions, reviews, commits and closing-issue
references. Every call goes through the classified retry in
queen.orchestration.retry, so transient failures (5xx, network resets,
rate limits) are retried with backoff while 404s and permission errors
surface immediately.

Usage:
    from queen.integrations.github_client import GitHubClient
    from queen.models.governance import IssueRef

    client = GitHubClient(token="ghs_...", app_id=12345)
    ref = IssueRef("hivemoot", "colony", 42)
    client.add_labels(ref, ["phase:discussion"])
    client.create_comment(ref, "Hello from the hive!")
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from github import Auth, Github, GithubException
from github.Issue import Issue as GithubIssue
from github.PullRequest import PullRequest as GithubPullRequest
from github.Repository import Repository as GithubRepository

from queen.config.settings import get_settings
from queen.models.governance import IssueRef
from queen.orchestration.retry import with_retry
from queen.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Upper bound on label events scanned (newest first) when reconstructing phase timers
MAX_TIMELINE_EVENTS = 1000

DECISIVE_REVIEW_STATES = frozenset({"APPROVED", "CHANGES_REQUESTED", "DISMISSED"})

LINKED_ISSUES_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      closingIssuesReferences(first: 50) {
        nodes {
          number
          title
          state
          labels(first: 100) { nodes { name } }
        }
      }
    }
  }
}
"""

OPEN_PRS_FOR_ISSUE_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    issue(number: $number) {
      closedByPullRequestsReferences(first: 50, includeClosedPrs: false) {
        nodes {
          number
          title
          state
          author { login }
          labels(first: 100) { nodes { name } }
        }
      }
    }
  }
}
"""


# ========================
# Data Classes
# ========================


@dataclass
class IssueData:
    """Simplified issue data returned by the client."""

    number: int
    title: str
    body: str
    state: str
    labels: list[str]
    user: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_pull_request: bool = False


@dataclass
class CommentData:
    """Simplified comment data returned by the client."""

    id: int
    body: str
    user: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    performed_via_app_id: Optional[int] = None
    user_type: Optional[str] = None

    @property
    def is_bot(self) -> bool:
        return (
            self.performed_via_app_id is not None
            or self.user_type == "Bot"
            or self.user.endswith("[bot]")
        )


@dataclass
class ReactionData:
    content: str
    user: Optional[str]


@dataclass
class PullRequestData:
    """Simplified pull request data returned by the client."""

    number: int
    title: str
    author: str
    state: str = "open"
    labels: list[str] = field(default_factory=list)
    merged: bool = False
    body: str = ""
    base_ref: Optional[str] = None
    default_branch: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state.lower() == "open"


@dataclass
class LinkedIssue:
    """An issue a PR closes via closing syntax."""

    number: int
    title: str
    state: str
    labels: list[str] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.state.lower() == "open"


@dataclass
class ClientStats:
    """Tracks client usage statistics."""

    api_calls: int = 0
    comments_posted: int = 0
    errors: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ========================
# GitHub Client
# ========================


class GitHubClient:
    """
    Wrapper around PyGithub for governance operations.

    Args:
        token: GitHub token. If None, reads from settings.
        app_id: The bot's GitHub App id (its actor identity for comments).
            If None, reads from settings.
        max_attempts: Attempts per call for transient failures (default: 3).
        base_delay: Base backoff delay in seconds (default: 1.0).
        max_delay: Maximum single backoff delay in seconds (default: 30.0).
        sleep: Sleep function used between retries (tests pass a no-op).
    """

    def __init__(
        self,
        token: Optional[str] = None,
        app_id: Optional[int] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._token = token or self._get_token_from_settings()
        if not self._token:
            raise ValueError(
                "GitHub token is required. Set GITHUB_TOKEN environment variable "
                "or pass token parameter."
            )

        self._auth = Auth.Token(self._token)
        self._github = Github(auth=self._auth)
        self.app_id = app_id if app_id is not None else self._get_app_id_from_settings()
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._stats = ClientStats()
        self._repo_cache: dict[str, GithubRepository] = {}

        logger.info(
            "GitHubClient initialized (max_attempts=%d, app_id=%s)", max_attempts, self.app_id
        )

    @classmethod
    def from_settings(cls) -> "GitHubClient":
        settings = get_settings()
        return cls(
            token=settings.github_token,
            app_id=settings.github_app_id,
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    @staticmethod
    def _get_token_from_settings() -> Optional[str]:
        settings = get_settings()
        if settings.has_github_token:
            return settings.github_token
        return None

    @staticmethod
    def _get_app_id_from_settings() -> Optional[int]:
        return get_settings().github_app_id

    # ========================
    # Repository Access
    # ========================

    def _get_repo(self, repo_full_name: str) -> GithubRepository:
        """Get a GitHub repository object, with caching."""
        if repo_full_name not in self._repo_cache:
            self._repo_cache[repo_full_name] = self._github.get_repo(repo_full_name)
        return self._repo_cache[repo_full_name]

    def _issue(self, ref: IssueRef) -> GithubIssue:
        self._stats.api_calls += 1
        return self._get_repo(ref.full_name).get_issue(ref.number)

    def _pull(self, ref: IssueRef) -> GithubPullRequest:
        self._stats.api_calls += 1
        return self._get_repo(ref.full_name).get_pull(ref.number)

    def get_file_content(self, repo_full_name: str, path: str) -> Optional[str]:
        """
        Read a text file from the repository's default branch.

        Returns:
            The decoded content, or None if the path does not exist or is a
            directory.
        """

        def _read() -> Optional[str]:
            self._stats.api_calls += 1
            try:
                content = self._get_repo(repo_full_name).get_contents(path)
            except GithubException as e:
                if e.status == 404:
                    return None
                raise
            if isinstance(content, list):
                logger.warning("%s in %s is a directory, not a file", path, repo_full_name)
                return None
            return content.decoded_content.decode("utf-8")

        return self._with_retry(_read, f"get_file_content({repo_full_name}:{path})")

    # ========================
    # Issue Operations
    # ========================

    def get_issue(self, ref: IssueRef) -> IssueData:
        return self._with_retry(lambda: self._to_issue_data(self._issue(ref)), f"get_issue({ref})")

    @staticmethod
    def _to_issue_data(issue: GithubIssue) -> IssueData:
        return IssueData(
            number=issue.number,
            title=issue.title,
            body=issue.body or "",
            state=issue.state,
            labels=[label.name for label in issue.labels],
            user=issue.user.login if issue.user else "unknown",
            created_at=_as_utc(issue.created_at),
            updated_at=_as_utc(issue.updated_at),
            is_pull_request=issue.pull_request is not None,
        )

    def list_open_issues(
        self, repo_full_name: str, label: Optional[str] = None
    ) -> list[IssueData]:
        """
        List open issues (pull requests excluded), optionally filtered by label.

        Args:
            repo_full_name: Repository in "owner/repo" format.
            label: Only issues carrying this label.
        """

        def _list() -> list[IssueData]:
            self._stats.api_calls += 1
            repo = self._get_repo(repo_full_name)
            kwargs: dict[str, Any] = {"state": "open"}
            if label:
                kwargs["labels"] = [label]
            return [
                self._to_issue_data(issue)
                for issue in repo.get_issues(**kwargs)
                if issue.pull_request is None
            ]

        return self._with_retry(_list, f"list_open_issues({repo_full_name}, label={label})")

    def add_labels(self, ref: IssueRef, labels: list[str]) -> None:
        self._with_retry(lambda: self._issue(ref).add_to_labels(*labels), f"add_labels({ref})")
        logger.info("Added labels %s to %s", labels, ref)

    def remove_label(self, ref: IssueRef, label: str) -> None:
        """Remove a label; a 404 (label already absent) is not an error."""

        def _remove() -> None:
            try:
                self._issue(ref).remove_from_labels(label)
            except GithubException as e:
                if e.status != 404:
                    raise
                logger.debug("Label '%s' already absent on %s", label, ref)

        self._with_retry(_remove, f"remove_label({ref}, {label})")

    def create_comment(self, ref: IssueRef, body: str) -> CommentData:
        """
        Post a comment on an issue or pull request.

        Raises:
            ValueError: If body is empty.
        """
        if not body or not body.strip():
            raise ValueError("Comment body cannot be empty")

        def _post() -> CommentData:
            comment = self._issue(ref).create_comment(body)
            self._stats.comments_posted += 1
            logger.info(
                "Posted comment on %s (comment_id=%d, length=%d)", ref, comment.id, len(body)
            )
            return self._to_comment_data(comment)

        return self._with_retry(_post, f"create_comment({ref})")

    def update_comment(self, ref: IssueRef, comment_id: int, body: str) -> None:
        self._with_retry(
            lambda: self._issue(ref).get_comment(comment_id).edit(body),
            f"update_comment({ref}, {comment_id})",
        )
        logger.info("Updated comment %d on %s", comment_id, ref)

    def list_comments(self, ref: IssueRef) -> list[CommentData]:
        """Get every comment on an issue or PR, oldest first."""
        return self._with_retry(
            lambda: [self._to_comment_data(c) for c in self._issue(ref).get_comments()],
            f"list_comments({ref})",
        )

    @staticmethod
    def _to_comment_data(comment: Any) -> CommentData:
        raw = getattr(comment, "raw_data", None) or {}
        app = raw.get("performed_via_github_app") or {}
        return CommentData(
            id=comment.id,
            body=comment.body or "",
            user=comment.user.login if comment.user else "unknown",
            user_type=comment.user.type if comment.user else None,
            created_at=_as_utc(comment.created_at),
            updated_at=_as_utc(comment.updated_at),
            performed_via_app_id=app.get("id"),
        )

    def close_issue(self, ref: IssueRef, reason: str = "completed") -> None:
        """Close an issue with a state reason (completed, not_planned)."""
        self._with_retry(
            lambda: self._issue(ref).edit(state="closed", state_reason=reason),
            f"close_issue({ref})",
        )
        logger.info("Closed %s (reason=%s)", ref, reason)

    def lock(self, ref: IssueRef, reason: str = "resolved") -> None:
        self._with_retry(lambda: self._issue(ref).lock(reason), f"lock({ref})")

    def unlock(self, ref: IssueRef) -> None:
        """Unlock an issue; a 422 (not locked) is not an error."""

        def _unlock() -> None:
            try:
                self._issue(ref).unlock()
            except GithubException as e:
                if e.status != 422:
                    raise
                logger.debug("%s was not locked", ref)

        self._with_retry(_unlock, f"unlock({ref})")

    def get_label_added_time(self, ref: IssueRef, label: str) -> Optional[datetime]:
        """
        Reconstruct when a label was most recently applied.

        Walks labeled/unlabeled events newest first and stops at the first
        one for this label: an add gives the time, a removal means the
        label is not in effect. Relabeling therefore restarts the phase
        timer, and the scan cap only ever drops the oldest history.

        Returns:
            The time of the latest add still in effect, or None.
        """

        def _scan() -> Optional[datetime]:
            for index, event in enumerate(self._issue(ref).get_events().reversed):
                if index >= MAX_TIMELINE_EVENTS:
                    logger.warning(
                        "Stopped scanning events on %s after %d", ref, MAX_TIMELINE_EVENTS
                    )
                    break
                if event.event not in ("labeled", "unlabeled"):
                    continue
                if event.label is None or event.label.name != label:
                    continue
                return _as_utc(event.created_at) if event.event == "labeled" else None
            return None

        return self._with_retry(_scan, f"get_label_added_time({ref}, {label})")

    # ========================
    # Reactions
    # ========================

    def get_comment_reactions(self, ref: IssueRef, comment_id: int) -> list[ReactionData]:
        return self._with_retry(
            lambda: [
                ReactionData(r.content, r.user.login if r.user else None)
                for r in self._issue(ref).get_comment(comment_id).get_reactions()
            ],
            f"get_comment_reactions({ref}, {comment_id})",
        )

    def get_issue_reactions(self, ref: IssueRef) -> list[ReactionData]:
        return self._with_retry(
            lambda: [
                ReactionData(r.content, r.user.login if r.user else None)
                for r in self._issue(ref).get_reactions()
            ],
            f"get_issue_reactions({ref})",
        )

    # ========================
    # Pull Request Operations
    # ========================

    def get_pull_request(self, ref: IssueRef) -> PullRequestData:
        def _get() -> PullRequestData:
            pr = self._pull(ref)
            return PullRequestData(
                number=pr.number,
                title=pr.title,
                author=pr.user.login if pr.user else "unknown",
                state=pr.state,
                labels=[label.name for label in pr.labels],
                merged=bool(pr.merged),
                body=pr.body or "",
                base_ref=pr.base.ref if pr.base else None,
                default_branch=pr.base.repo.default_branch if pr.base and pr.base.repo else None,
                created_at=_as_utc(pr.created_at),
                updated_at=_as_utc(pr.updated_at),
            )

        return self._with_retry(_get, f"get_pull_request({ref})")

    def list_open_prs_with_label(self, repo_full_name: str, label: str) -> list[PullRequestData]:
        """
        List open PRs carrying a label via the issues index.

        The index can lag a freshly added label by a few seconds.
        """

        def _list() -> list[PullRequestData]:
            self._stats.api_calls += 1
            repo = self._get_repo(repo_full_name)
            return [
                PullRequestData(
                    number=issue.number,
                    title=issue.title,
                    author=issue.user.login if issue.user else "unknown",
                    state=issue.state,
                    labels=[lbl.name for lbl in issue.labels],
                    created_at=_as_utc(issue.created_at),
                    updated_at=_as_utc(issue.updated_at),
                )
                for issue in repo.get_issues(state="open", labels=[label])
                if issue.pull_request is not None
            ]

        return self._with_retry(_list, f"list_open_prs_with_label({repo_full_name}, {label})")

    def close_pull_request(self, ref: IssueRef) -> None:
        self._with_retry(lambda: self._pull(ref).edit(state="closed"), f"close_pull_request({ref})")
        logger.info("Closed PR %s", ref)

    def get_latest_author_activity(self, ref: IssueRef, fallback: datetime) -> datetime:
        """
        Latest human activity on a PR: commits and non-bot comments.

        Args:
            ref: The pull request.
            fallback: Lower bound, normally the PR creation time.
        """

        def _latest() -> datetime:
            latest = _as_utc(fallback)
            for comment in self._issue(ref).get_comments():
                data = self._to_comment_data(comment)
                if data.is_bot or data.created_at is None:
                    continue
                latest = max(latest, data.created_at)
            for commit in self._pull(ref).get_commits():
                committer = commit.commit.committer
                if committer is not None and committer.date is not None:
                    latest = max(latest, _as_utc(committer.date))
            return latest

        return self._with_retry(_latest, f"get_latest_author_activity({ref})")

    def get_approver_logins(self, ref: IssueRef) -> set[str]:
        """
        Users whose most recent decisive review is APPROVED.

        COMMENTED reviews never change a reviewer's standing.
        """

        def _approvers() -> set[str]:
            latest: dict[str, tuple[datetime, str]] = {}
            for review in self._pull(ref).get_reviews():
                if review.user is None or review.state not in DECISIVE_REVIEW_STATES:
                    continue
                login = review.user.login.lower()
                submitted = _as_utc(review.submitted_at) or datetime.min.replace(tzinfo=timezone.utc)
                if login not in latest or submitted > latest[login][0]:
                    latest[login] = (submitted, review.state)
            return {login for login, (_, state) in latest.items() if state == "APPROVED"}

        return self._with_retry(_approvers, f"get_approver_logins({ref})")

    # ========================
    # Closing References (GraphQL)
    # ========================

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        self._stats.api_calls += 1
        _, data = self._github.requester.graphql_query(query, variables)
        return data.get("data") or {}

    def get_linked_issues(self, ref: IssueRef) -> list[LinkedIssue]:
        """Issues the PR closes via closing syntax (not mere mentions)."""

        def _query() -> list[LinkedIssue]:
            data = self._graphql(
                LINKED_ISSUES_QUERY,
                {"owner": ref.owner, "repo": ref.repo, "number": ref.number},
            )
            pr = (data.get("repository") or {}).get("pullRequest") or {}
            nodes = (pr.get("closingIssuesReferences") or {}).get("nodes") or []
            return [
                LinkedIssue(
                    number=node["number"],
                    title=node.get("title", ""),
                    state=node.get("state", "OPEN"),
                    labels=[lbl["name"] for lbl in (node.get("labels") or {}).get("nodes") or []],
                )
                for node in nodes
                if node
            ]

        return self._with_retry(_query, f"get_linked_issues({ref})")

    def get_open_prs_for_issue(self, ref: IssueRef) -> list[PullRequestData]:
        """Open PRs that close the issue via closing syntax."""

        def _query() -> list[PullRequestData]:
            data = self._graphql(
                OPEN_PRS_FOR_ISSUE_QUERY,
                {"owner": ref.owner, "repo": ref.repo, "number": ref.number},
            )
            issue = (data.get("repository") or {}).get("issue") or {}
            nodes = (issue.get("closedByPullRequestsReferences") or {}).get("nodes") or []
            return [
                PullRequestData(
                    number=node["number"],
                    title=node.get("title", ""),
                    author=(node.get("author") or {}).get("login", "ghost"),
                    state=node.get("state", "OPEN"),
                    labels=[lbl["name"] for lbl in (node.get("labels") or {}).get("nodes") or []],
                )
                for node in nodes
                if node and node.get("state", "OPEN").upper() == "OPEN"
            ]

        return self._with_retry(_query, f"get_open_prs_for_issue({ref})")

    # ========================
    # Retry Logic
    # ========================

    def _with_retry(self, operation: Callable[[], T], operation_name: str) -> T:
        """
        Execute an operation with classified retry.

        Raises:
            The original exception once it is non-retryable or attempts
            are exhausted.
        """
        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            return with_retry(
                operation,
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
                **kwargs,
            )
        except GithubException as e:
            self._stats.errors += 1
            logger.error(
                "%s: GitHub API error %s: %s",
                operation_name,
                e.status,
                str(e.data) if e.data else str(e),
            )
            raise

    # ========================
    # Client Management
    # ========================

    @property
    def stats(self) -> ClientStats:
        """Get client usage statistics."""
        return self._stats

    def close(self) -> None:
        """Close the GitHub client connection."""
        self._github.close()
        logger.info(
            "GitHubClient closed (api_calls=%d, comments_posted=%d, errors=%d)",
            self._stats.api_calls,
            self._stats.comments_posted,
            self._stats.errors,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return (
            f"GitHubClient(api_calls={self._stats.api_calls}, "
            f"comments_posted={self._stats.comments_posted})"
        )


# ========================
# Module-level convenience
# ========================


_global_client: Optional[GitHubClient] = None


def get_github_client() -> GitHubClient:
    """
    Get or create the process-wide GitHubClient.

    Raises:
        ValueError: If no GitHub token is configured.
    """
    global _global_client

    if _global_client is None:
        _global_client = GitHubClient.from_settings()
    return _global_client


def close_github_client() -> None:
    """Close the global GitHubClient instance."""
    global _global_client
    if _global_client is not None:
        _global_client.close()
        _global_client = None
