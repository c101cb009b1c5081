"""
Implementation leaderboard: one ranked comment per ready issue.

For every issue in phase:ready-to-implement, the active implementation
PRs (open, closing the issue, labeled `implementation`) are ranked by
approval count and published as a single bot comment that is edited in
place on every recalculation.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, TypeVar

from queen.config.messages import SIGNATURE, Signatures
from queen.models.governance import IssueRef, Label
from queen.orchestration.metadata import build_leaderboard_comment, is_leaderboard_comment
from queen.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Concurrent GitHub reads per batch
APPROVAL_FETCH_CONCURRENCY = 3

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class LeaderboardEntry:
    number: int
    title: str
    author: str
    approvals: int


def format_leaderboard(entries: list[LeaderboardEntry]) -> str:
    """Render the leaderboard Markdown (approvals desc, then PR number asc)."""
    header = "| PR | Author | Approvals |\n|----|--------|-----------|"

    if not entries:
        return f"""{Signatures.LEADERBOARD}

No linked PRs are eligible for the implementation leaderboard yet.

Next steps:
- Open a PR that links this issue using a closing keyword (e.g., `Fixes #<issue-number>`).
- If your PR was opened before the issue became ready to implement, add a new commit (or leave a comment) to activate it.

{header}

Best implementation gets merged.{SIGNATURE}"""

    ranked = sorted(entries, key=lambda e: (-e.approvals, e.number))
    rows = "\n".join(f"| #{e.number} | @{e.author} | {e.approvals} |" for e in ranked)
    return f"""{Signatures.LEADERBOARD}

{header}
{rows}

Want your PR to rise to the top? Keep changes high-quality, respond quickly to reviews, and make sure checks pass.

Best implementation gets merged.{SIGNATURE}"""


def run_in_batches(
    fn: Callable[[T], R], items: Iterable[T], batch_size: int = APPROVAL_FETCH_CONCURRENCY
) -> list[R]:
    """
    Apply fn to items concurrently, batch_size at a time.

    Every call in a batch completes before the next batch starts. Results
    keep input order.
    """
    items = list(items)
    results: list[R] = []
    if not items:
        return results
    with ThreadPoolExecutor(max_workers=batch_size) as executor:
        for start in range(0, len(items), batch_size):
            results.extend(executor.map(fn, items[start:start + batch_size]))
    return results


class LeaderboardService:
    """
    Maintains leaderboard comments.

    Args:
        client: GitHubClient.
        app_id: The bot's GitHub App id; only leaderboard comments posted
            through it are edited.
    """

    def __init__(self, client, app_id: Optional[int] = None):
        self._client = client
        self._app_id = app_id if app_id is not None else getattr(client, "app_id", None)

    # ========================
    # Active Implementations
    # ========================

    def get_implementation_prs_by_issue(
        self,
        repo_ref: IssueRef,
        issue_numbers: Iterable[int],
        ensure_pr_number: Optional[int] = None,
        linked_issues_cache: Optional[dict] = None,
    ) -> dict[int, list]:
        """
        Map each issue number to its active implementation PRs.

        Candidates come from the label search, plus a direct label check of
        `ensure_pr_number` since the search index lags freshly added labels.
        Candidates that fail to load are logged and skipped.

        Args:
            repo_ref: Any reference in the repository.
            issue_numbers: Ready issues to resolve.
            ensure_pr_number: PR to include even if the search missed it.
            linked_issues_cache: PR number -> linked issues already read.

        Returns:
            Issue number -> PullRequestData list, de-duplicated by PR number.
        """
        wanted = list(dict.fromkeys(issue_numbers))
        results: dict[int, list] = {n: [] for n in wanted}
        if not wanted:
            return results

        candidates = {
            pr.number
            for pr in self._client.list_open_prs_with_label(repo_ref.full_name, Label.IMPLEMENTATION)
        }
        if ensure_pr_number is not None and ensure_pr_number not in candidates:
            ensured = self._client.get_pull_request(repo_ref.with_number(ensure_pr_number))
            if Label.IMPLEMENTATION in ensured.labels:
                candidates.add(ensure_pr_number)
                logger.debug("PR #%d added via direct label check (not yet indexed)", ensure_pr_number)

        cache = linked_issues_cache if linked_issues_cache is not None else {}
        wanted_set = set(wanted)

        def resolve(pr_number: int):
            try:
                pr_ref = repo_ref.with_number(pr_number)
                if pr_number not in cache:
                    cache[pr_number] = self._client.get_linked_issues(pr_ref)
                linked = [i.number for i in cache[pr_number] if i.number in wanted_set]
                if not linked:
                    return None
                pr = self._client.get_pull_request(pr_ref)
                if pr.merged or not pr.is_open:
                    return None
                return pr, linked
            except Exception as e:
                # One unreadable PR must not drop the other candidates
                logger.warning("Skipping candidate PR #%d: %s", pr_number, str(e))
                return None

        ordered = sorted(candidates)
        logger.debug(
            "Found %d candidate implementation PRs for issues %s", len(ordered), wanted
        )
        for resolved in run_in_batches(resolve, ordered):
            if resolved is None:
                continue
            pr, linked = resolved
            for issue_number in linked:
                if all(existing.number != pr.number for existing in results[issue_number]):
                    results[issue_number].append(pr)
        return results

    def fetch_approval_scores(self, repo_ref: IssueRef, prs: list) -> list[LeaderboardEntry]:
        """Approval counts for each PR, three requests at a time."""

        def score(pr) -> LeaderboardEntry:
            approvers = self._client.get_approver_logins(repo_ref.with_number(pr.number))
            return LeaderboardEntry(pr.number, pr.title, pr.author, len(approvers))

        return run_in_batches(score, prs)

    # ========================
    # Comment Upsert
    # ========================

    def find_leaderboard_comment(self, issue_ref: IssueRef) -> Optional[int]:
        """
        Id of the most recent leaderboard comment posted by us, or None.

        More than one only appears after a race; the newest is authoritative.
        """
        found = [
            c
            for c in self._client.list_comments(issue_ref)
            if is_leaderboard_comment(c.body, self._app_id, c.performed_via_app_id)
        ]
        if not found:
            return None
        return max(found, key=lambda c: c.created_at or _EPOCH).id

    def upsert(self, issue_ref: IssueRef, entries: list[LeaderboardEntry]) -> None:
        body = build_leaderboard_comment(format_leaderboard(entries), issue_ref.number)
        existing = self.find_leaderboard_comment(issue_ref)
        if existing is not None:
            self._client.update_comment(issue_ref, existing, body)
        else:
            self._client.create_comment(issue_ref, body)

    def recalculate_for_pr(self, pr_ref: IssueRef, linked_issues: Optional[list] = None) -> list[int]:
        """
        Refresh the leaderboard of every ready issue the PR closes.

        Called after intake, on review changes and when a PR is closed.

        Returns:
            Issue numbers whose leaderboard was upserted.
        """
        if linked_issues is None:
            linked_issues = self._client.get_linked_issues(pr_ref)
        ready = [i for i in linked_issues if Label.READY_TO_IMPLEMENT in i.labels]
        if not ready:
            return []

        by_issue = self.get_implementation_prs_by_issue(
            pr_ref,
            [i.number for i in ready],
            ensure_pr_number=pr_ref.number,
            linked_issues_cache={pr_ref.number: linked_issues},
        )

        updated = []
        for issue in ready:
            entries = self.fetch_approval_scores(pr_ref, by_issue.get(issue.number, []))
            self.upsert(pr_ref.with_number(issue.number), entries)
            updated.append(issue.number)
            logger.info(
                "Updated leaderboard for %s with %d active PRs",
                pr_ref.with_number(issue.number),
                len(entries),
            )
        return updated
