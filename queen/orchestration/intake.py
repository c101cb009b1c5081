"""
Implementation intake for pull requests.

Decides whether an open PR becomes an active implementation (labeled
`implementation`) for the ready issues it closes, enforces the per-issue
PR cap, and handles PRs being closed or merged.

Anti-gaming guard: a PR must show author activity (a commit, a human
comment, or a body edit) at or after the moment its issue became ready.
A PR staged during discussion and left untouched cannot claim a slot
unless a configured intake rule grants an exception.

Usage:
    from queen.orchestration.intake import ImplementationIntake

    intake = ImplementationIntake(client, LeaderboardService(client))
    result = intake.process(pr_ref, repo_config, IntakeTrigger.OPENED)
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from queen.config import messages
from queen.config.repo_config import RepoConfig
from queen.models.governance import IntakeTrigger, IssueRef, Label
from queen.orchestration.governance import GovernanceService
from queen.orchestration.leaderboard import LeaderboardService
from queen.orchestration.metadata import (
    NotificationType,
    build_notification_comment,
    is_notification_comment,
)
from queen.utils.closing_keywords import has_same_repo_closing_keyword_ref
from queen.utils.logging import get_logger

logger = get_logger(__name__)


class IntakeStatus:
    SKIPPED_ALREADY_LABELED = "skipped-already-labeled"
    NO_LINKED_ISSUES = "no-linked-issues"
    NOT_READY = "not-ready"
    BLOCKED = "blocked"
    NO_ROOM = "no-room"
    LIMIT_REACHED = "limit-reached"
    ACCEPTED = "accepted"


@dataclass
class IntakeResult:
    """
    Overall intake status plus the per-issue decisions behind it.

    Attributes:
        status: ACCEPTED if any issue accepted the PR, otherwise the most
            significant reason it was not.
        issues: Linked issue number -> IntakeStatus value.
    """

    status: str
    issues: dict[int, str] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.status == IntakeStatus.ACCEPTED


def is_activation_after_ready(activation: datetime, ready_at: datetime) -> bool:
    """Activity exactly at the ready time counts."""
    return activation >= ready_at


class ImplementationIntake:
    """
    Intake engine for implementation PRs.

    Args:
        client: GitHubClient.
        leaderboard: LeaderboardService used for the PR cap and rankings.
        app_id: The bot's GitHub App id (defaults to the client's).
        governance: GovernanceService for the ready -> implemented
            transition on merge.
        link_retry_delay: Seconds to wait before re-reading closing
            references of a freshly opened PR.
        sleep: Sleep function (tests pass a no-op).
    """

    def __init__(
        self,
        client,
        leaderboard: Optional[LeaderboardService] = None,
        app_id: Optional[int] = None,
        governance: Optional[GovernanceService] = None,
        link_retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._app_id = app_id if app_id is not None else getattr(client, "app_id", None)
        self._leaderboard = leaderboard or LeaderboardService(client, self._app_id)
        self._governance = governance or GovernanceService(client, self._app_id)
        self._link_retry_delay = link_retry_delay
        self._sleep = sleep

    # ========================
    # Linked Issues
    # ========================

    def resolve_opened_links(self, pr_ref: IssueRef, body: Optional[str]) -> list:
        """
        Read the closing references of a just-opened PR.

        GitHub indexes closing references shortly after the PR is created.
        If none are visible yet but the body has closing keywords for this
        repository, wait once and read again. A PR with no references and
        no closing keywords gets a note asking for a linked issue.
        """
        linked = self._client.get_linked_issues(pr_ref)
        if linked:
            return linked

        has_keyword = has_same_repo_closing_keyword_ref(body, pr_ref.owner, pr_ref.repo)
        if has_keyword:
            logger.info(
                "PR %s has closing keywords but no linked issues; retrying in %.1fs",
                pr_ref,
                self._link_retry_delay,
            )
            self._sleep(self._link_retry_delay)
            linked = self._client.get_linked_issues(pr_ref)
            if linked:
                logger.info("Resolved %d linked issue(s) for %s on retry", len(linked), pr_ref)
            else:
                logger.warning(
                    "PR %s still has no linked issues after retry; not posting a warning", pr_ref
                )
            return linked

        self._client.create_comment(pr_ref, messages.PR_NO_LINKED_ISSUE)
        logger.info("PR %s has no linked issues and no closing keywords; posted note", pr_ref)
        return []

    # ========================
    # Intake
    # ========================

    def _has_notification(
        self, ref: IssueRef, notification_type: str, issue_number: Optional[int] = None
    ) -> bool:
        return any(
            is_notification_comment(
                c.body,
                self._app_id,
                c.performed_via_app_id,
                notification_type=notification_type,
                issue_number=issue_number,
            )
            for c in self._client.list_comments(ref)
        )

    def process(
        self,
        pr_ref: IssueRef,
        config: RepoConfig,
        trigger: IntakeTrigger,
        linked_issues: Optional[list] = None,
        edited_at: Optional[datetime] = None,
    ) -> IntakeResult:
        """
        Run intake for one PR against each issue it closes.

        Args:
            pr_ref: The pull request.
            config: Repository config snapshot.
            trigger: opened, updated or edited. Explanatory comments for
                not-ready and needs-update cases are only posted on opened.
            linked_issues: Closing references, if the caller already read them.
            edited_at: Time of a PR body edit reported by the webhook.
        """
        trigger = IntakeTrigger(trigger)
        pr_config = config.governance.pr
        if linked_issues is None:
            linked_issues = self._client.get_linked_issues(pr_ref)
        if not linked_issues:
            return IntakeResult(IntakeStatus.NO_LINKED_ISSUES)

        pr = self._client.get_pull_request(pr_ref)
        if Label.IMPLEMENTATION in pr.labels:
            logger.debug("PR %s already an implementation, skipping intake", pr_ref)
            return IntakeResult(IntakeStatus.SKIPPED_ALREADY_LABELED)

        activation = self._client.get_latest_author_activity(pr_ref, pr.created_at)
        if edited_at is not None:
            activation = max(activation, edited_at)

        ready_numbers = [
            i.number for i in linked_issues if Label.READY_TO_IMPLEMENT in i.labels
        ]
        active_by_issue = (
            self._leaderboard.get_implementation_prs_by_issue(pr_ref, ready_numbers)
            if ready_numbers
            else {}
        )

        result = IntakeResult(IntakeStatus.NOT_READY)
        approvers: Optional[set[str]] = None
        welcomed = False

        for issue in linked_issues:
            issue_ref = pr_ref.with_number(issue.number)

            if Label.READY_TO_IMPLEMENT not in issue.labels:
                result.issues[issue.number] = IntakeStatus.NOT_READY
                if trigger == IntakeTrigger.OPENED:
                    self._client.create_comment(pr_ref, messages.issue_not_ready(issue.number))
                continue

            ready_at = self._client.get_label_added_time(issue_ref, Label.READY_TO_IMPLEMENT)
            if ready_at is None:
                logger.warning(
                    "Ready label time missing for %s; skipping PR %s", issue_ref, pr_ref
                )
                result.issues[issue.number] = IntakeStatus.BLOCKED
                continue

            if not is_activation_after_ready(activation, ready_at):
                granted = False
                for rule in pr_config.intake:
                    if rule.method == "auto":
                        logger.info("PR %s activated via auto intake for %s", pr_ref, issue_ref)
                        granted = True
                        break
                    if rule.method == "approval":
                        if approvers is None:
                            approvers = self._client.get_approver_logins(pr_ref)
                        trusted = sum(1 for r in pr_config.trusted_reviewers if r in approvers)
                        if trusted >= rule.min_approvals:
                            logger.info(
                                "PR %s activated via trusted approval: %d of %d for %s",
                                pr_ref,
                                trusted,
                                rule.min_approvals,
                                issue_ref,
                            )
                            granted = True
                            break
                    # "update" cannot grant: the timing check already failed

                if not granted:
                    result.issues[issue.number] = IntakeStatus.BLOCKED
                    if trigger == IntakeTrigger.OPENED:
                        self._client.create_comment(
                            pr_ref, messages.issue_ready_needs_update(issue.number)
                        )
                    continue

            others = [
                p.number for p in active_by_issue.get(issue.number, []) if p.number != pr_ref.number
            ]
            total_if_accepted = len(others) + 1
            if total_if_accepted > pr_config.max_prs_per_issue:
                if trigger == IntakeTrigger.OPENED:
                    self._client.create_comment(
                        pr_ref, messages.pr_limit_reached(pr_config.max_prs_per_issue, others)
                    )
                    self._client.close_pull_request(pr_ref)
                    result.issues[issue.number] = IntakeStatus.LIMIT_REACHED
                else:
                    self._client.create_comment(
                        pr_ref, messages.pr_no_room_yet(pr_config.max_prs_per_issue, others)
                    )
                    result.issues[issue.number] = IntakeStatus.NO_ROOM
                logger.info(
                    "PR %s over the cap for %s (%d/%d)",
                    pr_ref,
                    issue_ref,
                    total_if_accepted,
                    pr_config.max_prs_per_issue,
                )
                result.status = self._overall(result)
                return result

            self._accept(pr_ref, issue_ref, total_if_accepted, linked_issues, welcomed)
            welcomed = True
            result.issues[issue.number] = IntakeStatus.ACCEPTED

        result.status = self._overall(result)
        return result

    @staticmethod
    def _overall(result: IntakeResult) -> str:
        statuses = set(result.issues.values())
        for status in (
            IntakeStatus.ACCEPTED,
            IntakeStatus.LIMIT_REACHED,
            IntakeStatus.NO_ROOM,
            IntakeStatus.BLOCKED,
        ):
            if status in statuses:
                return status
        return IntakeStatus.NOT_READY

    def _accept(
        self,
        pr_ref: IssueRef,
        issue_ref: IssueRef,
        total_prs: int,
        linked_issues: list,
        welcomed: bool,
    ) -> None:
        if not welcomed:
            self._client.add_labels(pr_ref, [Label.IMPLEMENTATION])
            logger.info("Accepted PR %s as an implementation of %s", pr_ref, issue_ref)
            self._leaderboard.recalculate_for_pr(pr_ref, linked_issues)

            if not self._has_notification(pr_ref, NotificationType.IMPLEMENTATION_WELCOME):
                self._client.create_comment(
                    pr_ref,
                    build_notification_comment(
                        messages.implementation_welcome(issue_ref.number),
                        issue_ref.number,
                        NotificationType.IMPLEMENTATION_WELCOME,
                    ),
                )

        if not self._has_notification(issue_ref, NotificationType.ISSUE_NEW_PR, pr_ref.number):
            self._client.create_comment(
                issue_ref,
                build_notification_comment(
                    messages.issue_new_pr(pr_ref.number, total_prs),
                    pr_ref.number,
                    NotificationType.ISSUE_NEW_PR,
                ),
            )

    # ========================
    # Closed PRs
    # ========================

    def handle_pr_closed(self, pr_ref: IssueRef, merged: bool) -> list[int]:
        """
        Clean up after a PR is closed.

        Closed without merge: drop its `implementation` label and refresh the
        leaderboards. Merged: every ready issue it closes becomes
        implemented, and competing PRs for those issues are closed as
        superseded.

        Returns:
            Issue numbers marked implemented.
        """
        if not merged:
            logger.info("PR %s closed without merge, cleaning up", pr_ref)
            self._client.remove_label(pr_ref, Label.IMPLEMENTATION)
            self._leaderboard.recalculate_for_pr(pr_ref)
            return []

        logger.info("Processing merged PR %s", pr_ref)
        linked = self._client.get_linked_issues(pr_ref)
        self._client.remove_label(pr_ref, Label.IMPLEMENTATION)

        implemented = []
        for issue in linked:
            if Label.READY_TO_IMPLEMENT not in issue.labels:
                continue
            issue_ref = pr_ref.with_number(issue.number)
            self._governance.transition(
                issue_ref,
                Label.READY_TO_IMPLEMENT,
                Label.IMPLEMENTED,
                messages.issue_implemented(pr_ref.number),
                close=True,
                close_reason="completed",
            )
            implemented.append(issue.number)

            for competing in self._client.get_open_prs_for_issue(issue_ref):
                if competing.number == pr_ref.number:
                    continue
                competing_ref = pr_ref.with_number(competing.number)
                self._client.create_comment(competing_ref, messages.pr_superseded(pr_ref.number))
                self._client.close_pull_request(competing_ref)
                self._client.remove_label(competing_ref, Label.IMPLEMENTATION)
                logger.info("Closed competing PR %s", competing_ref)
        return implemented
