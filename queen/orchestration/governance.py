"""
Proposal phase state machine.

Drives an issue through discussion -> voting -> (extended voting) -> a
decision. All state lives on GitHub: the phase label says where the issue
is, and the metadata-tagged voting comment carries the votes for the
current cycle.

`transition` is the only operation that moves a phase label. Its steps run
strictly in order (unlock, add label, comment, close, remove old label,
lock) so a failure part-way leaves the issue with both labels and the
reconciliation sweep can still find it through the old one.

Usage:
    from queen.orchestration.governance import GovernanceService

    governance = GovernanceService(client, app_id=settings.github_app_id)
    governance.start_discussion(ref)
    result = governance.process_phase(ref, Phase.VOTING, repo_config)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from queen.config import messages
from queen.config.repo_config import RepoConfig, VotingExit
from queen.models.governance import IssueRef, Label, Phase, VotingOutcome
from queen.orchestration.metadata import (
    ErrorCode,
    NotificationType,
    VotingCandidate,
    build_human_help_comment,
    build_notification_comment,
    build_voting_comment,
    build_welcome_comment,
    is_human_help_comment,
    is_notification_comment,
    is_voting_comment,
    parse_metadata,
    select_current,
)
from queen.orchestration.phases import (
    PhaseDecision,
    RequirementsShortfall,
    determine_outcome,
    early_decision_reason,
    enforce_voting_requirements,
    evaluate_phase,
    is_discussion_exit_eligible,
    is_exit_eligible,
    is_unanimous,
)
from queen.orchestration.retry import TransitionError
from queen.orchestration.votes import ValidatedVoteResult, VoteTally
from queen.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OutcomeTransition:
    """Label, message and state changes applied for one voting outcome."""

    label: str
    message: str
    close: bool = False
    lock: bool = False
    unlock: bool = False


@dataclass
class PhaseResult:
    """What process_phase decided and, for voting phases, the outcome."""

    decision: PhaseDecision
    outcome: Optional[VotingOutcome] = None

    @property
    def transitioned(self) -> bool:
        return self.decision.should_transition and self.outcome != VotingOutcome.SKIPPED


class GovernanceService:
    """
    Phase transitions for governance proposals.

    Args:
        client: GitHubClient (or any object with the same issue methods).
        app_id: The bot's GitHub App id. Only comments posted through this
            app are trusted as voting or notification records.
    """

    def __init__(self, client, app_id: Optional[int] = None):
        self._client = client
        self._app_id = app_id if app_id is not None else getattr(client, "app_id", None)
        self._votes = VoteTally(client)

    @property
    def app_id(self) -> Optional[int]:
        return self._app_id

    # ========================
    # Transition
    # ========================

    def transition(
        self,
        ref: IssueRef,
        from_label: str,
        to_label: str,
        comment: str,
        close: bool = False,
        close_reason: str = "not_planned",
        lock: bool = False,
        lock_reason: str = "resolved",
        unlock: bool = False,
    ) -> None:
        """
        Move an issue from one phase label to another.

        Raises:
            TransitionError: Naming the step that failed. Steps before it
                have been applied and are not rolled back.
        """
        steps = []
        if unlock and not lock:
            steps.append(("unlock", lambda: self._client.unlock(ref)))
        steps.append(("add_label", lambda: self._client.add_labels(ref, [to_label])))
        steps.append(("comment", lambda: self._client.create_comment(ref, comment)))
        if close:
            steps.append(("close", lambda: self._client.close_issue(ref, close_reason)))
        if from_label != to_label:
            steps.append(("remove_label", lambda: self._client.remove_label(ref, from_label)))
        if lock:
            steps.append(("lock", lambda: self._client.lock(ref, lock_reason)))

        for step, action in steps:
            try:
                action()
            except Exception as e:
                logger.error("Transition of %s failed at %s: %s", ref, step, str(e))
                raise TransitionError(ref, step, e) from e

        logger.info("Transitioned %s: %s -> %s", ref, from_label, to_label)

    # ========================
    # Discussion
    # ========================

    def start_discussion(self, ref: IssueRef) -> None:
        """Label a new issue for discussion and post the welcome comment."""
        self._client.add_labels(ref, [Label.DISCUSSION])
        self._client.create_comment(
            ref, build_welcome_comment(messages.ISSUE_WELCOME, ref.number)
        )
        logger.info("Started discussion on %s", ref)

    # ========================
    # Voting Comment
    # ========================

    def _voting_candidates(self, ref: IssueRef) -> list[VotingCandidate]:
        candidates = []
        for comment in self._client.list_comments(ref):
            if not is_voting_comment(comment.body, self._app_id, comment.performed_via_app_id):
                continue
            metadata = parse_metadata(comment.body)
            candidates.append(
                VotingCandidate(
                    comment_id=comment.id,
                    cycle=getattr(metadata, "cycle", None),
                    created_at=comment.created_at,
                )
            )
        return candidates

    def find_voting_comment(self, ref: IssueRef) -> Optional[VotingCandidate]:
        """The authoritative voting comment for the current cycle, if any."""
        return select_current(self._voting_candidates(ref))

    def _voting_comment_body(self, ref: IssueRef) -> str:
        cycle = len(self._voting_candidates(ref)) + 1
        return build_voting_comment(messages.VOTING_START, ref.number, cycle)

    def post_voting_comment(self, ref: IssueRef) -> str:
        """
        Post the voting comment on an issue already labeled for voting.

        Does not touch labels.

        Returns:
            "posted", or "skipped" if a voting comment already exists.
        """
        if self.find_voting_comment(ref) is not None:
            logger.info("Voting comment already exists on %s, skipping", ref)
            return "skipped"

        self._client.create_comment(ref, self._voting_comment_body(ref))
        logger.info("Posted voting comment on %s", ref)
        return "posted"

    def transition_to_voting(self, ref: IssueRef) -> None:
        """Close discussion and open a new voting cycle."""
        self.transition(ref, Label.DISCUSSION, Label.VOTING, self._voting_comment_body(ref))

    # ========================
    # Closing Votes
    # ========================

    def _read_votes(self, ref: IssueRef) -> Optional[ValidatedVoteResult]:
        current = self.find_voting_comment(ref)
        if current is None:
            return None
        return self._votes.count(ref, current.comment_id)

    def _decide(
        self, exit: Optional[VotingExit], validated: ValidatedVoteResult
    ) -> tuple[VotingOutcome, Optional[RequirementsShortfall]]:
        shortfall = enforce_voting_requirements(exit, validated)
        if shortfall is not None:
            return VotingOutcome.INCONCLUSIVE, shortfall
        if exit is not None and exit.requires == "unanimous" and not is_unanimous(validated.votes):
            return VotingOutcome.INCONCLUSIVE, None
        return determine_outcome(validated.votes), None

    def end_voting(
        self,
        ref: IssueRef,
        exit: Optional[VotingExit] = None,
        early_reason: Optional[str] = None,
        validated: Optional[ValidatedVoteResult] = None,
    ) -> VotingOutcome:
        """
        Close the first voting round and apply its outcome.

        Args:
            ref: The issue.
            exit: The exit being taken; its quorum and `requires` rules apply.
            early_reason: Set when closing before the deadline.
            validated: Votes already read by the caller.

        Returns:
            The outcome, or SKIPPED if the voting comment was missing.
        """
        return self._close_voting(
            ref, Label.VOTING, exit, early_reason, validated, final=False
        )

    def resolve_inconclusive(
        self,
        ref: IssueRef,
        exit: Optional[VotingExit] = None,
        early_reason: Optional[str] = None,
        validated: Optional[ValidatedVoteResult] = None,
    ) -> VotingOutcome:
        """Close extended voting. A second inconclusive result is final."""
        return self._close_voting(
            ref, Label.EXTENDED_VOTING, exit, early_reason, validated, final=True
        )

    def _close_voting(
        self,
        ref: IssueRef,
        from_label: str,
        exit: Optional[VotingExit],
        early_reason: Optional[str],
        validated: Optional[ValidatedVoteResult],
        final: bool,
    ) -> VotingOutcome:
        if validated is None:
            validated = self._read_votes(ref)
        if validated is None:
            self._handle_missing_voting_comment(ref)
            return VotingOutcome.SKIPPED

        outcome, shortfall = self._decide(exit, validated)
        plan = self._outcome_plan(outcome, validated, shortfall, final)

        message = plan.message
        if early_reason and shortfall is None and outcome != VotingOutcome.INCONCLUSIVE:
            message = messages.early_decision_prefix(early_reason) + message

        self.transition(
            ref,
            from_label,
            plan.label,
            message,
            close=plan.close,
            close_reason="not_planned",
            lock=plan.lock,
            lock_reason="resolved",
            unlock=plan.unlock,
        )
        logger.info("Voting closed on %s: %s", ref, outcome.value)
        return outcome

    @staticmethod
    def _outcome_plan(
        outcome: VotingOutcome,
        validated: ValidatedVoteResult,
        shortfall: Optional[RequirementsShortfall],
        final: bool,
    ) -> OutcomeTransition:
        votes = validated.votes
        if outcome == VotingOutcome.READY_TO_IMPLEMENT:
            # Stays unlocked so leaderboard comments can still be posted
            text = (
                messages.voting_end_inconclusive_resolved(votes, ready=True)
                if final
                else messages.voting_end_ready(votes)
            )
            return OutcomeTransition(Label.READY_TO_IMPLEMENT, text)
        if outcome == VotingOutcome.REJECTED:
            text = (
                messages.voting_end_inconclusive_resolved(votes, ready=False)
                if final
                else messages.voting_end_rejected(votes)
            )
            return OutcomeTransition(Label.REJECTED, text, close=True, lock=True)
        if outcome == VotingOutcome.NEEDS_MORE_DISCUSSION:
            return OutcomeTransition(
                Label.DISCUSSION, messages.voting_end_needs_more_discussion(votes), unlock=True
            )
        if outcome == VotingOutcome.NEEDS_HUMAN_INPUT:
            return OutcomeTransition(Label.NEEDS_HUMAN, messages.voting_end_needs_human_input(votes))

        if shortfall is not None:
            text = messages.voting_end_requirements_not_met(votes, shortfall.describe(), final)
        elif final:
            text = messages.voting_end_inconclusive_final(votes)
        else:
            text = messages.voting_end_inconclusive(votes)
        if final:
            return OutcomeTransition(Label.INCONCLUSIVE, text, close=True, lock=True)
        return OutcomeTransition(Label.EXTENDED_VOTING, text)

    # ========================
    # Missing Voting Comment
    # ========================

    def has_human_help_comment(self, ref: IssueRef, error_code: str) -> bool:
        return any(
            is_human_help_comment(
                c.body, self._app_id, c.performed_via_app_id, error_code=error_code
            )
            for c in self._client.list_comments(ref)
        )

    def _handle_missing_voting_comment(self, ref: IssueRef) -> None:
        """Re-post the voting comment, or ask a human for help if that fails."""
        try:
            result = self.post_voting_comment(ref)
            if result == "posted":
                logger.info("Self-healed missing voting comment on %s", ref)
            else:
                logger.info("Voting comment already present on %s (concurrent post)", ref)
            return
        except Exception as e:
            logger.warning("Self-heal failed on %s: %s. Asking for human help.", ref, str(e))

        error_code = ErrorCode.VOTING_COMMENT_NOT_FOUND
        if self.has_human_help_comment(ref, error_code):
            logger.info("Human help already requested on %s, skipping", ref)
            return

        self._client.create_comment(
            ref,
            build_human_help_comment(messages.VOTING_COMMENT_NOT_FOUND, ref.number, error_code),
        )
        try:
            self._client.add_labels(ref, [Label.NEEDS_HUMAN])
        except Exception as e:
            # The comment is what matters; the label only helps issue lists
            logger.warning("Failed to add %s to %s: %s", Label.NEEDS_HUMAN, ref, str(e))
        logger.warning("Posted human help request on %s: %s", ref, error_code)

    # ========================
    # Timed Phase Processing
    # ========================

    def process_phase(
        self,
        ref: IssueRef,
        phase: Phase,
        config: RepoConfig,
        now: Optional[datetime] = None,
    ) -> PhaseResult:
        """
        Evaluate one issue in a timed phase and transition it if due.

        Args:
            ref: The issue.
            phase: The phase the issue is labeled with.
            config: Repository config snapshot for this sweep.
            now: Evaluation time (defaults to now, UTC).
        """
        now = now or datetime.now(timezone.utc)
        labeled_at = self._client.get_label_added_time(ref, phase.label)
        proposals = config.governance.proposals

        if phase == Phase.DISCUSSION:
            exits = proposals.discussion.exits
            readiness: dict[str, set[str]] = {}

            def discussion_check(exit) -> bool:
                if "users" not in readiness:
                    readiness["users"] = self._votes.discussion_readiness(ref)
                return is_discussion_exit_eligible(exit, readiness["users"])

            decision = evaluate_phase(now, labeled_at, exits, discussion_check)
            self._log_decision(ref, phase, decision)
            if decision.should_transition:
                self.transition_to_voting(ref)
            return PhaseResult(decision)

        phase_config = proposals.voting if phase == Phase.VOTING else proposals.extended_voting
        cached: dict[str, Optional[ValidatedVoteResult]] = {}

        def votes() -> Optional[ValidatedVoteResult]:
            if "votes" not in cached:
                cached["votes"] = self._read_votes(ref)
            return cached["votes"]

        def voting_check(exit) -> bool:
            validated = votes()
            return validated is not None and is_exit_eligible(exit, validated)

        decision = evaluate_phase(now, labeled_at, phase_config.exits, voting_check)
        self._log_decision(ref, phase, decision)
        if not decision.should_transition:
            return PhaseResult(decision)

        early_reason = (
            early_decision_reason(decision.exit) if decision.kind == "early" else None
        )
        close = self.end_voting if phase == Phase.VOTING else self.resolve_inconclusive
        outcome = close(ref, decision.exit, early_reason, cached.get("votes"))

        if outcome == VotingOutcome.READY_TO_IMPLEMENT:
            self.notify_pending_prs(ref)
        return PhaseResult(decision, outcome)

    @staticmethod
    def _log_decision(ref: IssueRef, phase: Phase, decision: PhaseDecision) -> None:
        if decision.kind == "unknown":
            logger.warning("%s: could not determine when '%s' was added", ref, phase.label)
        elif decision.kind == "manual":
            logger.debug("%s: %s has only manual exits", ref, phase.value)
        elif decision.kind == "wait":
            remaining = int(decision.remaining_seconds or 0)
            logger.debug(
                "%s: %dm %ds remaining in %s", ref, remaining // 60, remaining % 60, phase.value
            )
        else:
            logger.info("Transitioning %s out of %s (%s)", ref, phase.value, decision.kind)

    # ========================
    # Pending PR Notification
    # ========================

    def notify_pending_prs(self, ref: IssueRef) -> int:
        """
        Tell authors of open PRs closing this issue that voting passed.

        Notification only: PRs are not labeled here. An author must push
        or comment after the ready decision to pass intake. Best-effort.

        Returns:
            Number of PRs notified.
        """
        notified = 0
        try:
            for pr in self._client.get_open_prs_for_issue(ref):
                if Label.IMPLEMENTATION in pr.labels:
                    continue
                pr_ref = ref.with_number(pr.number)
                already = any(
                    is_notification_comment(
                        c.body,
                        self._app_id,
                        c.performed_via_app_id,
                        notification_type=NotificationType.VOTING_PASSED,
                        issue_number=ref.number,
                    )
                    for c in self._client.list_comments(pr_ref)
                )
                if already:
                    logger.debug("PR %s already notified for %s", pr_ref, ref)
                    continue

                self._client.create_comment(
                    pr_ref,
                    build_notification_comment(
                        messages.issue_voting_passed(ref.number, pr.author),
                        ref.number,
                        NotificationType.VOTING_PASSED,
                    ),
                )
                notified += 1
                logger.info("Notified PR %s (@%s) that %s is ready", pr_ref, pr.author, ref)
        except Exception as e:
            logger.warning("Failed to notify PRs for %s: %s", ref, str(e))
        return notified
