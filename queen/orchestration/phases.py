"""
Pure phase rules: voting outcomes, exit eligibility and phase timing.

Nothing in this module talks to GitHub. GovernanceService feeds it vote
tallies, readiness sets and label timestamps and acts on the decisions.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from queen.config.repo_config import DiscussionExit, VotingExit
from queen.models.governance import VotingOutcome
from queen.orchestration.votes import ValidatedVoteResult, VoteCounts


# ========================
# Outcome Rules
# ========================


def determine_outcome(votes: VoteCounts) -> VotingOutcome:
    """
    Map vote counts to an outcome, in priority order:

    1. 👀 > 👍 + 👎 + 😕: the hive wants a human decision
    2. 😕 > 👍 + 👎: back to discussion
    3. 👍 > 👎: ready to implement
    4. 👎 > 👍: rejected
    5. otherwise inconclusive
    """
    if votes.eyes > votes.thumbs_up + votes.thumbs_down + votes.confused:
        return VotingOutcome.NEEDS_HUMAN_INPUT
    if votes.confused > votes.thumbs_up + votes.thumbs_down:
        return VotingOutcome.NEEDS_MORE_DISCUSSION
    if votes.thumbs_up > votes.thumbs_down:
        return VotingOutcome.READY_TO_IMPLEMENT
    if votes.thumbs_down > votes.thumbs_up:
        return VotingOutcome.REJECTED
    return VotingOutcome.INCONCLUSIVE


def is_unanimous(votes: VoteCounts) -> bool:
    """Exactly one reaction kind has votes."""
    counts = (votes.thumbs_up, votes.thumbs_down, votes.confused, votes.eyes)
    return sum(1 for c in counts if c > 0) == 1


def is_decisive(votes: VoteCounts) -> bool:
    """True unless the counts resolve to an 👍/👎 tie."""
    return determine_outcome(votes) != VotingOutcome.INCONCLUSIVE


@dataclass(frozen=True)
class RequirementsShortfall:
    """Why a vote did not meet an exit's participation requirements."""

    reason: str  # "quorum" | "required"
    min_voters: int
    valid_voters: int
    missing_required: tuple[str, ...] = ()
    required_needed: int = 0
    required_participated: int = 0

    def describe(self) -> str:
        if self.reason == "quorum":
            return (
                f"Quorum not reached: {self.valid_voters} valid voter(s), "
                f"{self.min_voters} required."
            )
        missing = ", ".join(f"@{login}" for login in self.missing_required)
        return (
            f"Required voters: {self.required_participated} of "
            f"{self.required_needed} participated. Still waiting on {missing}."
        )


def _required_participants(exit: VotingExit, validated: ValidatedVoteResult) -> list[str]:
    return [v for v in exit.required_voters.voters if v in validated.participants]


def enforce_voting_requirements(
    exit: Optional[VotingExit], validated: ValidatedVoteResult
) -> Optional[RequirementsShortfall]:
    """
    Check quorum and required-voter participation for an exit.

    Quorum counts valid voters only. Required voters count participants,
    so a required voter whose reactions were discarded still took part.

    Returns:
        None when the requirements hold (or there is no exit to enforce).
    """
    if exit is None:
        return None

    if len(validated.voters) < exit.min_voters:
        return RequirementsShortfall(
            reason="quorum",
            min_voters=exit.min_voters,
            valid_voters=len(validated.voters),
        )

    required = exit.required_voters
    if required.voters and required.min_count > 0:
        participated = _required_participants(exit, validated)
        if len(participated) < required.min_count:
            return RequirementsShortfall(
                reason="required",
                min_voters=exit.min_voters,
                valid_voters=len(validated.voters),
                missing_required=tuple(
                    v for v in required.voters if v not in validated.participants
                ),
                required_needed=required.min_count,
                required_participated=len(participated),
            )
    return None


def is_exit_eligible(exit: VotingExit, validated: ValidatedVoteResult) -> bool:
    """Whether an early voting exit may close voting now."""
    if enforce_voting_requirements(exit, validated) is not None:
        return False
    if exit.requires == "unanimous":
        return is_unanimous(validated.votes)
    return is_decisive(validated.votes)


def is_discussion_exit_eligible(exit: DiscussionExit, ready_users: set[str]) -> bool:
    """Whether an early discussion exit may open voting now."""
    if len(ready_users) < exit.min_ready:
        return False
    required = exit.required_ready
    if required.users and required.min_count > 0:
        ready_count = sum(1 for u in required.users if u in ready_users)
        if ready_count < required.min_count:
            return False
    return True


def early_decision_reason(exit: Optional[VotingExit]) -> str:
    if exit is None or not exit.required_voters.voters or exit.required_voters.min_count <= 0:
        return "quorum reached"
    needed = exit.required_voters.min_count
    total = len(exit.required_voters.voters)
    if needed >= total:
        return "all required voters have participated"
    if needed == 1:
        return "a required voter has participated"
    return f"{needed} of {total} required voters have participated"


# ========================
# Phase Timing
# ========================


WAIT = "wait"
MANUAL = "manual"
EARLY = "early"
DEADLINE = "deadline"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class PhaseDecision:
    """
    What to do with an issue in a timed phase.

    Attributes:
        kind: wait, manual, early, deadline or unknown.
        exit: The exit that fired (early and deadline only).
        remaining_seconds: Time until the deadline (wait only).
    """

    kind: str
    exit: Optional[object] = None
    remaining_seconds: Optional[float] = None

    @property
    def should_transition(self) -> bool:
        return self.kind in (EARLY, DEADLINE)


def evaluate_phase(
    now: datetime,
    labeled_at: Optional[datetime],
    exits: Sequence,
    early_check: Optional[Callable[[object], bool]] = None,
) -> PhaseDecision:
    """
    Decide whether an issue should leave its phase.

    Args:
        now: Current time (timezone-aware).
        labeled_at: When the phase label was last added, or None.
        exits: The phase's exits, sorted by after_minutes.
        early_check: Called with each elapsed early exit, in order; a True
            result closes the phase early. Not called at the deadline.

    Returns:
        PhaseDecision. At or past the deadline the transition is
        unconditional.
    """
    if labeled_at is None:
        return PhaseDecision(UNKNOWN)

    auto_exits = [e for e in exits if e.is_auto]
    if not auto_exits:
        return PhaseDecision(MANUAL)

    if labeled_at.tzinfo is None:
        labeled_at = labeled_at.replace(tzinfo=timezone.utc)
    elapsed = now - labeled_at
    deadline = auto_exits[-1]

    if elapsed >= deadline.after:
        return PhaseDecision(DEADLINE, exit=deadline)

    if early_check is not None:
        for exit in auto_exits[:-1]:
            if elapsed < exit.after:
                break
            if early_check(exit):
                return PhaseDecision(EARLY, exit=exit)

    return PhaseDecision(
        WAIT, remaining_seconds=(deadline.after - elapsed).total_seconds()
    )
