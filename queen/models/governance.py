"""
Governance domain types shared by the phase machine, intake and leaderboard.

An issue's governance state lives entirely in its labels and in
metadata-tagged bot comments on GitHub; these types only name that state.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class IssueRef:
    """Reference to an issue or pull request: (owner, repo, number)."""

    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def with_number(self, number: int) -> "IssueRef":
        """Reference another issue or PR in the same repository."""
        return IssueRef(self.owner, self.repo, number)

    @classmethod
    def from_full_name(cls, full_name: str, number: int) -> "IssueRef":
        owner, repo = full_name.split("/", 1)
        return cls(owner, repo, number)

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


class Label:
    """Label names the bot reads and writes."""

    DISCUSSION = "phase:discussion"
    VOTING = "phase:voting"
    EXTENDED_VOTING = "phase:extended-voting"
    READY_TO_IMPLEMENT = "phase:ready-to-implement"
    REJECTED = "rejected"
    INCONCLUSIVE = "inconclusive"
    IMPLEMENTED = "implemented"
    NEEDS_HUMAN = "blocked:human-help-needed"
    IMPLEMENTATION = "implementation"


# An open issue carrying none of these has never entered governance
PHASE_LABELS = frozenset({
    Label.DISCUSSION,
    Label.VOTING,
    Label.EXTENDED_VOTING,
    Label.READY_TO_IMPLEMENT,
    Label.REJECTED,
    Label.INCONCLUSIVE,
    Label.IMPLEMENTED,
    Label.NEEDS_HUMAN,
})


class Phase(str, Enum):
    """Timed governance phases evaluated by the sweep."""

    DISCUSSION = "discussion"
    VOTING = "voting"
    EXTENDED_VOTING = "extended_voting"

    @property
    def label(self) -> str:
        return {
            Phase.DISCUSSION: Label.DISCUSSION,
            Phase.VOTING: Label.VOTING,
            Phase.EXTENDED_VOTING: Label.EXTENDED_VOTING,
        }[self]


class VotingOutcome(str, Enum):
    """Result of closing a voting round."""

    READY_TO_IMPLEMENT = "phase:ready-to-implement"
    REJECTED = "rejected"
    INCONCLUSIVE = "inconclusive"
    NEEDS_MORE_DISCUSSION = "needs-more-discussion"
    NEEDS_HUMAN_INPUT = "needs-human-input"
    SKIPPED = "skipped"


class IntakeTrigger(str, Enum):
    """The PR event that asked for implementation intake."""

    OPENED = "opened"
    UPDATED = "updated"
    EDITED = "edited"
