"""
Vote tally over reactions on the current voting comment.

Each voter gets exactly one vote. A user who reacts with more than one of
the voting reactions has all of their votes discarded and is left out of
the voter set, but still counts as a participant for headcount-style
requirements that ignore valence.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from queen.models.governance import IssueRef
from queen.utils.logging import get_logger

logger = get_logger(__name__)

# GitHub reaction content -> VoteCounts attribute
VOTING_REACTIONS = {
    "+1": "thumbs_up",
    "-1": "thumbs_down",
    "confused": "confused",
    "eyes": "eyes",
}


@dataclass
class VoteCounts:
    thumbs_up: int = 0
    thumbs_down: int = 0
    confused: int = 0
    eyes: int = 0

    @property
    def total(self) -> int:
        return self.thumbs_up + self.thumbs_down + self.confused + self.eyes


@dataclass
class ValidatedVoteResult:
    """Counts from valid voters plus the voter and participant login sets."""

    votes: VoteCounts = field(default_factory=VoteCounts)
    voters: set[str] = field(default_factory=set)
    participants: set[str] = field(default_factory=set)


def tally_reactions(reactions: Iterable) -> ValidatedVoteResult:
    """
    Tally voting reactions.

    Args:
        reactions: Objects with `content` (GitHub reaction name) and `user`
            (login, or None for deleted accounts).

    Returns:
        ValidatedVoteResult where multi-reaction users contribute nothing
        to the counts, are absent from `voters`, and present in
        `participants`.
    """
    kinds_by_user: dict[str, set[str]] = defaultdict(set)
    for reaction in reactions:
        if reaction.content not in VOTING_REACTIONS or not reaction.user:
            continue
        kinds_by_user[reaction.user.lower()].add(reaction.content)

    result = ValidatedVoteResult()
    for login, kinds in kinds_by_user.items():
        result.participants.add(login)
        if len(kinds) != 1:
            continue
        (kind,) = kinds
        result.voters.add(login)
        attr = VOTING_REACTIONS[kind]
        setattr(result.votes, attr, getattr(result.votes, attr) + 1)

    return result


class VoteTally:
    """Reads reactions through the GitHub client and tallies them."""

    def __init__(self, client) -> None:
        self._client = client

    def count(self, ref: IssueRef, comment_id: int) -> ValidatedVoteResult:
        reactions = self._client.get_comment_reactions(ref, comment_id)
        result = tally_reactions(reactions)
        discarded = len(result.participants) - len(result.voters)
        if discarded:
            logger.info(
                "Discarded %d multi-reaction voter(s) on %s (comment_id=%d)",
                discarded,
                ref,
                comment_id,
            )
        return result

    def discussion_readiness(self, ref: IssueRef) -> set[str]:
        """Logins that reacted 👍 on the issue body."""
        return {
            reaction.user.lower()
            for reaction in self._client.get_issue_reactions(ref)
            if reaction.content == "+1" and reaction.user
        }
