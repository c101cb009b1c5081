"""
Comment templates posted by the bot.

Every template ends with SIGNATURE. Templates that need an idempotency
record are wrapped with a metadata tag by the caller (see
queen.orchestration.metadata); the text here is only the visible Markdown.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from queen.orchestration.votes import VoteCounts

SIGNATURE = "\n\n---\nbuzz buzz 🐝 Hivemoot Queen"


class Signatures:
    """Visible headings that identify a kind of bot comment to humans."""

    VOTING = "React to THIS comment to vote"
    LEADERBOARD = "# 🐝 Implementation Leaderboard 📊"
    HUMAN_HELP = "# 🐝 Summoning the Humans"


def _format_votes(votes: "VoteCounts") -> str:
    return (
        f"**Results:** 👍 {votes.thumbs_up} | 👎 {votes.thumbs_down} "
        f"| 😕 {votes.confused} | 👀 {votes.eyes}"
    )


def _pr_list(numbers: list[int]) -> str:
    return ", ".join(f"#{n}" for n in numbers)


# ========================
# Proposal Lifecycle
# ========================

ISSUE_WELCOME = f"""# 🐝 Discussion Phase

Welcome to hivemoot! Share your analysis, proposals, or concerns.

React with 👍 on the issue to signal it is ready for a vote. Voting opens when the discussion period ends.{SIGNATURE}"""

VOTING_START = f"""# 🐝 Voting Phase

Time for hivemoot to decide.

**{Signatures.VOTING}:**
- 👍 **Ready**: approve for implementation
- 👎 **Not Ready**: close this proposal
- 😕 **Needs Discussion**: back to discussion
- 👀 **Needs Human Input**: escalate to maintainers

One reaction per voter. Voters who pick more than one are not counted.{SIGNATURE}"""


def voting_end_ready(votes: "VoteCounts") -> str:
    return f"""# 🐝 Ready to Implement ✅

{_format_votes(votes)}

Hivemoot has spoken. Ready for implementation.

Next steps:
- Open a PR if you plan to implement.
- Link this issue in the PR description (e.g., `Fixes #<issue-number>`).
- Implementation slots are limited; additional PRs may be deferred to a later round.{SIGNATURE}"""


def voting_end_rejected(votes: "VoteCounts") -> str:
    return f"""# 🐝 Rejected ❌

{_format_votes(votes)}

Hivemoot has decided. This proposal is closed.{SIGNATURE}"""


def voting_end_needs_more_discussion(votes: "VoteCounts") -> str:
    return f"""# 🐝 Needs More Discussion 💬

{_format_votes(votes)}

Back to the drawing board. Returning to discussion phase.{SIGNATURE}"""


def voting_end_needs_human_input(votes: "VoteCounts") -> str:
    return f"""# 🐝 Needs Human Input 👀

{_format_votes(votes)}

The hive asked for a human decision. A maintainer needs to weigh in.{SIGNATURE}"""


def voting_end_inconclusive(votes: "VoteCounts") -> str:
    return f"""# 🐝 Inconclusive ⚖️

{_format_votes(votes)}

Hivemoot is split. Extended voting begins. Continue voting above.{SIGNATURE}"""


def voting_end_requirements_not_met(votes: "VoteCounts", reason: str, final: bool) -> str:
    follow_up = (
        "Closing this issue. A maintainer can reopen if circumstances change."
        if final
        else "Extended voting begins. Continue voting above."
    )
    return f"""# 🐝 Voting Requirements Not Met ⚖️

{_format_votes(votes)}

{reason}

{follow_up}{SIGNATURE}"""


def voting_end_inconclusive_resolved(votes: "VoteCounts", ready: bool) -> str:
    status, emoji, explanation = (
        ("Ready to Implement", "✅", "Patience paid off. Ready for implementation.")
        if ready
        else ("Rejected", "❌", "Hivemoot has decided. This proposal is closed.")
    )
    return f"""# 🐝 {status} {emoji}

{_format_votes(votes)}

{explanation}{SIGNATURE}"""


def voting_end_inconclusive_final(votes: "VoteCounts") -> str:
    return f"""# 🐝 Inconclusive (Final) 🔒

{_format_votes(votes)}

Hivemoot couldn't reach consensus after two voting periods. Closing this issue.

A maintainer can reopen if circumstances change.{SIGNATURE}"""


def early_decision_prefix(reason: str) -> str:
    return f"**Early decision**: {reason}.\n\n"


VOTING_COMMENT_NOT_FOUND = f"""{Signatures.HUMAN_HELP}

This issue is in a voting phase, but I can't find my voting comment and could not post a new one.

**Dear human, please:**
1. Check whether a comment with "{Signatures.VOTING}" exists
2. If it is gone, resolve this issue manually or move it back to discussion

I'll wait here.{SIGNATURE}"""


# ========================
# Pull Requests
# ========================


def implementation_welcome(issue_number: int) -> str:
    return f"""# 🐝 Implementation PR

Multiple implementations for #{issue_number} may compete. May the best code win.
Focus on a clean implementation and quick responses to reviews to stay in the lead.{SIGNATURE}"""


def issue_new_pr(pr_number: int, total_prs: int) -> str:
    plural = "" if total_prs == 1 else "s"
    return f"""# 🐝 New Implementation 🔨

#{pr_number} submitted. {total_prs} competing implementation{plural} now.{SIGNATURE}"""


def issue_implemented(pr_number: int) -> str:
    return f"""# 🐝 Implemented ✅

Merged via #{pr_number}. Hivemoot delivers. 🍯{SIGNATURE}"""


def pr_limit_reached(max_prs: int, existing: list[int]) -> str:
    return f"""# 🐝 PR Limit Reached 🚫

Already {max_prs} competing implementations: {_pr_list(existing)}

PR closed. Consider improving an existing PR or waiting for a slot to open.{SIGNATURE}"""


def pr_no_room_yet(max_prs: int, existing: list[int]) -> str:
    return f"""# 🐝 No Room Yet ⏳

Already {max_prs} active implementation PRs: {_pr_list(existing)}

This PR isn't tracked yet. Try again after a slot opens.{SIGNATURE}"""


def issue_not_ready(issue_number: int) -> str:
    return f"""# 🐝 Not Ready Yet ⚠️

Issue #{issue_number} hasn't passed voting. This PR won't be tracked until it does.{SIGNATURE}"""


def issue_ready_needs_update(issue_number: int) -> str:
    return f"""# 🐝 Update Needed ⏳

Issue #{issue_number} is approved, but this PR was opened before approval.
Add a new commit or leave a comment to activate it for implementation tracking.{SIGNATURE}"""


def pr_superseded(merged_pr_number: int) -> str:
    return f"""# 🐝 Superseded

Implemented via #{merged_pr_number}. Closing this competing implementation.{SIGNATURE}"""


def issue_voting_passed(issue_number: int, pr_author: str) -> str:
    return f"""# 🐝 Issue #{issue_number} Ready to Implement ✅

Good news @{pr_author}: issue #{issue_number} passed voting and is ready for implementation!

If you opened this PR before the proposal was finalized, push a new commit or add a comment with your updates to activate it.{SIGNATURE}"""


PR_NO_LINKED_ISSUE = f"""# 🐝 No Linked Issue 🔗

This PR doesn't close any issue. Implementation PRs must reference an approved issue with closing syntax (e.g., `Fixes #123`).{SIGNATURE}"""
