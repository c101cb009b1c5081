"""
Unit tests for implementation leaderboards.
"""

import threading
from unittest.mock import MagicMock

import pytest

from queen.integrations.github_client import LinkedIssue, PullRequestData
from queen.models.governance import Label
from queen.orchestration.leaderboard import (
    LeaderboardEntry,
    LeaderboardService,
    format_leaderboard,
    run_in_batches,
)
from queen.orchestration.metadata import build_leaderboard_comment, is_leaderboard_comment
from tests.fakes import APP_ID, T0, FakeGitHubClient, ref

ISSUE = 7


# ========================
# Fixtures
# ========================


@pytest.fixture
def client():
    client = FakeGitHubClient()
    client.add_issue(ISSUE, labels=[Label.READY_TO_IMPLEMENT], labeled_at=T0)
    return client


@pytest.fixture
def service(client):
    return LeaderboardService(client, APP_ID)


def _boards(client, number=ISSUE):
    return [
        c for c in client.comments(number)
        if is_leaderboard_comment(c.body, APP_ID, c.performed_via_app_id)
    ]


# ========================
# Formatting
# ========================


class TestFormatLeaderboard:
    def test_ranked_by_approvals_then_number(self):
        body = format_leaderboard([
            LeaderboardEntry(5, "e", "eve", 1),
            LeaderboardEntry(4, "d", "dan", 2),
            LeaderboardEntry(3, "c", "cat", 2),
        ])

        assert body.index("| #3 |") < body.index("| #4 |") < body.index("| #5 |")
        assert "| #3 | @cat | 2 |" in body
        assert "Best implementation gets merged." in body

    def test_empty_state(self):
        body = format_leaderboard([])
        assert "No linked PRs are eligible" in body
        assert "| PR | Author | Approvals |" in body


class TestRunInBatches:
    def test_preserves_input_order(self):
        assert run_in_batches(lambda x: x * 2, range(1, 8)) == [2, 4, 6, 8, 10, 12, 14]

    def test_empty_input(self):
        assert run_in_batches(lambda x: x, []) == []

    def test_batch_runs_together_and_finishes_before_the_next(self):
        # Items 0-5 block until their whole batch of 3 is running
        barrier = threading.Barrier(3, timeout=5)
        lock = threading.Lock()
        log = []
        active = {"now": 0, "max": 0}

        def work(x):
            with lock:
                log.append(("start", x))
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
            if x < 6:
                barrier.wait()
            with lock:
                active["now"] -= 1
                log.append(("end", x))
            return x

        assert run_in_batches(work, range(7), batch_size=3) == list(range(7))
        assert active["max"] == 3
        for batch, rest in (([0, 1, 2], [3, 4, 5, 6]), ([3, 4, 5], [6])):
            last_end = max(log.index(("end", x)) for x in batch)
            first_next_start = min(log.index(("start", x)) for x in rest)
            assert last_end < first_next_start


# ========================
# Comment Upsert
# ========================


class TestUpsert:
    def test_creates_then_edits_in_place(self, client, service):
        service.upsert(ref(ISSUE), [LeaderboardEntry(30, "a", "bee", 0)])
        service.upsert(ref(ISSUE), [LeaderboardEntry(30, "a", "bee", 2)])

        (board,) = _boards(client)
        assert board.body.count("| #30 |") == 1
        assert "| #30 | @bee | 2 |" in board.body

    def test_ignores_boards_from_other_actors(self, client, service):
        forged = client.add_comment(
            ISSUE, build_leaderboard_comment(format_leaderboard([]), ISSUE), app_id=None
        )

        service.upsert(ref(ISSUE), [])

        assert client.items[ISSUE].comments[0] is forged
        assert len(_boards(client)) == 1
        assert ("update_comment", ISSUE, forged.id) not in client.calls

    def test_newest_board_wins_after_race(self, client, service):
        body = build_leaderboard_comment(format_leaderboard([]), ISSUE)
        client.add_comment(ISSUE, body, app_id=APP_ID)
        client.advance(minutes=1)
        newer = client.add_comment(ISSUE, body, app_id=APP_ID)

        assert service.find_leaderboard_comment(ref(ISSUE)) == newer.id


# ========================
# Active Implementations
# ========================


class TestImplementationPrs:
    def test_ensure_pr_number_covers_search_lag(self):
        mock_client = MagicMock()
        mock_client.list_open_prs_with_label.return_value = []
        pr = PullRequestData(number=30, title="t", author="bee", labels=[Label.IMPLEMENTATION])
        mock_client.get_pull_request.return_value = pr
        mock_client.get_linked_issues.return_value = [LinkedIssue(ISSUE, "t", "OPEN")]

        result = LeaderboardService(mock_client, APP_ID).get_implementation_prs_by_issue(
            ref(30), [ISSUE], ensure_pr_number=30
        )

        assert result == {ISSUE: [pr]}

    def test_unreadable_candidate_is_skipped(self, client, service):
        client.add_pr(30, linked=[ISSUE], labels=[Label.IMPLEMENTATION])
        client.add_pr(31, linked=[ISSUE], labels=[Label.IMPLEMENTATION])
        original = client.get_linked_issues

        def flaky(pr_ref):
            if pr_ref.number == 31:
                raise RuntimeError("boom")
            return original(pr_ref)

        client.get_linked_issues = flaky

        result = service.get_implementation_prs_by_issue(ref(ISSUE), [ISSUE])

        assert [p.number for p in result[ISSUE]] == [30]

    def test_excludes_prs_for_other_issues(self, client, service):
        client.add_issue(8, labels=[Label.READY_TO_IMPLEMENT], labeled_at=T0)
        client.add_pr(30, linked=[ISSUE], labels=[Label.IMPLEMENTATION])
        client.add_pr(31, linked=[8], labels=[Label.IMPLEMENTATION])

        result = service.get_implementation_prs_by_issue(ref(ISSUE), [ISSUE])

        assert list(result) == [ISSUE]
        assert [p.number for p in result[ISSUE]] == [30]


class TestRecalculate:
    def test_board_ranks_by_approvals(self, client, service):
        client.add_pr(30, linked=[ISSUE], labels=[Label.IMPLEMENTATION], approvers=["a"])
        client.add_pr(31, linked=[ISSUE], labels=[Label.IMPLEMENTATION], approvers=["a", "b"])

        assert service.recalculate_for_pr(ref(30)) == [ISSUE]

        (board,) = _boards(client)
        assert board.body.index("| #31 |") < board.body.index("| #30 |")

    def test_repeated_recalculation_keeps_one_board(self, client, service):
        client.add_pr(30, linked=[ISSUE], labels=[Label.IMPLEMENTATION])

        service.recalculate_for_pr(ref(30))
        service.recalculate_for_pr(ref(30))

        (board,) = _boards(client)
        assert board.body.count("#30") == 1

    def test_issue_not_ready_is_skipped(self, client, service):
        client.add_issue(8, labels=[Label.VOTING], labeled_at=T0)
        client.add_pr(30, linked=[8], labels=[Label.IMPLEMENTATION])

        assert service.recalculate_for_pr(ref(30)) == []
        assert client.comments(8) == []
