"""
Unit tests for implementation PR intake.

Tests cover:
- Activation timing guard
- Intake exception rules (approval, auto)
- Per-issue PR cap on opened vs updated PRs
- Notifications for PRs closing several issues
- Linked issue resolution for freshly opened PRs
- Closed and merged PR handling
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from queen.config import messages
from queen.config.repo_config import get_default_config, parse_repo_config
from queen.integrations.github_client import LinkedIssue
from queen.models.governance import IntakeTrigger, Label
from queen.orchestration.governance import GovernanceService
from queen.orchestration.intake import ImplementationIntake, IntakeStatus, is_activation_after_ready
from queen.orchestration.leaderboard import LeaderboardService
from queen.orchestration.metadata import (
    NotificationType,
    is_leaderboard_comment,
    is_notification_comment,
)
from tests.fakes import APP_ID, T0, FakeGitHubClient, ref

ISSUE = 7
PR = 30
BEFORE_READY = T0 - timedelta(days=1)
AFTER_READY = T0 + timedelta(hours=1)


# ========================
# Fixtures
# ========================


@pytest.fixture
def client():
    return FakeGitHubClient()


@pytest.fixture
def intake(client):
    governance = GovernanceService(client, APP_ID)
    return ImplementationIntake(
        client,
        LeaderboardService(client, APP_ID),
        APP_ID,
        governance=governance,
        sleep=lambda s: None,
    )


@pytest.fixture
def config():
    return get_default_config()


def _ready_issue(client, number=ISSUE):
    return client.add_issue(number, labels=[Label.READY_TO_IMPLEMENT], labeled_at=T0)


def _notifications(client, number, notification_type, issue_number=None):
    return [
        c for c in client.comments(number)
        if is_notification_comment(
            c.body,
            APP_ID,
            c.performed_via_app_id,
            notification_type=notification_type,
            issue_number=issue_number,
        )
    ]


# ========================
# Acceptance
# ========================


class TestAcceptance:
    def test_activity_after_ready_is_accepted(self, client, intake, config):
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY, activity=AFTER_READY)

        result = intake.process(ref(PR), config, IntakeTrigger.UPDATED)

        assert result.accepted
        assert result.issues == {ISSUE: IntakeStatus.ACCEPTED}
        assert Label.IMPLEMENTATION in client.labels(PR)
        assert len(_notifications(client, PR, NotificationType.IMPLEMENTATION_WELCOME)) == 1
        assert len(_notifications(client, ISSUE, NotificationType.ISSUE_NEW_PR, PR)) == 1
        boards = [
            c for c in client.comments(ISSUE)
            if is_leaderboard_comment(c.body, APP_ID, c.performed_via_app_id)
        ]
        assert len(boards) == 1
        assert f"| #{PR} |" in boards[0].body

    def test_activity_exactly_at_ready_time_counts(self, client, intake, config):
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY, activity=T0)

        assert intake.process(ref(PR), config, IntakeTrigger.UPDATED).accepted
        assert is_activation_after_ready(T0, T0)

    def test_second_run_is_a_no_op(self, client, intake, config):
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=AFTER_READY)

        intake.process(ref(PR), config, IntakeTrigger.OPENED)
        comments_before = (len(client.comments(PR)), len(client.comments(ISSUE)))

        result = intake.process(ref(PR), config, IntakeTrigger.UPDATED)

        assert result.status == IntakeStatus.SKIPPED_ALREADY_LABELED
        assert (len(client.comments(PR)), len(client.comments(ISSUE))) == comments_before

    def test_edit_time_from_webhook_activates(self, client, intake, config):
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY)

        result = intake.process(ref(PR), config, IntakeTrigger.EDITED, edited_at=AFTER_READY)

        assert result.accepted

    def test_multi_issue_pr_gets_one_welcome_and_a_notification_per_issue(self, client, intake, config):
        _ready_issue(client, 7)
        _ready_issue(client, 8)
        client.add_pr(PR, linked=[7, 8], created_at=AFTER_READY)

        result = intake.process(ref(PR), config, IntakeTrigger.OPENED)

        assert result.issues == {7: IntakeStatus.ACCEPTED, 8: IntakeStatus.ACCEPTED}
        assert len(_notifications(client, PR, NotificationType.IMPLEMENTATION_WELCOME)) == 1
        assert len(_notifications(client, 7, NotificationType.ISSUE_NEW_PR, PR)) == 1
        assert len(_notifications(client, 8, NotificationType.ISSUE_NEW_PR, PR)) == 1
        assert client.labels(PR).count(Label.IMPLEMENTATION) == 1

    def test_no_linked_issues(self, client, intake, config):
        client.add_pr(PR, linked=[])
        result = intake.process(ref(PR), config, IntakeTrigger.UPDATED)
        assert result.status == IntakeStatus.NO_LINKED_ISSUES


# ========================
# Rejections
# ========================


class TestNotAccepted:
    def test_not_ready_comments_only_on_opened(self, client, intake, config):
        client.add_issue(ISSUE, labels=[Label.VOTING], labeled_at=T0)
        client.add_pr(PR, linked=[ISSUE], created_at=AFTER_READY)

        result = intake.process(ref(PR), config, IntakeTrigger.UPDATED)
        assert result.status == IntakeStatus.NOT_READY
        assert client.comments(PR) == []

        intake.process(ref(PR), config, IntakeTrigger.OPENED)
        assert client.bodies(PR) == [messages.issue_not_ready(ISSUE)]
        assert Label.IMPLEMENTATION not in client.labels(PR)

    def test_stale_pr_is_blocked(self, client, intake, config):
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY)

        result = intake.process(ref(PR), config, IntakeTrigger.OPENED)

        assert result.status == IntakeStatus.BLOCKED
        assert client.bodies(PR) == [messages.issue_ready_needs_update(ISSUE)]
        assert Label.IMPLEMENTATION not in client.labels(PR)

    def test_stale_pr_update_posts_nothing(self, client, intake, config):
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY)

        assert intake.process(ref(PR), config, IntakeTrigger.UPDATED).status == IntakeStatus.BLOCKED
        assert client.comments(PR) == []

    def test_missing_ready_time_is_blocked(self, client, intake, config):
        _ready_issue(client).label_times.clear()
        client.add_pr(PR, linked=[ISSUE], created_at=AFTER_READY)

        result = intake.process(ref(PR), config, IntakeTrigger.UPDATED)

        assert result.status == IntakeStatus.BLOCKED
        assert Label.IMPLEMENTATION not in client.labels(PR)


class TestIntakeRules:
    def test_trusted_approval_admits_stale_pr(self, client, intake):
        config = parse_repo_config({
            "governance": {
                "pr": {
                    "trustedReviewers": ["Queen"],
                    "intake": [{"method": "update"}, {"method": "approval", "minApprovals": 1}],
                }
            }
        })
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY, approvers=["queen"])

        assert intake.process(ref(PR), config, IntakeTrigger.UPDATED).accepted

    def test_untrusted_approval_does_not_admit(self, client, intake):
        config = parse_repo_config({
            "governance": {
                "pr": {"trustedReviewers": ["queen"], "intake": [{"method": "approval"}]}
            }
        })
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY, approvers=["drone"])

        assert intake.process(ref(PR), config, IntakeTrigger.UPDATED).status == IntakeStatus.BLOCKED

    def test_auto_admits_stale_pr(self, client, intake):
        config = parse_repo_config({"governance": {"pr": {"intake": [{"method": "auto"}]}}})
        _ready_issue(client)
        client.add_pr(PR, linked=[ISSUE], created_at=BEFORE_READY)

        assert intake.process(ref(PR), config, IntakeTrigger.UPDATED).accepted


# ========================
# PR Cap
# ========================


class TestPrCap:
    @pytest.fixture
    def capped(self, client):
        _ready_issue(client)
        client.add_pr(31, linked=[ISSUE], labels=[Label.IMPLEMENTATION], created_at=AFTER_READY)
        client.add_pr(PR, linked=[ISSUE], created_at=AFTER_READY)
        return parse_repo_config({"governance": {"pr": {"maxPRsPerIssue": 1}}})

    def test_opened_over_cap_is_closed(self, client, intake, capped):
        result = intake.process(ref(PR), capped, IntakeTrigger.OPENED)

        assert result.status == IntakeStatus.LIMIT_REACHED
        assert client.items[PR].state == "closed"
        assert client.bodies(PR) == [messages.pr_limit_reached(1, [31])]
        assert Label.IMPLEMENTATION not in client.labels(PR)

    def test_updated_over_cap_stays_open(self, client, intake, capped):
        result = intake.process(ref(PR), capped, IntakeTrigger.UPDATED)

        assert result.status == IntakeStatus.NO_ROOM
        assert client.items[PR].state == "open"
        assert client.bodies(PR) == [messages.pr_no_room_yet(1, [31])]

    def test_room_frees_up_after_competitor_closes(self, client, intake, capped):
        client.items[31].state = "closed"
        assert intake.process(ref(PR), capped, IntakeTrigger.UPDATED).accepted


# ========================
# Linked Issue Resolution
# ========================


class TestResolveOpenedLinks:
    @pytest.fixture
    def mock_client(self):
        return MagicMock()

    def _intake(self, mock_client, sleep):
        return ImplementationIntake(
            mock_client,
            MagicMock(),
            APP_ID,
            governance=MagicMock(),
            link_retry_delay=2.5,
            sleep=sleep,
        )

    def test_links_visible_immediately(self, mock_client):
        linked = [LinkedIssue(ISSUE, "t", "OPEN")]
        mock_client.get_linked_issues.return_value = linked
        sleep = MagicMock()

        assert self._intake(mock_client, sleep).resolve_opened_links(ref(PR), "Fixes #7") == linked
        sleep.assert_not_called()

    def test_retries_once_when_body_has_closing_keyword(self, mock_client):
        linked = [LinkedIssue(ISSUE, "t", "OPEN")]
        mock_client.get_linked_issues.side_effect = [[], linked]
        sleep = MagicMock()

        result = self._intake(mock_client, sleep).resolve_opened_links(ref(PR), "Fixes #7")

        assert result == linked
        sleep.assert_called_once_with(2.5)
        mock_client.create_comment.assert_not_called()

    def test_no_warning_after_failed_retry(self, mock_client):
        mock_client.get_linked_issues.return_value = []
        result = self._intake(mock_client, MagicMock()).resolve_opened_links(ref(PR), "Closes #7")

        assert result == []
        mock_client.create_comment.assert_not_called()

    def test_no_keyword_posts_note(self, mock_client):
        mock_client.get_linked_issues.return_value = []
        sleep = MagicMock()

        result = self._intake(mock_client, sleep).resolve_opened_links(ref(PR), "Just a tweak")

        assert result == []
        sleep.assert_not_called()
        mock_client.create_comment.assert_called_once_with(ref(PR), messages.PR_NO_LINKED_ISSUE)

    def test_other_repo_keyword_posts_note(self, mock_client):
        mock_client.get_linked_issues.return_value = []

        self._intake(mock_client, MagicMock()).resolve_opened_links(ref(PR), "Fixes other/repo#7")

        mock_client.create_comment.assert_called_once()


# ========================
# Closed PRs
# ========================


class TestHandlePrClosed:
    def test_merged_pr_implements_issue_and_supersedes_competitors(self, client, intake):
        _ready_issue(client)
        merged = client.add_pr(PR, linked=[ISSUE], labels=[Label.IMPLEMENTATION])
        merged.state = "closed"
        merged.merged = True
        client.add_pr(31, linked=[ISSUE], labels=[Label.IMPLEMENTATION])

        implemented = intake.handle_pr_closed(ref(PR), merged=True)

        assert implemented == [ISSUE]
        issue = client.items[ISSUE]
        assert issue.labels == [Label.IMPLEMENTED]
        assert issue.state == "closed"
        assert issue.close_reason == "completed"
        assert client.bodies(ISSUE)[-1] == messages.issue_implemented(PR)
        assert Label.IMPLEMENTATION not in client.labels(PR)

        competitor = client.items[31]
        assert competitor.state == "closed"
        assert Label.IMPLEMENTATION not in competitor.labels
        assert client.bodies(31) == [messages.pr_superseded(PR)]

    def test_merged_pr_skips_issues_that_are_not_ready(self, client, intake):
        client.add_issue(ISSUE, labels=[Label.DISCUSSION], labeled_at=T0)
        merged = client.add_pr(PR, linked=[ISSUE])
        merged.state = "closed"
        merged.merged = True

        assert intake.handle_pr_closed(ref(PR), merged=True) == []
        assert client.labels(ISSUE) == [Label.DISCUSSION]

    def test_closed_without_merge_refreshes_leaderboard(self, client, intake):
        _ready_issue(client)
        closed = client.add_pr(PR, linked=[ISSUE], labels=[Label.IMPLEMENTATION])
        closed.state = "closed"

        assert intake.handle_pr_closed(ref(PR), merged=False) == []

        assert Label.IMPLEMENTATION not in client.labels(PR)
        (board,) = client.comments(ISSUE)
        assert "No linked PRs are eligible" in board.body
        assert client.items[ISSUE].state == "open"
