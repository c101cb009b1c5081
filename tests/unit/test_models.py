"""
Unit tests for Pydantic models.

Tests cover webhook payload parsing and the governance value types.
"""

import pytest
from pydantic import ValidationError

from queen.models.github import (
    GitHubIssue,
    GitHubPullRequest,
    GitHubUser,
    GitHubWebhookPayload,
)
from queen.models.governance import PHASE_LABELS, IssueRef, Label, Phase

REPOSITORY = {"name": "colony", "full_name": "hivemoot/colony"}


# ==========================
# GitHub Payload Tests
# ==========================


class TestGitHubIssue:
    """Tests for the GitHubIssue model."""

    def test_label_objects_flattened(self):
        issue = GitHubIssue(number=42, labels=[{"name": "phase:voting", "color": "fff"}, "bug"])
        assert issue.labels == ["phase:voting", "bug"]

    def test_issue_minimal(self):
        issue = GitHubIssue(number=1)
        assert issue.labels == []
        assert not issue.is_pull_request

    def test_pull_request_marker(self):
        assert GitHubIssue(number=1, pull_request={"url": "x"}).is_pull_request

    def test_issue_number_validation(self):
        with pytest.raises(ValidationError):
            GitHubIssue(number=0)


class TestGitHubUser:
    def test_bot_detection(self):
        assert GitHubUser(login="hivemoot[bot]").is_bot
        assert GitHubUser(login="renovate", type="Bot").is_bot
        assert not GitHubUser(login="queen-fan", type="User").is_bot


class TestGitHubPullRequest:
    def test_null_merged_is_false(self):
        assert GitHubPullRequest(number=3, merged=None).merged is False

    def test_timestamps_parsed(self):
        pr = GitHubPullRequest(number=3, updated_at="2026-03-01T12:00:00Z")
        assert pr.updated_at.year == 2026
        assert pr.updated_at.tzinfo is not None


class TestGitHubWebhookPayload:
    """Tests for the webhook payload model."""

    def test_from_raw_webhook(self):
        payload = GitHubWebhookPayload.model_validate({
            "action": "edited",
            "pull_request": {"number": 7, "base": {"ref": "main"}, "unknown": True},
            "repository": {**REPOSITORY, "default_branch": "trunk"},
            "changes": {"body": {"from": "old"}},
            "hook_id": 1,
        })

        assert payload.pull_request.base.ref == "main"
        assert payload.repository.default_branch == "trunk"
        assert payload.body_changed

    def test_default_branch_fallback(self):
        payload = GitHubWebhookPayload.model_validate({"repository": REPOSITORY})
        assert payload.repository.default_branch == "main"
        assert payload.repository.owner_login == "hivemoot"
        assert not payload.body_changed

    def test_missing_repository_rejected(self):
        with pytest.raises(ValidationError):
            GitHubWebhookPayload.model_validate({"action": "opened"})


# ==========================
# Governance Types
# ==========================


class TestIssueRef:
    def test_from_full_name(self):
        ref = IssueRef.from_full_name("hivemoot/colony", 5)
        assert (ref.owner, ref.repo, ref.number) == ("hivemoot", "colony", 5)
        assert ref.full_name == "hivemoot/colony"
        assert str(ref) == "hivemoot/colony#5"

    def test_with_number(self):
        assert IssueRef("a", "b", 1).with_number(2) == IssueRef("a", "b", 2)


class TestPhases:
    def test_timed_phases_map_to_labels(self):
        assert Phase.DISCUSSION.label == Label.DISCUSSION
        assert Phase.VOTING.label == Label.VOTING
        assert Phase.EXTENDED_VOTING.label == Label.EXTENDED_VOTING

    def test_implementation_label_is_not_a_phase(self):
        assert Label.IMPLEMENTATION not in PHASE_LABELS
        assert Label.READY_TO_IMPLEMENT in PHASE_LABELS
