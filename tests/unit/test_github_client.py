"""
Unit tests for the GitHubClient wrapper.

Tests cover:
- Client initialization
- Comment conversion and app attribution
- Label timeline reconstruction
- Review standing
- GraphQL closing references
- Retry logic
- Error handling
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from github import GithubException

from queen.integrations.github_client import (
    ClientStats,
    GitHubClient,
    close_github_client,
    get_github_client,
)
from queen.models.governance import IssueRef

REF = IssueRef("hivemoot", "colony", 42)
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ========================
# Fixtures
# ========================


@pytest.fixture
def mock_github():
    """Create a mock Github instance."""
    with patch("queen.integrations.github_client.Github") as MockGithub:
        mock_instance = MagicMock()
        MockGithub.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def mock_auth():
    """Create a mock Auth.Token."""
    with patch("queen.integrations.github_client.Auth") as MockAuth:
        yield MockAuth


@pytest.fixture
def client(mock_github, mock_auth):
    """Create a GitHubClient with mocked dependencies and no retry sleep."""
    return GitHubClient(token="test-token-12345", app_id=4242, max_attempts=3, sleep=lambda s: None)


@pytest.fixture
def mock_repo(mock_github):
    repo = MagicMock()
    repo.full_name = "hivemoot/colony"
    mock_github.get_repo.return_value = repo
    return repo


@pytest.fixture
def mock_issue(mock_repo):
    issue = MagicMock()
    issue.number = 42
    mock_repo.get_issue.return_value = issue
    return issue


@pytest.fixture
def mock_pull(mock_repo):
    pull = MagicMock()
    pull.number = 42
    mock_repo.get_pull.return_value = pull
    return pull


def _comment(comment_id, body, login="someone", app_id=None, created_at=T0, user_type="User"):
    comment = MagicMock()
    comment.id = comment_id
    comment.body = body
    comment.user.login = login
    comment.user.type = user_type
    comment.created_at = created_at
    comment.updated_at = created_at
    comment.raw_data = {"performed_via_github_app": {"id": app_id} if app_id else None}
    return comment


def _event(kind, label, created_at):
    event = MagicMock()
    event.event = kind
    event.label.name = label
    event.created_at = created_at
    return event


def _events(*items):
    """PaginatedList stand-in: oldest first, with a newest-first .reversed view."""
    paginated = MagicMock()
    paginated.reversed = list(reversed(items))
    return paginated


def _review(login, state, submitted_at):
    review = MagicMock()
    review.user.login = login
    review.state = state
    review.submitted_at = submitted_at
    return review


# ========================
# Initialization
# ========================


class TestGitHubClientInit:
    def test_init_with_token(self, mock_github, mock_auth):
        client = GitHubClient(token="abc", app_id=7)
        mock_auth.Token.assert_called_once_with("abc")
        assert client.app_id == 7
        assert isinstance(client.stats, ClientStats)

    def test_init_without_token_raises(self, mock_github, mock_auth):
        settings = MagicMock(has_github_token=False, github_app_id=None)
        with patch("queen.integrations.github_client.get_settings", return_value=settings):
            with pytest.raises(ValueError, match="GitHub token is required"):
                GitHubClient()

    def test_context_manager_closes(self, mock_github, mock_auth):
        with GitHubClient(token="abc", app_id=1) as client:
            assert "GitHubClient" in repr(client)
        mock_github.close.assert_called_once()

    def test_repo_is_cached(self, client, mock_github, mock_issue):
        mock_issue.get_comments.return_value = []
        client.list_comments(REF)
        client.list_comments(REF)
        mock_github.get_repo.assert_called_once_with("hivemoot/colony")


# ========================
# Comments
# ========================


class TestComments:
    def test_list_comments_reads_app_attribution(self, client, mock_issue):
        mock_issue.get_comments.return_value = [
            _comment(1, "hello", login="hivemoot[bot]", app_id=4242, user_type="Bot"),
            _comment(2, "hi", login="alice"),
        ]

        comments = client.list_comments(REF)

        assert comments[0].performed_via_app_id == 4242
        assert comments[0].is_bot
        assert comments[1].performed_via_app_id is None
        assert not comments[1].is_bot

    def test_create_comment(self, client, mock_issue):
        mock_issue.create_comment.return_value = _comment(9, "body", app_id=4242)

        result = client.create_comment(REF, "body")

        mock_issue.create_comment.assert_called_once_with("body")
        assert result.id == 9
        assert client.stats.comments_posted == 1

    def test_create_empty_comment_raises(self, client):
        with pytest.raises(ValueError):
            client.create_comment(REF, "   ")

    def test_update_comment(self, client, mock_issue):
        client.update_comment(REF, 9, "new")
        mock_issue.get_comment.assert_called_once_with(9)
        mock_issue.get_comment.return_value.edit.assert_called_once_with("new")


# ========================
# Labels and State
# ========================


class TestLabels:
    def test_remove_missing_label_is_not_an_error(self, client, mock_issue):
        mock_issue.remove_from_labels.side_effect = GithubException(404, {"message": "Not Found"}, {})
        client.remove_label(REF, "phase:voting")
        assert mock_issue.remove_from_labels.call_count == 1

    def test_unlock_when_not_locked(self, client, mock_issue):
        mock_issue.unlock.side_effect = GithubException(422, {"message": "not locked"}, {})
        client.unlock(REF)

    def test_close_issue_sets_state_reason(self, client, mock_issue):
        client.close_issue(REF, "not_planned")
        mock_issue.edit.assert_called_once_with(state="closed", state_reason="not_planned")

    def test_label_added_time_uses_latest_add(self, client, mock_issue):
        mock_issue.get_events.return_value = _events(
            _event("labeled", "phase:voting", T0),
            _event("labeled", "phase:discussion", T0 + timedelta(minutes=5)),
            _event("unlabeled", "phase:voting", T0 + timedelta(hours=1)),
            _event("labeled", "phase:voting", T0 + timedelta(hours=2)),
        )
        assert client.get_label_added_time(REF, "phase:voting") == T0 + timedelta(hours=2)

    def test_label_removed_last_has_no_time(self, client, mock_issue):
        mock_issue.get_events.return_value = _events(
            _event("labeled", "phase:voting", T0),
            _event("unlabeled", "phase:voting", T0 + timedelta(hours=1)),
        )
        assert client.get_label_added_time(REF, "phase:voting") is None

    def test_label_added_time_survives_long_history(self, client, mock_issue):
        chatter = [_event("commented", None, T0 + timedelta(minutes=2)) for _ in range(1200)]
        mock_issue.get_events.return_value = _events(
            _event("labeled", "phase:voting", T0),
            _event("unlabeled", "phase:voting", T0 + timedelta(minutes=1)),
            *chatter,
            _event("labeled", "phase:voting", T0 + timedelta(days=5)),
        )
        assert client.get_label_added_time(REF, "phase:voting") == T0 + timedelta(days=5)

    def test_label_scan_is_capped_from_the_newest_end(self, client, mock_issue):
        chatter = [_event("commented", None, T0 + timedelta(minutes=2)) for _ in range(1200)]
        mock_issue.get_events.return_value = _events(
            _event("labeled", "phase:voting", T0),
            *chatter,
        )
        assert client.get_label_added_time(REF, "phase:voting") is None

    def test_list_open_issues_excludes_pull_requests(self, client, mock_repo):
        issue = MagicMock(number=1, title="t", body="b", state="open", pull_request=None)
        issue.labels = []
        pr = MagicMock(number=2)
        mock_repo.get_issues.return_value = [issue, pr]

        result = client.list_open_issues("hivemoot/colony", "phase:voting")

        mock_repo.get_issues.assert_called_once_with(state="open", labels=["phase:voting"])
        assert [i.number for i in result] == [1]


# ========================
# Pull Requests
# ========================


class TestPullRequests:
    def test_approvers_use_latest_decisive_review(self, client, mock_pull):
        mock_pull.get_reviews.return_value = [
            _review("Alice", "APPROVED", T0),
            _review("alice", "COMMENTED", T0 + timedelta(hours=1)),
            _review("bob", "APPROVED", T0),
            _review("bob", "CHANGES_REQUESTED", T0 + timedelta(hours=1)),
            _review("carol", "CHANGES_REQUESTED", T0),
            _review("carol", "APPROVED", T0 + timedelta(hours=2)),
        ]
        assert client.get_approver_logins(REF) == {"alice", "carol"}

    def test_latest_author_activity(self, client, mock_issue, mock_pull):
        mock_issue.get_comments.return_value = [
            _comment(1, "bot", app_id=4242, created_at=T0 + timedelta(days=3)),
            _comment(2, "human", created_at=T0 + timedelta(days=1)),
        ]
        commit = MagicMock()
        commit.commit.committer.date = T0 + timedelta(days=2)
        mock_pull.get_commits.return_value = [commit]

        assert client.get_latest_author_activity(REF, T0) == T0 + timedelta(days=2)

    def test_linked_issues_from_graphql(self, client, mock_github):
        mock_github.requester.graphql_query.return_value = (
            {},
            {
                "data": {
                    "repository": {
                        "pullRequest": {
                            "closingIssuesReferences": {
                                "nodes": [
                                    {
                                        "number": 7,
                                        "title": "Proposal",
                                        "state": "OPEN",
                                        "labels": {"nodes": [{"name": "phase:ready-to-implement"}]},
                                    }
                                ]
                            }
                        }
                    }
                }
            },
        )

        linked = client.get_linked_issues(REF)

        assert len(linked) == 1
        assert linked[0].number == 7
        assert linked[0].labels == ["phase:ready-to-implement"]
        assert linked[0].is_open

    def test_open_prs_for_issue_skips_closed(self, client, mock_github):
        mock_github.requester.graphql_query.return_value = (
            {},
            {
                "data": {
                    "repository": {
                        "issue": {
                            "closedByPullRequestsReferences": {
                                "nodes": [
                                    {"number": 10, "title": "a", "state": "OPEN", "author": {"login": "bee"}},
                                    {"number": 11, "title": "b", "state": "MERGED", "author": {"login": "wasp"}},
                                ]
                            }
                        }
                    }
                }
            },
        )
        prs = client.get_open_prs_for_issue(REF)
        assert [(p.number, p.author) for p in prs] == [(10, "bee")]


# ========================
# Retry Logic
# ========================


class TestRetryLogic:
    def test_transient_error_is_retried(self, client, mock_issue):
        mock_issue.get_comments.side_effect = [
            GithubException(502, {"message": "Bad Gateway"}, {}),
            [],
        ]
        assert client.list_comments(REF) == []
        assert mock_issue.get_comments.call_count == 2

    def test_exhausted_retries_reraise_and_count_error(self, client, mock_issue):
        mock_issue.get_comments.side_effect = GithubException(503, {"message": "Unavailable"}, {})

        with pytest.raises(GithubException):
            client.list_comments(REF)

        assert mock_issue.get_comments.call_count == 3
        assert client.stats.errors == 1

    def test_not_found_is_not_retried(self, client, mock_issue):
        mock_issue.add_to_labels.side_effect = GithubException(404, {"message": "Not Found"}, {})

        with pytest.raises(GithubException):
            client.add_labels(REF, ["phase:discussion"])

        assert mock_issue.add_to_labels.call_count == 1

    def test_missing_file_returns_none(self, client, mock_repo):
        mock_repo.get_contents.side_effect = GithubException(404, {"message": "Not Found"}, {})
        assert client.get_file_content("hivemoot/colony", ".github/hivemoot.yml") is None

    def test_file_content_is_decoded(self, client, mock_repo):
        mock_repo.get_contents.return_value = MagicMock(decoded_content=b"version: 1\n")
        assert client.get_file_content("hivemoot/colony", ".github/hivemoot.yml") == "version: 1\n"


# ========================
# Global Client
# ========================


class TestGlobalClient:
    def test_singleton_and_close(self, mock_github, mock_auth):
        settings = MagicMock(
            github_token="abc",
            has_github_token=True,
            github_app_id=4242,
            retry_max_attempts=3,
            retry_base_delay=1.0,
            retry_max_delay=30.0,
        )
        with patch("queen.integrations.github_client.get_settings", return_value=settings):
            close_github_client()
            first = get_github_client()
            assert get_github_client() is first
            assert first.app_id == 4242
            close_github_client()
            assert get_github_client() is not first
            close_github_client()
