"""
Webhook event routing.

Maps GitHub events onto the governance operations. Handlers are
synchronous (PyGithub); the webhook endpoint runs them in a worker thread.
Every handler is safe to run twice for the same delivery: labels are
checked before acting and notifications are deduplicated through metadata
tags.

Unexpected errors are logged with the delivery context and re-raised so
the endpoint answers 500 and GitHub redelivers. A payload that does not
parse raises InvalidPayloadError, which the endpoint answers with 400.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from queen.config.repo_config import RepoConfig, load_repo_config
from queen.config.settings import AppSettings, get_settings
from queen.models.github import GitHubWebhookPayload
from queen.models.governance import PHASE_LABELS, IntakeTrigger, IssueRef, Label
from queen.orchestration.governance import GovernanceService
from queen.orchestration.intake import ImplementationIntake
from queen.orchestration.leaderboard import LeaderboardService
from queen.utils.logging import get_logger

logger = get_logger(__name__)

# Acknowledged without processing
IGNORED_EVENTS = frozenset({
    "ping",
    "check_suite",
    "check_run",
    "status",
    "installation",
    "installation_repositories",
})


class InvalidPayloadError(ValueError):
    """Raised when a delivery body does not match the webhook payload schema."""

    def __init__(self, event: str, message: str):
        self.event = event
        super().__init__(message)


@dataclass
class HandlerResult:
    status: str  # "processed" | "ignored" | "skipped"
    message: str


class EventRouter:
    """
    Dispatches a webhook delivery to its handler.

    Args:
        client: GitHubClient used for every operation of the delivery.
        settings: Process settings (defaults to get_settings()).
        sleep: Sleep function passed to intake for the link retry.
    """

    def __init__(
        self,
        client,
        settings: Optional[AppSettings] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._client = client
        self._settings = settings or get_settings()
        app_id = self._settings.github_app_id
        if app_id is None:
            app_id = getattr(client, "app_id", None)
        self.governance = GovernanceService(client, app_id)
        self.leaderboard = LeaderboardService(client, app_id)
        intake_kwargs = {"link_retry_delay": self._settings.intake_link_retry_delay}
        if sleep is not None:
            intake_kwargs["sleep"] = sleep
        self.intake = ImplementationIntake(
            client,
            self.leaderboard,
            app_id,
            governance=self.governance,
            **intake_kwargs,
        )

    def _config(self, repo_full_name: str) -> RepoConfig:
        return load_repo_config(self._client, repo_full_name)

    def handle(self, event: Optional[str], payload: dict) -> HandlerResult:
        """
        Route one delivery.

        Raises:
            InvalidPayloadError: If the payload does not parse.
            Exception: Whatever the handler raised, after logging it.
        """
        if not event or event in IGNORED_EVENTS:
            return HandlerResult("ignored", f"Event type '{event}' not processed")

        handler = {
            "issues": self._on_issues,
            "pull_request": self._on_pull_request,
            "pull_request_review": self._on_pull_request_review,
            "issue_comment": self._on_issue_comment,
        }.get(event)
        if handler is None:
            return HandlerResult("ignored", f"Event type '{event}' not processed")

        try:
            parsed = GitHubWebhookPayload.model_validate(payload)
        except ValidationError as e:
            logger.error(
                "Malformed %s.%s payload (%d validation error(s)): %s",
                event,
                payload.get("action"),
                e.error_count(),
                str(e),
            )
            raise InvalidPayloadError(event, f"Malformed {event} payload: {e}") from e

        try:
            return handler(parsed)
        except Exception as e:
            number = None
            if parsed.pull_request is not None:
                number = parsed.pull_request.number
            elif parsed.issue is not None:
                number = parsed.issue.number
            logger.error(
                "Failed to process %s.%s for %s#%s: %s",
                event,
                parsed.action,
                parsed.repository.full_name,
                number,
                str(e),
                exc_info=True,
            )
            raise

    # ========================
    # Issues
    # ========================

    def _on_issues(self, payload: GitHubWebhookPayload) -> HandlerResult:
        issue = payload.issue
        if issue is None or issue.is_pull_request:
            return HandlerResult("ignored", "Not an issue")
        ref = IssueRef.from_full_name(payload.repository.full_name, issue.number)

        if payload.action == "opened":
            if PHASE_LABELS.intersection(issue.labels):
                return HandlerResult("skipped", f"{ref} already in governance")
            self.governance.start_discussion(ref)
            return HandlerResult("processed", f"Started discussion on {ref}")

        if payload.action == "labeled":
            # A human moved the issue straight to voting; the bot's own
            # transition posts its comment itself
            if payload.label is None or payload.label.name != Label.VOTING:
                return HandlerResult("ignored", "Label not handled")
            if payload.sender is not None and payload.sender.is_bot:
                return HandlerResult("skipped", "Label added by a bot")
            result = self.governance.post_voting_comment(ref)
            return HandlerResult("processed", f"Voting comment {result} on {ref}")

        return HandlerResult("ignored", f"Action '{payload.action}' not processed")

    # ========================
    # Pull Requests
    # ========================

    def _targets_default_branch(self, payload: GitHubWebhookPayload) -> bool:
        pr = payload.pull_request
        if pr is None or pr.base is None:
            return True
        return pr.base.ref == payload.repository.default_branch

    def _on_pull_request(self, payload: GitHubWebhookPayload) -> HandlerResult:
        pr = payload.pull_request
        if pr is None:
            return HandlerResult("ignored", "No pull request in payload")
        ref = IssueRef.from_full_name(payload.repository.full_name, pr.number)
        action = payload.action

        if action in ("opened", "synchronize", "edited"):
            if not self._targets_default_branch(payload):
                logger.info(
                    "Skipping PR intake for %s: targets %s, not %s",
                    ref,
                    pr.base.ref,
                    payload.repository.default_branch,
                )
                return HandlerResult("skipped", "PR targets a non-default branch")

        if action == "opened":
            linked = self.intake.resolve_opened_links(ref, pr.body)
            result = self.intake.process(
                ref, self._config(ref.full_name), IntakeTrigger.OPENED, linked_issues=linked
            )
            return HandlerResult("processed", f"Intake for {ref}: {result.status}")

        if action == "synchronize":
            result = self.intake.process(ref, self._config(ref.full_name), IntakeTrigger.UPDATED)
            return HandlerResult("processed", f"Intake for {ref}: {result.status}")

        if action == "edited":
            if not payload.body_changed:
                return HandlerResult("ignored", "PR edit did not change the body")
            result = self.intake.process(
                ref,
                self._config(ref.full_name),
                IntakeTrigger.EDITED,
                edited_at=pr.updated_at,
            )
            return HandlerResult("processed", f"Intake for {ref}: {result.status}")

        if action == "closed":
            implemented = self.intake.handle_pr_closed(ref, merged=pr.merged)
            if pr.merged:
                return HandlerResult(
                    "processed", f"Merged {ref}; implemented issues: {implemented}"
                )
            return HandlerResult("processed", f"Cleaned up closed {ref}")

        if action in ("labeled", "unlabeled"):
            if payload.label is None or payload.label.name != Label.IMPLEMENTATION:
                return HandlerResult("ignored", "Label not handled")
            updated = self.leaderboard.recalculate_for_pr(ref)
            return HandlerResult("processed", f"Leaderboards updated for issues {updated}")

        return HandlerResult("ignored", f"Action '{action}' not processed")

    def _on_pull_request_review(self, payload: GitHubWebhookPayload) -> HandlerResult:
        pr = payload.pull_request
        if pr is None:
            return HandlerResult("ignored", "No pull request in payload")
        ref = IssueRef.from_full_name(payload.repository.full_name, pr.number)

        if payload.action == "dismissed":
            updated = self.leaderboard.recalculate_for_pr(ref)
            return HandlerResult("processed", f"Leaderboards updated for issues {updated}")

        if payload.action == "submitted":
            state = (payload.review.state if payload.review else "").lower()
            if state != "approved":
                return HandlerResult("ignored", f"Review state '{state}' not processed")
            linked = self._client.get_linked_issues(ref)
            self.leaderboard.recalculate_for_pr(ref, linked)
            result = self.intake.process(
                ref, self._config(ref.full_name), IntakeTrigger.UPDATED, linked_issues=linked
            )
            return HandlerResult("processed", f"Approval on {ref}; intake: {result.status}")

        return HandlerResult("ignored", f"Action '{payload.action}' not processed")

    # ========================
    # Comments
    # ========================

    def _on_issue_comment(self, payload: GitHubWebhookPayload) -> HandlerResult:
        issue = payload.issue
        if payload.action != "created" or issue is None or not issue.is_pull_request:
            return HandlerResult("ignored", "Only new comments on pull requests are processed")

        author = payload.comment.user if payload.comment else payload.sender
        if author is None or author.is_bot:
            return HandlerResult("skipped", "Comment by a bot")

        ref = IssueRef.from_full_name(payload.repository.full_name, issue.number)
        result = self.intake.process(ref, self._config(ref.full_name), IntakeTrigger.UPDATED)
        return HandlerResult("processed", f"Intake for {ref}: {result.status}")
