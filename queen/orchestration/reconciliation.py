"""
Reconciliation sweeps that repair drift between expected and actual state.

Each sweep walks one set of open issues in a repository and calls the same
idempotent governance operations the webhook handlers use. Items are
isolated from each other:

  - 404/410: the issue is gone; logged and skipped.
  - Rate limits and 401/403: recorded in an AccessIssueCollector and
    skipped so operators can see quota or permission gaps.
  - Anything else: logged, counted as a failure, and the loop continues.

A sweep in which every processed item failed raises BatchProcessingError.
Partial failure returns normally with the failures listed in the result,
so "no exception" does not mean "everything was processed".
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from queen.config.repo_config import RepoConfig
from queen.models.governance import IssueRef, Phase, PHASE_LABELS
from queen.orchestration.governance import GovernanceService
from queen.orchestration.retry import (
    AccessIssueCollector,
    BatchProcessingError,
    ErrorKind,
    ItemFailure,
    classify_error,
    get_status,
    is_rate_limit_error,
)
from queen.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Counters for one sweep over one repository."""

    name: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    changed: int = 0
    failures: list[ItemFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "changed": self.changed,
        }


def run_sweep(
    name: str,
    items: Iterable,
    action: Callable[[Any], bool],
    collector: Optional[AccessIssueCollector] = None,
    ref_of: Callable[[Any], IssueRef] = lambda item: item,
) -> SweepResult:
    """
    Apply action to each ref with per-item failure isolation.

    Args:
        name: Sweep name for logs and the result.
        items: Issues (or items wrapping them) to process.
        action: Returns True when it changed something on GitHub.
        collector: Receives rate-limit and permission problems.
        ref_of: Extracts the IssueRef from an item.

    Raises:
        BatchProcessingError: If at least one item was processed and all
            of them failed.
    """
    result = SweepResult(name=name)

    for item in items:
        ref = ref_of(item)
        result.processed += 1
        try:
            if action(item):
                result.changed += 1
            result.succeeded += 1
        except Exception as e:
            kind = classify_error(e)
            status = get_status(e)

            if kind == ErrorKind.RESOURCE_GONE:
                logger.warning("%s: %s not found (may have been deleted). Skipping.", name, ref)
                result.skipped += 1
                continue

            if is_rate_limit_error(e) or status == 429:
                logger.warning("%s: %s rate limited. Skipping for now.", name, ref)
                if collector is not None:
                    collector.record(ref, status, "rate_limit")
                result.skipped += 1
                continue

            if status in (401, 403):
                logger.warning("%s: %s forbidden or missing permissions. Skipping.", name, ref)
                if collector is not None:
                    collector.record(ref, status, "forbidden")
                result.skipped += 1
                continue

            logger.error("%s: failed on %s: %s", name, ref, str(e))
            result.failed += 1
            result.failures.append(ItemFailure(item=ref, error=str(e), kind=kind))

    logger.info(
        "%s: processed=%d succeeded=%d changed=%d skipped=%d failed=%d",
        name,
        result.processed,
        result.succeeded,
        result.changed,
        result.skipped,
        result.failed,
    )

    if result.processed > 0 and result.failed == result.processed:
        raise BatchProcessingError(name, result.failures)
    return result


def _refs(client, repo_full_name: str, label: Optional[str] = None) -> list[IssueRef]:
    return [
        IssueRef.from_full_name(repo_full_name, issue.number)
        for issue in client.list_open_issues(repo_full_name, label)
    ]


def reconcile_missing_voting_comments(
    repo_full_name: str,
    governance: GovernanceService,
    client,
    collector: Optional[AccessIssueCollector] = None,
) -> SweepResult:
    """Post the voting comment on voting-phase issues that lack one."""
    refs = _refs(client, repo_full_name, Phase.VOTING.label)
    refs += _refs(client, repo_full_name, Phase.EXTENDED_VOTING.label)
    return run_sweep(
        f"missing-voting-comments[{repo_full_name}]",
        refs,
        lambda ref: governance.post_voting_comment(ref) == "posted",
        collector,
    )


def reconcile_unlabeled_issues(
    repo_full_name: str,
    governance: GovernanceService,
    client,
    collector: Optional[AccessIssueCollector] = None,
) -> SweepResult:
    """Start discussion on open issues that carry no phase label."""
    refs = [
        IssueRef.from_full_name(repo_full_name, issue.number)
        for issue in client.list_open_issues(repo_full_name)
        if not PHASE_LABELS.intersection(issue.labels)
    ]

    def start(ref: IssueRef) -> bool:
        governance.start_discussion(ref)
        return True

    return run_sweep(f"unlabeled-issues[{repo_full_name}]", refs, start, collector)


def process_phase_sweep(
    repo_full_name: str,
    governance: GovernanceService,
    client,
    config: RepoConfig,
    collector: Optional[AccessIssueCollector] = None,
    now: Optional[datetime] = None,
) -> SweepResult:
    """
    Apply timed transitions to every issue in discussion, voting or
    extended voting.
    """
    phased = [
        (ref, phase)
        for phase in (Phase.DISCUSSION, Phase.VOTING, Phase.EXTENDED_VOTING)
        for ref in _refs(client, repo_full_name, phase.label)
    ]

    def evaluate(item) -> bool:
        ref, phase = item
        return governance.process_phase(ref, phase, config, now).transitioned

    return run_sweep(
        f"phase-transitions[{repo_full_name}]",
        phased,
        evaluate,
        collector,
        ref_of=lambda item: item[0],
    )
