"""
Error classification and classified retry for GitHub API calls.

Taxonomy:
  - TRANSIENT: 502/503/504, connection reset or timeout, and rate limits
    (429 or 403 carrying a rate-limit signal). Retried with backoff.
  - RESOURCE_GONE: 404/410. The issue or PR no longer exists; callers
    log and skip.
  - ACCESS: 401/403 (and a 429 with no retry hint). Not retried; sweeps
    report these to an AccessIssueCollector.
  - UNEXPECTED: anything else, including programming errors. Propagates
    on first occurrence.

Usage:
    from queen.orchestration.retry import with_retry

    labels = with_retry(lambda: issue.get_labels(), max_attempts=3, base_delay=1.0)
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

import requests
from github import GithubException
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from queen.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({502, 503, 504})
GONE_STATUSES = frozenset({404, 410})
JITTER_SECONDS = 0.5

_NETWORK_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionResetError,
    TimeoutError,
)


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    RESOURCE_GONE = "resource_gone"
    ACCESS = "access"
    UNEXPECTED = "unexpected"


# ========================
# Domain Exceptions
# ========================


class GovernanceError(Exception):
    """Base class for governance engine errors."""


class TransitionError(GovernanceError):
    """
    Raised when a phase transition fails part-way.

    Attributes:
        step: The step that failed (unlock, add_label, comment, close,
            remove_label, lock).
    """

    def __init__(self, ref, step: str, cause: Exception):
        self.ref = ref
        self.step = step
        self.cause = cause
        super().__init__(f"Transition of {ref} failed at step '{step}': {cause}")


@dataclass
class ItemFailure:
    item: Any
    error: str
    kind: ErrorKind


class BatchProcessingError(GovernanceError):
    """Raised when every item of a non-empty batch failed."""

    def __init__(self, operation: str, failures: list[ItemFailure]):
        self.operation = operation
        self.failures = failures
        super().__init__(f"{operation}: all {len(failures)} item(s) failed")


# ========================
# Classification
# ========================


def root_cause(error: BaseException) -> BaseException:
    """Unwrap TransitionError so the failing GitHub call gets classified."""
    while isinstance(error, TransitionError):
        error = error.cause
    return error


def get_status(error: BaseException) -> Optional[int]:
    status = getattr(root_cause(error), "status", None)
    return status if isinstance(status, int) else None


def _header(error: BaseException, name: str) -> Optional[str]:
    headers = getattr(root_cause(error), "headers", None) or {}
    target = name.lower()
    for key, value in headers.items():
        if key.lower() == target and value is not None:
            return str(value)
    return None


def _message(error: BaseException) -> str:
    error = root_cause(error)
    if isinstance(error, GithubException):
        data = error.data if isinstance(error.data, dict) else {}
        return str(data.get("message") or error).lower()
    return str(error).lower()


def is_rate_limit_error(error: BaseException) -> bool:
    """403/429 carrying a zero-remaining quota, a retry-after hint, or rate-limit wording."""
    if get_status(error) not in (403, 429):
        return False
    if _header(error, "x-ratelimit-remaining") == "0" or _header(error, "retry-after"):
        return True
    return "rate limit" in _message(error)


def is_not_found_error(error: BaseException) -> bool:
    return get_status(error) in GONE_STATUSES


def is_retryable_error(error: BaseException) -> bool:
    if isinstance(root_cause(error), _NETWORK_ERRORS):
        return True
    if get_status(error) in RETRYABLE_STATUSES:
        return True
    return is_rate_limit_error(error)


def classify_error(error: BaseException) -> ErrorKind:
    if is_retryable_error(error):
        return ErrorKind.TRANSIENT
    if is_not_found_error(error):
        return ErrorKind.RESOURCE_GONE
    if get_status(error) in (401, 403, 429):
        return ErrorKind.ACCESS
    return ErrorKind.UNEXPECTED


# ========================
# Retry
# ========================


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Attempt %d failed, retrying in %dms: %s",
        retry_state.attempt_number,
        round(delay * 1000),
        str(error),
    )


def with_retry(
    fn: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = JITTER_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying transient failures with exponential backoff.

    Delay before retry n is base_delay * 2**(n-1) (capped at max_delay)
    plus up to `jitter` seconds of random jitter. Non-retryable errors
    propagate on first occurrence; a transient error still failing after
    max_attempts propagates unchanged.
    """
    retryer = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay) + wait_random(0, jitter),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_log_retry,
        reraise=True,
        sleep=sleep,
    )
    return retryer(fn)


# ========================
# Access Issue Collection
# ========================


@dataclass
class AccessIssue:
    repo: str
    issue_number: int
    status: Optional[int]
    reason: str  # "rate_limit" | "forbidden"


@dataclass
class AccessIssueCollector:
    """Accumulates per-issue quota and permission problems during a sweep."""

    issues: list[AccessIssue] = field(default_factory=list)

    def record(self, ref, status: Optional[int], reason: str) -> None:
        self.issues.append(AccessIssue(ref.full_name, ref.number, status, reason))

    @property
    def rate_limited(self) -> list[AccessIssue]:
        return [i for i in self.issues if i.reason == "rate_limit"]

    @property
    def forbidden(self) -> list[AccessIssue]:
        return [i for i in self.issues if i.reason == "forbidden"]

    def log_summary(self) -> None:
        for label, group in (("Rate limited", self.rate_limited), ("Forbidden", self.forbidden)):
            if group:
                logger.warning(
                    "%s on %d issue(s): %s",
                    label,
                    len(group),
                    ", ".join(f"{i.repo}#{i.issue_number}" for i in group),
                )
