"""
Metadata comment protocol: typed, versioned tags embedded in bot comments.

Every comment the bot posts that it may later need to find again (voting
anchors, leaderboards, notifications, error escalations) starts with a
single-line HTML comment holding a JSON payload:

    <!-- hivemoot-metadata: {"version":1,"type":"voting","issueNumber":42,...} -->
    # 🐝 Voting Phase
    ...

The tags act as an append-only ledger stored on GitHub itself: "has this
notification already been posted?" and "which voting comment is current?"
are answered by scanning comments for tags, so the bot keeps no database.

A tag is only trusted when the comment was posted by the bot's own GitHub
App. Anyone can paste a tag (or the visible signature text) into a comment
of their own; `is_of_type` rejects those.

Usage:
    from queen.orchestration.metadata import (
        MetadataType, build_metadata_comment, create_metadata, is_of_type,
    )

    body = build_metadata_comment(
        "# 🐝 Voting Phase ...",
        create_metadata(MetadataType.VOTING, issue_number=42, cycle=2),
    )
    is_of_type(body, MetadataType.VOTING, self_actor_id=123, actual_actor_id=123)
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Iterable, Literal, Optional, Sequence, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

METADATA_VERSION = 1
METADATA_PREFIX = "hivemoot-metadata"

_TAG_PATTERN = re.compile(
    rf"<!--\s*{METADATA_PREFIX}:\s*(\{{.*?\}})\s*-->",
    re.DOTALL,
)


class MetadataType(str, Enum):
    """Kinds of metadata-tagged comments."""

    WELCOME = "welcome"
    VOTING = "voting"
    LEADERBOARD = "leaderboard"
    ALIGNMENT = "alignment"
    ERROR = "error"
    NOTIFICATION = "notification"
    STANDUP = "standup"


class NotificationType:
    VOTING_PASSED = "voting-passed"
    IMPLEMENTATION_WELCOME = "implementation-welcome"
    ISSUE_NEW_PR = "issue-new-pr"


class ErrorCode:
    VOTING_COMMENT_NOT_FOUND = "voting-comment-not-found"


# ========================
# Metadata Models
# ========================


class _Metadata(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )

    version: StrictInt
    issue_number: StrictInt
    created_at: StrictStr

    @field_validator("created_at")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        # fromisoformat only accepts a trailing Z from Python 3.11 on
        datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v


class WelcomeMetadata(_Metadata):
    type: Literal["welcome"] = "welcome"


class VotingMetadata(_Metadata):
    type: Literal["voting"] = "voting"
    cycle: Optional[StrictInt] = None


class LeaderboardMetadata(_Metadata):
    type: Literal["leaderboard"] = "leaderboard"


class AlignmentMetadata(_Metadata):
    type: Literal["alignment"] = "alignment"


class ErrorMetadata(_Metadata):
    type: Literal["error"] = "error"
    error_code: StrictStr


class NotificationMetadata(_Metadata):
    type: Literal["notification"] = "notification"
    notification_type: StrictStr


class StandupMetadata(_Metadata):
    type: Literal["standup"] = "standup"
    day: StrictInt
    date: StrictStr
    repo: StrictStr


CommentMetadata = Annotated[
    Union[
        WelcomeMetadata,
        VotingMetadata,
        LeaderboardMetadata,
        AlignmentMetadata,
        ErrorMetadata,
        NotificationMetadata,
        StandupMetadata,
    ],
    Field(discriminator="type"),
]

_metadata_adapter: TypeAdapter = TypeAdapter(CommentMetadata)

_MODELS_BY_TYPE = {
    MetadataType.WELCOME: WelcomeMetadata,
    MetadataType.VOTING: VotingMetadata,
    MetadataType.LEADERBOARD: LeaderboardMetadata,
    MetadataType.ALIGNMENT: AlignmentMetadata,
    MetadataType.ERROR: ErrorMetadata,
    MetadataType.NOTIFICATION: NotificationMetadata,
    MetadataType.STANDUP: StandupMetadata,
}


# ========================
# Build / Parse
# ========================


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_metadata(
    metadata_type: MetadataType,
    issue_number: int,
    created_at: Optional[str] = None,
    **fields: Any,
) -> _Metadata:
    """
    Create a validated metadata payload.

    Args:
        metadata_type: Kind of comment.
        issue_number: Issue (or PR) the comment is about.
        created_at: ISO-8601 timestamp; defaults to now (UTC).
        **fields: Type-specific fields in snake_case (cycle, error_code,
            notification_type, day/date/repo).

    Raises:
        ValidationError: If a required type-specific field is missing.
    """
    model = _MODELS_BY_TYPE[MetadataType(metadata_type)]
    return model(
        version=METADATA_VERSION,
        issue_number=issue_number,
        created_at=created_at or _utc_now_iso(),
        **fields,
    )


def serialize_metadata(metadata: _Metadata) -> str:
    """Render the single-line tag for a metadata payload."""
    payload = metadata.model_dump(by_alias=True, exclude_none=True, mode="json")
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return f"<!-- {METADATA_PREFIX}: {encoded} -->"


def build_metadata_comment(content: str, metadata: _Metadata) -> str:
    """Prefix Markdown content with its metadata tag."""
    return f"{serialize_metadata(metadata)}\n{content}"


def parse_metadata(body: Optional[str]):
    """
    Extract and validate the metadata tag from a comment body.

    Malformed JSON, a non-object payload, an unknown type, or a missing or
    mistyped required field all yield None. There is no best-effort
    partial result.

    Returns:
        One of the *Metadata models, or None.
    """
    if not body:
        return None

    match = _TAG_PATTERN.search(body)
    if not match:
        return None

    try:
        raw = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None

    if not isinstance(raw, dict):
        return None

    try:
        return _metadata_adapter.validate_python(raw)
    except ValidationError:
        return None


# ========================
# Typed Builders
# ========================


def build_voting_comment(content: str, issue_number: int, cycle: int) -> str:
    return build_metadata_comment(
        content, create_metadata(MetadataType.VOTING, issue_number, cycle=cycle)
    )


def build_welcome_comment(content: str, issue_number: int) -> str:
    return build_metadata_comment(content, create_metadata(MetadataType.WELCOME, issue_number))


def build_leaderboard_comment(content: str, issue_number: int) -> str:
    return build_metadata_comment(
        content, create_metadata(MetadataType.LEADERBOARD, issue_number)
    )


def build_human_help_comment(content: str, issue_number: int, error_code: str) -> str:
    return build_metadata_comment(
        content, create_metadata(MetadataType.ERROR, issue_number, error_code=error_code)
    )


def build_notification_comment(
    content: str, issue_number: int, notification_type: str
) -> str:
    return build_metadata_comment(
        content,
        create_metadata(
            MetadataType.NOTIFICATION, issue_number, notification_type=notification_type
        ),
    )


# ========================
# Verified Lookups
# ========================


def is_of_type(
    body: Optional[str],
    expected_type: MetadataType,
    self_actor_id: Optional[int],
    actual_actor_id: Optional[int],
    issue_number: Optional[int] = None,
    notification_type: Optional[str] = None,
    error_code: Optional[str] = None,
) -> bool:
    """
    Check that a comment carries metadata of a type AND was posted by us.

    Args:
        body: Comment body.
        expected_type: Required metadata type.
        self_actor_id: The bot's own GitHub App id.
        actual_actor_id: App id the comment was posted through (None for
            comments posted by users).
        issue_number: If given, the metadata issueNumber must match.
        notification_type: If given, must match (notification comments).
        error_code: If given, must match (error comments).
    """
    if self_actor_id is None or actual_actor_id is None:
        return False
    if actual_actor_id != self_actor_id:
        return False

    metadata = parse_metadata(body)
    if metadata is None or metadata.type != MetadataType(expected_type).value:
        return False

    if issue_number is not None and metadata.issue_number != issue_number:
        return False
    if notification_type is not None and getattr(metadata, "notification_type", None) != notification_type:
        return False
    if error_code is not None and getattr(metadata, "error_code", None) != error_code:
        return False
    return True


def is_voting_comment(body, self_actor_id, actual_actor_id) -> bool:
    return is_of_type(body, MetadataType.VOTING, self_actor_id, actual_actor_id)


def is_welcome_comment(body, self_actor_id, actual_actor_id) -> bool:
    return is_of_type(body, MetadataType.WELCOME, self_actor_id, actual_actor_id)


def is_leaderboard_comment(body, self_actor_id, actual_actor_id, issue_number=None) -> bool:
    return is_of_type(
        body, MetadataType.LEADERBOARD, self_actor_id, actual_actor_id, issue_number=issue_number
    )


def is_human_help_comment(body, self_actor_id, actual_actor_id, error_code=None) -> bool:
    return is_of_type(
        body, MetadataType.ERROR, self_actor_id, actual_actor_id, error_code=error_code
    )


def is_notification_comment(
    body, self_actor_id, actual_actor_id, notification_type=None, issue_number=None
) -> bool:
    return is_of_type(
        body,
        MetadataType.NOTIFICATION,
        self_actor_id,
        actual_actor_id,
        issue_number=issue_number,
        notification_type=notification_type,
    )


# ========================
# Voting Cycle Selection
# ========================


@dataclass(frozen=True)
class VotingCandidate:
    """A verified voting comment and the cycle its tag declares."""

    comment_id: int
    cycle: Optional[int]
    created_at: Optional[datetime] = None


T = TypeVar("T")


def select_current(candidates: Iterable[T]) -> Optional[T]:
    """
    Pick the authoritative voting comment.

    Highest cycle wins; candidates without a cycle sort last. Ties keep
    input order (the sort is stable), never creation time.
    """
    ordered: Sequence[T] = sorted(
        candidates,
        key=lambda c: (c.cycle is None, -(c.cycle or 0)),
    )
    return ordered[0] if ordered else None
