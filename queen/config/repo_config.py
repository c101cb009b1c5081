"""
Per-repository governance configuration loaded from `.github/hivemoot.yml`.

The YAML document is parsed with PyYAML and validated into frozen Pydantic
models. Numeric values outside CONFIG_BOUNDS are clamped; values of the wrong
type fall back to their defaults with a warning. A missing, unreadable or
invalid file never blocks processing: the defaults are used instead.

The loaded RepoConfig is an immutable snapshot that callers pass explicitly
into every governance call for the duration of one event or sweep.

Example file:

    governance:
      proposals:
        discussion:
          exits:
            - afterMinutes: 60
              minReady: 2
            - afterMinutes: 1440
        voting:
          exits:
            - afterMinutes: 120
              minVoters: 5
              requires: unanimous
            - afterMinutes: 1440
      pr:
        maxPRsPerIssue: 2
        trustedReviewers: [alice, bob]
        intake:
          - method: update
          - method: approval
            minApprovals: 1
"""

from datetime import timedelta
from typing import Any, Literal, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from queen.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH = ".github/hivemoot.yml"

# (min, max, default) for every tunable number
CONFIG_BOUNDS: dict[str, tuple[int, int, int]] = {
    "after_minutes": (1, 30 * 24 * 60, 24 * 60),
    "stale_days": (1, 30, 3),
    "max_prs_per_issue": (1, 10, 3),
    "min_voters": (0, 50, 3),
    "min_approvals": (1, 20, 1),
}

ExitType = Literal["auto", "manual"]
ExitRequires = Literal["majority", "unanimous"]
IntakeMethodName = Literal["update", "approval", "auto"]
INTAKE_METHODS = ("update", "approval", "auto")


def clamp_bound(name: str, value: Any) -> int:
    """Clamp a raw config value into CONFIG_BOUNDS[name], or return its default."""
    low, high, default = CONFIG_BOUNDS[name]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if value is not None:
            logger.warning(
                "Invalid %s value %r in %s, using default %d",
                name, value, CONFIG_PATH, default,
            )
        return default
    return max(low, min(high, int(value)))


def _bounded(*names: str):
    """Build a before-validator that clamps each named field."""

    def _validate(cls, v, info):
        return clamp_bound(info.field_name, v)

    return field_validator(*names, mode="before")(classmethod(_validate))


def _lower_logins(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(login).strip().lower() for login in value if str(login).strip())


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ========================
# Proposal Exits
# ========================


class RequiredVoters(_ConfigModel):
    """A named set of voters, at least min_count of whom must take part."""

    min_count: int = 0
    voters: tuple[str, ...] = ()

    @field_validator("voters", mode="before")
    @classmethod
    def normalize_voters(cls, v):
        return _lower_logins(v)

    @model_validator(mode="after")
    def clamp_min_count(self) -> "RequiredVoters":
        bounded = max(0, min(self.min_count, len(self.voters)))
        if bounded != self.min_count:
            object.__setattr__(self, "min_count", bounded)
        return self


class RequiredReady(_ConfigModel):
    """Named users who must signal readiness before discussion may end early."""

    min_count: int = 0
    users: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data):
        # A bare list means every listed user is required
        if isinstance(data, (list, tuple)):
            users = _lower_logins(data)
            return {"minCount": len(users), "users": users}
        return data

    @field_validator("users", mode="before")
    @classmethod
    def normalize_users(cls, v):
        return _lower_logins(v)

    @model_validator(mode="after")
    def clamp_min_count(self) -> "RequiredReady":
        bounded = max(0, min(self.min_count, len(self.users)))
        if bounded != self.min_count:
            object.__setattr__(self, "min_count", bounded)
        return self


class _Exit(_ConfigModel):
    type: ExitType = "auto"
    after_minutes: int = CONFIG_BOUNDS["after_minutes"][2]

    clamp_after_minutes = _bounded("after_minutes")

    @property
    def after(self) -> timedelta:
        return timedelta(minutes=self.after_minutes)

    @property
    def is_auto(self) -> bool:
        return self.type == "auto"


class VotingExit(_Exit):
    """A voting checkpoint: after `after_minutes`, close voting if eligible."""

    requires: ExitRequires = "majority"
    min_voters: int = CONFIG_BOUNDS["min_voters"][2]
    required_voters: RequiredVoters = RequiredVoters()

    clamp_min_voters = _bounded("min_voters")


class DiscussionExit(_Exit):
    """A discussion checkpoint: after `after_minutes`, open voting if ready."""

    min_ready: int = 0
    required_ready: RequiredReady = RequiredReady()

    @field_validator("min_ready", mode="before")
    @classmethod
    def non_negative_min_ready(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0
        return max(0, int(v))


def _sorted_exits(exits: tuple) -> tuple:
    return tuple(sorted(exits, key=lambda e: e.after_minutes))


class DiscussionPhaseConfig(_ConfigModel):
    exits: tuple[DiscussionExit, ...] = (DiscussionExit(),)

    @field_validator("exits", mode="after")
    @classmethod
    def sort_exits(cls, v):
        return _sorted_exits(v) or (DiscussionExit(),)

    @property
    def deadline(self) -> Optional[DiscussionExit]:
        """The last auto exit; reaching it transitions unconditionally."""
        auto = [e for e in self.exits if e.is_auto]
        return auto[-1] if auto else None


class VotingPhaseConfig(_ConfigModel):
    exits: tuple[VotingExit, ...] = (VotingExit(),)

    @field_validator("exits", mode="after")
    @classmethod
    def sort_exits(cls, v):
        return _sorted_exits(v) or (VotingExit(),)

    @property
    def deadline(self) -> Optional[VotingExit]:
        """The last auto exit; reaching it closes voting unconditionally."""
        auto = [e for e in self.exits if e.is_auto]
        return auto[-1] if auto else None


class ProposalsConfig(_ConfigModel):
    discussion: DiscussionPhaseConfig = DiscussionPhaseConfig()
    voting: VotingPhaseConfig = VotingPhaseConfig()
    extended_voting: VotingPhaseConfig = VotingPhaseConfig()


# ========================
# Pull Requests
# ========================


class IntakeMethod(_ConfigModel):
    """One rule that may admit a PR whose activity predates the ready decision."""

    method: IntakeMethodName = "update"
    min_approvals: int = CONFIG_BOUNDS["min_approvals"][2]

    clamp_min_approvals = _bounded("min_approvals")


class PRConfig(_ConfigModel):
    # Carried for stale-PR tooling; intake and the sweeps do not read it
    stale_days: int = CONFIG_BOUNDS["stale_days"][2]
    max_prs_per_issue: int = Field(CONFIG_BOUNDS["max_prs_per_issue"][2], alias="maxPRsPerIssue")
    trusted_reviewers: tuple[str, ...] = ()
    intake: tuple[IntakeMethod, ...] = (IntakeMethod(),)

    clamp_numbers = _bounded("stale_days", "max_prs_per_issue")

    @field_validator("trusted_reviewers", mode="before")
    @classmethod
    def normalize_reviewers(cls, v):
        return _lower_logins(v)

    @field_validator("intake", mode="before")
    @classmethod
    def drop_unknown_methods(cls, v):
        if not isinstance(v, (list, tuple)):
            return (IntakeMethod(),)
        kept = []
        for entry in v:
            method = entry.get("method") if isinstance(entry, dict) else getattr(entry, "method", None)
            if method in INTAKE_METHODS:
                kept.append(entry)
            else:
                logger.warning("Ignoring unknown intake method %r in %s", method, CONFIG_PATH)
        return tuple(kept) or (IntakeMethod(),)


class GovernanceConfig(_ConfigModel):
    proposals: ProposalsConfig = ProposalsConfig()
    pr: PRConfig = PRConfig()


class RepoConfig(_ConfigModel):
    """Effective governance configuration for one repository."""

    version: int = 1
    governance: GovernanceConfig = GovernanceConfig()


# ========================
# Loading
# ========================


def get_default_config() -> RepoConfig:
    return RepoConfig()


def parse_repo_config(data: Any, repo_full_name: str = "") -> RepoConfig:
    """
    Validate a parsed YAML document into a RepoConfig.

    Args:
        data: Result of yaml.safe_load.
        repo_full_name: Used only in log messages.

    Returns:
        RepoConfig; the defaults if the document is empty or invalid.
    """
    if data is None:
        logger.debug("[%s] Empty %s. Using defaults.", repo_full_name, CONFIG_PATH)
        return get_default_config()

    if not isinstance(data, dict):
        logger.warning(
            "[%s] %s must be a YAML mapping. Using defaults.", repo_full_name, CONFIG_PATH
        )
        return get_default_config()

    try:
        return RepoConfig.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "[%s] Invalid %s (%d errors): %s. Using defaults.",
            repo_full_name,
            CONFIG_PATH,
            e.error_count(),
            e.errors()[0]["msg"],
        )
        return get_default_config()


def load_repo_config(client, repo_full_name: str) -> RepoConfig:
    """
    Load the governance config for a repository.

    Args:
        client: GitHubClient used to read the config file.
        repo_full_name: Repository in "owner/repo" format.

    Returns:
        RepoConfig with validated, clamped settings.
    """
    try:
        content = client.get_file_content(repo_full_name, CONFIG_PATH)
    except Exception as e:
        # Config read problems never block governance; the defaults apply
        logger.warning(
            "[%s] Failed to load %s: %s. Using defaults.",
            repo_full_name,
            CONFIG_PATH,
            str(e),
        )
        return get_default_config()

    if content is None:
        logger.debug("[%s] No %s found. Using defaults.", repo_full_name, CONFIG_PATH)
        return get_default_config()

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.warning(
            "[%s] Invalid YAML in %s: %s. Using defaults.", repo_full_name, CONFIG_PATH, str(e)
        )
        return get_default_config()

    config = parse_repo_config(data, repo_full_name)
    logger.info("[%s] Loaded config from %s", repo_full_name, CONFIG_PATH)
    return config
