"""Pydantic models for the data flowing through the notification pipeline.

These schemas are the single source of truth for what each stage produces
and consumes:
- DeploymentEvent: built once from configuration, read by every stage
- CommitRecord: produced by the commit range differ
- CommitBlock / NotificationMessage: produced by the message compiler,
  consumed by the dispatcher

Key design decisions:
- Records are frozen; nothing mutates them after construction
- Status is a closed enum; unknown values coerce to FAILURE instead of raising
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# GitHub login -> Slack member id
IdentityMap = dict[str, str]

# Display text for commits that carry no message.
MESSAGE_PLACEHOLDER = "-"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Status(str, Enum):
    """Lifecycle status of a deployment.

    STARTED: Deployment is in progress
    SUCCESS: Deployment finished
    CANCELLED: Deployment was cancelled before finishing
    FAILURE: Deployment failed (also used for unrecognized values)
    """

    STARTED = "started"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILURE = "failure"

    @classmethod
    def _missing_(cls, value: object) -> Status:
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.FAILURE

    @property
    def needs_diff(self) -> bool:
        """Whether the delivered commit range is part of the notification."""
        return self in (Status.STARTED, Status.FAILURE)


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


class DeploymentEvent(BaseModel):
    """One deployment of a commit to an environment.

    Attributes:
        commit: SHA being deployed (the head of the commit range)
        environment: Target environment name (e.g., "staging", "nightly")
        status: Lifecycle status of the deployment
        actor: GitHub login that triggered the deployment, if known
    """

    model_config = ConfigDict(frozen=True)

    commit: str = Field(..., min_length=1, description="Commit SHA being deployed")
    environment: str = Field(..., description="Target environment")
    status: Status = Field(Status.STARTED, description="Deployment lifecycle status")
    actor: str | None = Field(None, description="GitHub login of the triggering user")


# ---------------------------------------------------------------------------
# Commit range
# ---------------------------------------------------------------------------


class CommitRecord(BaseModel):
    """A single commit delivered by the deployment.

    Attributes:
        sha: Full commit SHA
        author_login: GitHub login of the author (absent for unlinked emails)
        author_profile_url: GitHub profile URL of the author
        author_avatar_url: Avatar image URL of the author
        author_name: Git author name, used when there is no GitHub login
        message: First line of the commit message
        url: Web URL of the commit
    """

    model_config = ConfigDict(frozen=True)

    sha: str
    author_login: str | None = None
    author_profile_url: str | None = None
    author_avatar_url: str | None = None
    author_name: str | None = None
    message: str = MESSAGE_PLACEHOLDER
    url: str

    @field_validator("message", mode="before")
    @classmethod
    def first_line(cls, value: object) -> str:
        """Keep only the summary line of the commit message."""
        if not isinstance(value, str):
            return MESSAGE_PLACEHOLDER
        lines = value.strip().splitlines()
        if not lines or not lines[0].strip():
            return MESSAGE_PLACEHOLDER
        return lines[0].strip()


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class CommitBlock(BaseModel):
    """Rendered view of one commit: a mrkdwn line plus an optional avatar."""

    model_config = ConfigDict(frozen=True)

    text: str
    image_url: str | None = None


class NotificationMessage(BaseModel):
    """The compiled notification.

    Attributes:
        headline: Rendered status line (never empty)
        blocks: One block per delivered commit, oldest first
    """

    model_config = ConfigDict(frozen=True)

    headline: str = Field(..., min_length=1)
    blocks: list[CommitBlock] = Field(default_factory=list)
