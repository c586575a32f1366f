"""Run configuration for the deploy notifier.

The configuration is built exactly once, at the process boundary, and passed
to every component. Components never read environment variables themselves.

Sources, lowest precedence first:
1. Field defaults
2. An optional YAML file (same keys as the model fields)
3. GitHub Actions inputs (INPUT_<NAME>) and the GITHUB_* context variables

Blank values count as unset, which matches how GitHub Actions passes
inputs that were not provided.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from deploy_notify.errors import ConfigurationError
from deploy_notify.logging_config import get_logger
from deploy_notify.schemas import DeploymentEvent, Status

logger = get_logger(__name__)

DEFAULT_TEMPLATE = (
    "$STATUS_ICON $ACTOR_LINK $STATUS_TEXT $COMMIT_LINK from $REPO_LINK "
    "to $ENV_ICON $ENV_LINK"
)
DEFAULT_USERNAME = "Deploy Notify"

# field name -> environment variables consulted, first non-blank wins
ENV_INPUTS: dict[str, tuple[str, ...]] = {
    "github_token": ("INPUT_GITHUB_TOKEN", "GITHUB_TOKEN"),
    "commit": ("INPUT_COMMIT", "GITHUB_SHA"),
    "repo": ("INPUT_REPO", "GITHUB_REPOSITORY"),
    "environment": ("INPUT_ENVIRONMENT",),
    "environment_url": ("INPUT_ENVIRONMENT_URL",),
    "status": ("INPUT_STATUS",),
    "actor": ("INPUT_ACTOR", "GITHUB_ACTOR"),
    "slack_map_repo": ("INPUT_SLACK_MAP_REPO",),
    "slack_map_file": ("INPUT_SLACK_MAP_FILE",),
    "service_status_url": ("INPUT_SERVICE_STATUS_URL",),
    "service_status_authorization": ("INPUT_SERVICE_STATUS_AUTHORIZATION",),
    "status_commit_field": ("INPUT_STATUS_COMMIT_FIELD",),
    "message_template": ("INPUT_MESSAGE_TEMPLATE",),
    "channels": ("INPUT_CHANNELS",),
    "failure_channels": ("INPUT_FAILURE_CHANNELS",),
    "icon": ("INPUT_ICON",),
    "username": ("INPUT_USERNAME",),
    "slack_webhook": ("INPUT_SLACK_WEBHOOK",),
    "dry_run": ("INPUT_DRY_RUN",),
    "request_timeout": ("INPUT_REQUEST_TIMEOUT",),
    "deadline": ("INPUT_DEADLINE",),
}


def split_repo(reference: str) -> tuple[str, str]:
    """Split an "owner/name" repository reference.

    Raises:
        ConfigurationError: If the reference is not exactly two non-empty parts
    """
    parts = reference.strip().split("/")
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise ConfigurationError(
            f"Invalid repository reference {reference!r}: expected 'owner/name'"
        )
    return parts[0].strip(), parts[1].strip()


class NotifierConfig(BaseModel):
    """Everything one notification run needs to know.

    Attributes:
        github_token: Token for the GitHub REST API
        commit: SHA being deployed
        repo: Deploying repository ("owner/name")
        environment: Target environment name
        environment_url: Optional link target for the environment name
        status: Deployment lifecycle status
        actor: GitHub login that triggered the run
        slack_map_repo: Repository holding the identity mapping (defaults to repo)
        slack_map_file: Path of the mapping file inside slack_map_repo
        service_status_url: Endpoint reporting the currently deployed commit
        service_status_authorization: Authorization header for that endpoint
        status_commit_field: JSON field holding the deployed commit
        message_template: Headline template
        channels: Channels that always receive the notification
        failure_channels: Channels added when the deployment failed
        icon: Icon override (emoji code or image URL)
        username: Username override
        slack_webhook: Slack incoming webhook URL
        dry_run: Compile everything but send nothing
        request_timeout: Per-request timeout in seconds
        deadline: Upper bound for the whole run in seconds
    """

    github_token: str = ""
    commit: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    environment: str = "unknown environment"
    environment_url: str | None = None
    status: Status = Status.STARTED
    actor: str | None = None
    slack_map_repo: str | None = None
    slack_map_file: str = "mapping.json"
    service_status_url: str | None = None
    service_status_authorization: str | None = None
    status_commit_field: str = "BUILD_COMMIT"
    message_template: str = DEFAULT_TEMPLATE
    channels: list[str] = Field(default_factory=list)
    failure_channels: list[str] = Field(default_factory=list)
    icon: str | None = None
    username: str | None = None
    slack_webhook: str | None = None
    dry_run: bool = False
    request_timeout: float = Field(30.0, gt=0)
    deadline: float = Field(300.0, gt=0)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value: Any) -> Status:
        """Coerce free-form status input; unknown values become FAILURE."""
        if isinstance(value, Status):
            return value
        status = Status(value)
        if str(value).strip().lower() != status.value:
            logger.warning("unknown_status_coerced", raw=value, status=status.value)
        return status

    @field_validator("channels", "failure_channels", mode="before")
    @classmethod
    def split_channels(cls, value: Any) -> list[str]:
        """Accept a comma-separated string or a list of channel names."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(channel).strip() for channel in value if str(channel).strip()]

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------

    @property
    def owner_and_name(self) -> tuple[str, str]:
        """Owner and name of the deploying repository."""
        return split_repo(self.repo)

    @property
    def mapping_owner_and_name(self) -> tuple[str, str]:
        """Owner and name of the repository holding the identity mapping."""
        return split_repo(self.slack_map_repo or self.repo)

    def deployment_event(self) -> DeploymentEvent:
        """Build the immutable event describing this deployment."""
        return DeploymentEvent(
            commit=self.commit,
            environment=self.environment,
            status=self.status,
            actor=self.actor,
        )

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    @classmethod
    def load(
        cls,
        path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> NotifierConfig:
        """Load configuration from an optional YAML file and the environment.

        Args:
            path: Optional YAML file. A missing file contributes nothing.
            environ: Environment mapping. Defaults to os.environ.
            **overrides: Values that win over every other source (CLI flags).

        Returns:
            A validated NotifierConfig

        Raises:
            ConfigurationError: If the YAML is invalid or any value fails validation
        """
        raw: dict[str, Any] = {}
        if path is not None:
            raw.update(load_config_file(path))
        raw.update(read_env_inputs(os.environ if environ is None else environ))
        raw.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def read_env_inputs(environ: Mapping[str, str]) -> dict[str, str]:
    """Collect the non-blank GitHub Actions inputs for each config field."""
    values: dict[str, str] = {}
    for field, names in ENV_INPUTS.items():
        for name in names:
            value = environ.get(name, "").strip()
            if value:
                values[field] = value
                break
    return values


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML config file into a dict of field values.

    Returns:
        The non-blank values from the file, or an empty dict if it doesn't exist.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    config_path = Path(path)
    if not config_path.exists():
        logger.warning("config_file_missing", path=str(config_path))
        return {}

    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    return {k: v for k, v in raw.items() if v is not None and v != ""}
