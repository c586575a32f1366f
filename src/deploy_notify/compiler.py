"""Message compiler: turns a deployment event and its commits into a message.

The headline comes from a template with a fixed set of tokens:

    $ACTOR_LINK   who triggered the deployment (mention or profile link)
    $STATUS_ICON  emoji for the lifecycle status
    $STATUS_TEXT  "deploying", "deployed", ...
    $ENV_ICON     emoji for the target environment
    $ENV_LINK     environment name, linked when an environment URL is set
    $COMMIT_LINK  short SHA linked to the commit
    $REPO_LINK    owner/name linked to the repository

Anything else, including unknown $TOKENS, is left as written. After
substitution, runs of whitespace collapse to a single space so an empty
token doesn't leave a gap.

Each delivered commit becomes one CommitBlock carrying the author (resolved
like the actor) and the commit summary, plus the author's avatar if known.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from deploy_notify.config import DEFAULT_TEMPLATE
from deploy_notify.schemas import (
    CommitBlock,
    CommitRecord,
    DeploymentEvent,
    IdentityMap,
    NotificationMessage,
    Status,
)

GITHUB_URL = "https://github.com"
NIGHTLY_ENVIRONMENT = "nightly"

# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------

STATUS_DISPLAY: dict[Status, tuple[str, str]] = {
    Status.STARTED: ("deploying", ":hourglass_flowing_sand:"),
    Status.SUCCESS: ("deployed", ":white_check_mark:"),
    Status.CANCELLED: ("cancelled", ":grey_question:"),
    Status.FAILURE: ("deployment failure", ":x:"),
}

ENVIRONMENT_ICONS: dict[str, str] = {
    "staging": ":construction:",
    "production": ":rocket:",
    "nightly": ":crescent_moon:",
    "uat": ":test_tube:",
}
DEFAULT_ENVIRONMENT_ICON = ":package:"

TOKENS = (
    "ACTOR_LINK",
    "STATUS_ICON",
    "STATUS_TEXT",
    "ENV_ICON",
    "ENV_LINK",
    "COMMIT_LINK",
    "REPO_LINK",
)
_TOKEN_RE = re.compile(r"\$(" + "|".join(TOKENS) + r")\b")
_WHITESPACE_RE = re.compile(r"\s{2,}")


def status_display(status: Status | str) -> tuple[str, str]:
    """Return (text, icon) for a status; anything unrecognized reads as failure."""
    try:
        status = Status(status)
    except ValueError:
        status = Status.FAILURE
    return STATUS_DISPLAY.get(status, STATUS_DISPLAY[Status.FAILURE])


def environment_icon(environment: str) -> str:
    return ENVIRONMENT_ICONS.get(environment.strip().lower(), DEFAULT_ENVIRONMENT_ICON)


# ---------------------------------------------------------------------------
# Slack mrkdwn helpers
# ---------------------------------------------------------------------------


def escape(text: str) -> str:
    """Escape the three characters Slack treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def link(url: str, label: str) -> str:
    return f"<{url}|{escape(label)}>"


def render_identity(
    login: str | None,
    identity_map: IdentityMap,
    profile_url: str | None = None,
    fallback_name: str | None = None,
) -> str:
    """Render a person as a Slack mention when mapped, else a profile link.

    Args:
        login: GitHub login, if known
        identity_map: Login -> Slack member id
        profile_url: Explicit profile URL; synthesized from the login if absent
        fallback_name: Plain name used when there is no login at all

    Returns:
        "<@U123>", "<https://github.com/login|login>", or a plain name
    """
    if not login:
        return escape(fallback_name or "unknown")
    member_id = identity_map.get(login)
    if member_id:
        return f"<@{member_id}>"
    return link(profile_url or f"{GITHUB_URL}/{login}", login)


def render_template(template: str, values: dict[str, str]) -> str:
    """Substitute known tokens and collapse whitespace runs."""
    rendered = _TOKEN_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)
    return _WHITESPACE_RE.sub(" ", rendered).strip()


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


class MessageCompiler:
    """Renders NotificationMessages for one repository.

    Usage:
        compiler = MessageCompiler("myorg", "api", template=config.message_template)
        message = compiler.compile(event, identity_map, commits)
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        template: str = DEFAULT_TEMPLATE,
        environment_url: str | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.template = template or DEFAULT_TEMPLATE
        self.environment_url = environment_url

    @property
    def repo_url(self) -> str:
        return f"{GITHUB_URL}/{self.owner}/{self.repo}"

    def actor_link(self, event: DeploymentEvent, identity_map: IdentityMap) -> str:
        """Render the actor, or nothing for unattended nightly deployments.

        Scheduled nightly runs aren't attributed to whoever last touched the
        workflow, unless they fail.
        """
        if (
            event.environment.strip().lower() == NIGHTLY_ENVIRONMENT
            and event.status != Status.FAILURE
        ):
            return ""
        if not event.actor:
            return ""
        return render_identity(event.actor, identity_map)

    def headline(self, event: DeploymentEvent, identity_map: IdentityMap) -> str:
        status_text, status_icon = status_display(event.status)
        env_link = (
            link(self.environment_url, event.environment)
            if self.environment_url
            else escape(event.environment)
        )
        values = {
            "ACTOR_LINK": self.actor_link(event, identity_map),
            "STATUS_ICON": status_icon,
            "STATUS_TEXT": status_text,
            "ENV_ICON": environment_icon(event.environment),
            "ENV_LINK": env_link,
            "COMMIT_LINK": link(f"{self.repo_url}/commit/{event.commit}", event.commit[:7]),
            "REPO_LINK": link(self.repo_url, f"{self.owner}/{self.repo}"),
        }
        rendered = render_template(self.template, values)
        if not rendered:
            rendered = render_template(DEFAULT_TEMPLATE, values)
        return rendered

    def commit_block(self, commit: CommitRecord, identity_map: IdentityMap) -> CommitBlock:
        author = render_identity(
            commit.author_login,
            identity_map,
            profile_url=commit.author_profile_url,
            fallback_name=commit.author_name,
        )
        summary = link(commit.url, commit.message) if commit.url else escape(commit.message)
        return CommitBlock(text=f"{author} {summary}", image_url=commit.author_avatar_url)

    def compile(
        self,
        event: DeploymentEvent,
        identity_map: IdentityMap,
        commits: Sequence[CommitRecord] = (),
    ) -> NotificationMessage:
        """Build the notification.

        Args:
            event: The deployment being reported
            identity_map: Login -> Slack member id (may be empty)
            commits: Delivered commits, oldest first (empty when not diffed)

        Returns:
            A NotificationMessage with one block per commit, in the same order
        """
        return NotificationMessage(
            headline=self.headline(event, identity_map),
            blocks=[self.commit_block(commit, identity_map) for commit in commits],
        )
