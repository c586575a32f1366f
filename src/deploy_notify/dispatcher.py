"""Notification dispatcher: posts the compiled message to Slack channels.

Channel selection:
- base channels always receive the message
- failure channels are added only when the deployment failed
- the union keeps first-seen order and never repeats a channel
- with no channels at all, one message goes to the webhook's own channel

All channels are posted to concurrently. The dispatcher waits for every
send to finish, then raises DispatchError if any of them failed. Channels
that succeeded keep their message; the error lists which ones did.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import httpx

from deploy_notify.compiler import status_display
from deploy_notify.config import DEFAULT_USERNAME
from deploy_notify.errors import ConfigurationError, DispatchError
from deploy_notify.logging_config import get_logger
from deploy_notify.schemas import CommitBlock, NotificationMessage, Status

logger = get_logger(__name__)

# Slack rejects messages with more than 50 blocks.
MAX_BLOCKS = 50

# Reported in place of a channel name when the payload carries no channel.
WEBHOOK_DEFAULT_CHANNEL = "(webhook default)"


def resolve_channels(
    channels: Sequence[str],
    failure_channels: Sequence[str],
    status: Status,
) -> list[str]:
    """Return the deduplicated channels to notify for a given status."""
    candidates = list(channels)
    if status == Status.FAILURE:
        candidates.extend(failure_channels)
    return list(dict.fromkeys(channel for channel in candidates if channel))


def context_block(block: CommitBlock) -> dict[str, Any]:
    elements: list[dict[str, Any]] = []
    if block.image_url:
        elements.append({"type": "image", "image_url": block.image_url, "alt_text": "author"})
    elements.append({"type": "mrkdwn", "text": block.text})
    return {"type": "context", "elements": elements}


def build_blocks(message: NotificationMessage) -> list[dict[str, Any]]:
    """Render one section block for the headline and one context block per commit."""
    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": message.headline}}
    ]
    commit_blocks = message.blocks
    if len(commit_blocks) + 1 > MAX_BLOCKS:
        shown = MAX_BLOCKS - 2
        blocks.extend(context_block(b) for b in commit_blocks[:shown])
        remaining = len(commit_blocks) - shown
        blocks.append(
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"…and {remaining} more commits"}],
            }
        )
    else:
        blocks.extend(context_block(b) for b in commit_blocks)
    return blocks


class SlackDispatcher:
    """Sends NotificationMessages through a Slack incoming webhook.

    Usage:
        dispatcher = SlackDispatcher(webhook_url, channels=["#deploys"])
        await dispatcher.dispatch(message, Status.SUCCESS)
    """

    def __init__(
        self,
        webhook_url: str | None,
        channels: Sequence[str] = (),
        failure_channels: Sequence[str] = (),
        icon: str | None = None,
        username: str | None = None,
        dry_run: bool = False,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            webhook_url: Slack incoming webhook URL (optional in dry runs)
            channels: Channels that always receive the message
            failure_channels: Channels added when the status is FAILURE
            icon: Emoji code (":rocket:") or image URL; defaults to the status icon
            username: Bot username; defaults to DEFAULT_USERNAME
            dry_run: Log the payloads instead of sending them
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.webhook_url = webhook_url
        self.channels = list(channels)
        self.failure_channels = list(failure_channels)
        self.icon = icon
        self.username = username
        self.dry_run = dry_run
        self._timeout = timeout
        self._transport = transport

    def build_payload(
        self, channel: str | None, message: NotificationMessage, status: Status
    ) -> dict[str, Any]:
        """Build the webhook body for a single channel.

        A channel of None leaves the key out so Slack posts to the channel
        the webhook was created for.
        """
        icon = self.icon or status_display(status)[1]
        icon_key = "icon_url" if icon.startswith(("http://", "https://")) else "icon_emoji"
        payload: dict[str, Any] = {}
        if channel:
            payload["channel"] = channel
        payload.update(
            {
                "username": self.username or DEFAULT_USERNAME,
                icon_key: icon,
                "text": message.headline,
                "blocks": build_blocks(message),
            }
        )
        return payload

    async def dispatch(self, message: NotificationMessage, status: Status) -> list[str]:
        """Send the message to every resolved channel.

        With no channels configured, a single message is sent without a
        channel and reported as WEBHOOK_DEFAULT_CHANNEL.

        Returns:
            The channels the message was (or, in a dry run, would have been) sent to

        Raises:
            ConfigurationError: If there is no webhook URL outside a dry run
            DispatchError: If any channel failed, after all sends have finished
        """
        targets: list[str | None] = list(
            resolve_channels(self.channels, self.failure_channels, status)
        ) or [None]
        channels = [target or WEBHOOK_DEFAULT_CHANNEL for target in targets]
        payloads = [self.build_payload(target, message, status) for target in targets]

        if self.dry_run:
            for channel, payload in zip(channels, payloads):
                logger.info("dry_run_skip_send", channel=channel, payload=payload)
            return channels

        if not self.webhook_url:
            raise ConfigurationError("slack_webhook is required unless dry_run is set")

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            results = await asyncio.gather(
                *(self._send(client, payload) for payload in payloads),
                return_exceptions=True,
            )

        delivered: list[str] = []
        failed: dict[str, str] = {}
        first_error: BaseException | None = None
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                failed[channel] = str(result)
                first_error = first_error or result
                logger.error("dispatch_failed", channel=channel, error=str(result))
            else:
                delivered.append(channel)

        if first_error is not None:
            if not isinstance(first_error, Exception):
                raise first_error
            raise DispatchError(
                f"Failed to send to slack: {first_error}",
                delivered=delivered,
                failed=failed,
            ) from first_error

        return delivered

    async def _send(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> None:
        resp = await client.post(self.webhook_url, json=payload)
        if resp.is_error:
            # raise_for_status() would put the webhook URL in the message
            raise httpx.HTTPStatusError(
                f"Slack webhook returned {resp.status_code} for "
                f"{payload.get('channel', WEBHOOK_DEFAULT_CHANNEL)}: {resp.text}",
                request=resp.request,
                response=resp,
            )
        logger.info(
            "notification_sent",
            channel=payload.get("channel", WEBHOOK_DEFAULT_CHANNEL),
            blocks=len(payload["blocks"]),
        )
