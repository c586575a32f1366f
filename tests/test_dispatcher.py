"""Tests for the Slack dispatcher.

Run with: pytest tests/test_dispatcher.py -v
"""

from __future__ import annotations

import json

import httpx
import pytest

from deploy_notify.dispatcher import (
    MAX_BLOCKS,
    WEBHOOK_DEFAULT_CHANNEL,
    SlackDispatcher,
    build_blocks,
    resolve_channels,
)
from deploy_notify.errors import ConfigurationError, DispatchError
from deploy_notify.schemas import CommitBlock, NotificationMessage, Status

WEBHOOK = "https://hooks.slack.com/services/T000/B000/secret"


@pytest.fixture
def message() -> NotificationMessage:
    return NotificationMessage(
        headline=":white_check_mark: deployed abc to staging",
        blocks=[
            CommitBlock(text="<@U123> first", image_url="https://avatars.example.com/d.png"),
            CommitBlock(text="<https://github.com/carol|carol> second"),
        ],
    )


class RecordingTransport(httpx.MockTransport):
    """Records posted payloads; channels listed in ``fail`` get a 404."""

    def __init__(self, fail: tuple[str | None, ...] = ()) -> None:
        self.payloads: list[dict] = []
        self.fail = fail
        super().__init__(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.payloads.append(payload)
        if payload.get("channel") in self.fail:
            return httpx.Response(404, text="channel_not_found")
        return httpx.Response(200, text="ok")

    @property
    def channels(self) -> list[str | None]:
        return [p.get("channel") for p in self.payloads]


class TestResolveChannels:
    def test_failure_adds_escalation_without_duplicates(self) -> None:
        assert resolve_channels(["a", "b"], ["b", "c"], Status.FAILURE) == ["a", "b", "c"]

    @pytest.mark.parametrize("status", [Status.STARTED, Status.SUCCESS, Status.CANCELLED])
    def test_other_statuses_use_base_only(self, status: Status) -> None:
        assert resolve_channels(["a", "b"], ["b", "c"], status) == ["a", "b"]

    def test_duplicates_within_base(self) -> None:
        assert resolve_channels(["a", "a", ""], [], Status.STARTED) == ["a"]


class TestPayload:
    def test_blocks_shape(self, message: NotificationMessage) -> None:
        blocks = build_blocks(message)
        assert blocks[0] == {
            "type": "section",
            "text": {"type": "mrkdwn", "text": message.headline},
        }
        assert blocks[1] == {
            "type": "context",
            "elements": [
                {"type": "image", "image_url": "https://avatars.example.com/d.png", "alt_text": "author"},
                {"type": "mrkdwn", "text": "<@U123> first"},
            ],
        }
        assert blocks[2]["elements"] == [
            {"type": "mrkdwn", "text": "<https://github.com/carol|carol> second"}
        ]

    def test_headline_only(self) -> None:
        blocks = build_blocks(NotificationMessage(headline="deployed"))
        assert [b["type"] for b in blocks] == ["section"]

    def test_long_ranges_are_truncated(self) -> None:
        message = NotificationMessage(
            headline="h", blocks=[CommitBlock(text=f"c{i}") for i in range(80)]
        )
        blocks = build_blocks(message)
        assert len(blocks) == MAX_BLOCKS
        assert blocks[-1]["elements"][0]["text"] == "…and 32 more commits"

    def test_default_icon_and_username(self, message: NotificationMessage) -> None:
        payload = SlackDispatcher(WEBHOOK).build_payload("#deploys", message, Status.FAILURE)
        assert payload["icon_emoji"] == ":x:"
        assert payload["username"] == "Deploy Notify"
        assert payload["text"] == message.headline

    def test_overrides(self, message: NotificationMessage) -> None:
        dispatcher = SlackDispatcher(WEBHOOK, icon=":tada:", username="Release Bot")
        payload = dispatcher.build_payload("#deploys", message, Status.STARTED)
        assert payload["icon_emoji"] == ":tada:"
        assert payload["username"] == "Release Bot"

    def test_icon_url(self, message: NotificationMessage) -> None:
        dispatcher = SlackDispatcher(WEBHOOK, icon="https://example.com/bot.png")
        payload = dispatcher.build_payload("#deploys", message, Status.STARTED)
        assert payload["icon_url"] == "https://example.com/bot.png"
        assert "icon_emoji" not in payload

    def test_no_channel_key_without_channel(self, message: NotificationMessage) -> None:
        payload = SlackDispatcher(WEBHOOK).build_payload(None, message, Status.SUCCESS)
        assert "channel" not in payload
        assert payload["text"] == message.headline


class TestDispatch:
    @pytest.mark.asyncio
    async def test_sends_once_per_channel(self, message: NotificationMessage) -> None:
        transport = RecordingTransport()
        dispatcher = SlackDispatcher(
            WEBHOOK, channels=["a", "b"], failure_channels=["b", "c"], transport=transport
        )
        sent = await dispatcher.dispatch(message, Status.FAILURE)
        assert sent == ["a", "b", "c"]
        assert sorted(transport.channels) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_started_skips_escalation(self, message: NotificationMessage) -> None:
        transport = RecordingTransport()
        dispatcher = SlackDispatcher(
            WEBHOOK, channels=["a", "b"], failure_channels=["b", "c"], transport=transport
        )
        await dispatcher.dispatch(message, Status.STARTED)
        assert sorted(transport.channels) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, message: NotificationMessage) -> None:
        transport = RecordingTransport()
        dispatcher = SlackDispatcher(
            None, channels=["a"], failure_channels=["c"], dry_run=True, transport=transport
        )
        assert await dispatcher.dispatch(message, Status.FAILURE) == ["a", "c"]
        assert transport.payloads == []

    @pytest.mark.asyncio
    async def test_no_channels_posts_to_webhook_default(
        self, message: NotificationMessage
    ) -> None:
        transport = RecordingTransport()
        dispatcher = SlackDispatcher(WEBHOOK, transport=transport)
        sent = await dispatcher.dispatch(message, Status.FAILURE)
        assert sent == [WEBHOOK_DEFAULT_CHANNEL]
        assert len(transport.payloads) == 1
        assert "channel" not in transport.payloads[0]

    @pytest.mark.asyncio
    async def test_no_channels_failure_is_reported(self, message: NotificationMessage) -> None:
        transport = RecordingTransport(fail=(None,))
        dispatcher = SlackDispatcher(WEBHOOK, transport=transport)
        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.dispatch(message, Status.STARTED)
        assert list(exc_info.value.failed) == [WEBHOOK_DEFAULT_CHANNEL]
        assert "secret" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_webhook(self, message: NotificationMessage) -> None:
        dispatcher = SlackDispatcher(None, channels=["a"])
        with pytest.raises(ConfigurationError):
            await dispatcher.dispatch(message, Status.STARTED)

    @pytest.mark.asyncio
    async def test_one_failure_fails_dispatch(self, message: NotificationMessage) -> None:
        transport = RecordingTransport(fail=("b",))
        dispatcher = SlackDispatcher(WEBHOOK, channels=["a", "b", "c"], transport=transport)
        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.dispatch(message, Status.SUCCESS)

        error = exc_info.value
        # every send still ran to completion
        assert sorted(transport.channels) == ["a", "b", "c"]
        assert error.delivered == ["a", "c"]
        assert list(error.failed) == ["b"]
        assert "channel_not_found" in str(error)
        assert "secret" not in str(error)

    @pytest.mark.asyncio
    async def test_transport_error(self, message: NotificationMessage) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        dispatcher = SlackDispatcher(
            WEBHOOK, channels=["a"], transport=httpx.MockTransport(handler)
        )
        with pytest.raises(DispatchError, match="timed out"):
            await dispatcher.dispatch(message, Status.STARTED)
