"""
Shared fixtures: fake Discord messages, a controllable clock and a mock backend.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from webchat_bridge.bot_models import BridgeConfig
from webchat_bridge.bridge import MessageBridge

BOT_ID = "999"
CHANNEL_ID = "123"
PASSWORD = "hunter2"


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_author(name="alice", author_id="1", bot=False):
    return SimpleNamespace(id=author_id, name=name, bot=bot)


def make_attachment(url="https://cdn.example/a.png", filename="a.png", content_type="image/png"):
    return SimpleNamespace(url=url, filename=filename, content_type=content_type)


def make_embed(image_url=None, thumbnail_url=None):
    image = SimpleNamespace(url=image_url) if image_url else None
    thumbnail = SimpleNamespace(url=thumbnail_url) if thumbnail_url else None
    return SimpleNamespace(image=image, thumbnail=thumbnail)


def make_message(
    message_id="100",
    content="hello",
    author=None,
    webhook_id=None,
    attachments=None,
    embeds=None,
    reference=None,
    created_at=None,
    channel_id=CHANNEL_ID,
    guild=True,
    recipient=None,
    channel_type=None,
):
    """Build a stand-in for discord.Message with only the fields the bridge reads."""
    return SimpleNamespace(
        id=message_id,
        content=content,
        author=author or make_author(),
        webhook_id=webhook_id,
        attachments=attachments or [],
        embeds=embeds or [],
        reference=reference,
        created_at=created_at or datetime.now(timezone.utc),
        channel=SimpleNamespace(
            id=channel_id,
            recipient=recipient,
            type=channel_type or (discord.ChannelType.text if guild else discord.ChannelType.private),
        ),
        guild=SimpleNamespace(id="g1") if guild else None,
    )


def make_reference(message_id, resolved=None):
    return SimpleNamespace(message_id=message_id, resolved=resolved)


def days_ago(days: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    """AsyncMock standing in for DiscordBotClient's backend methods."""
    mock = AsyncMock()
    mock.bot_user_id = BOT_ID
    mock.resolve_destination.return_value = SimpleNamespace(id=CHANNEL_ID)
    mock.fetch_recent_messages.return_value = []
    mock.send_message.return_value = SimpleNamespace(id="sent")
    return mock


@pytest.fixture
def config():
    return BridgeConfig(channel_id=CHANNEL_ID, chat_password=PASSWORD, static_dir=None)


@pytest.fixture
def bridge(config, backend, clock):
    return MessageBridge(config, backend, clock=clock)
