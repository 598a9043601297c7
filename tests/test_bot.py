"""
Tests for configuration loading, the reconnect policy and the Discord client's gateway loop.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiohttp
import discord
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from webchat_bridge.bot import BridgeService, load_config, missing_settings
from webchat_bridge.bot_client import DiscordBotClient
from webchat_bridge.bot_exceptions import BackendTransientError, ChannelNotFoundError
from webchat_bridge.bot_models import BridgeConfig, PresenceState, ReconnectPolicy

BOT_USER = {
    "id": "999",
    "username": "bridge",
    "discriminator": "0",
    "global_name": None,
    "avatar": None,
    "bot": True,
}

BOT_APPLICATION = {
    "id": "999",
    "name": "bridge",
    "description": "",
    "summary": "",
    "icon": None,
    "rpc_origins": [],
    "bot_public": False,
    "bot_require_code_grant": False,
    "owner": {"id": "1", "username": "owner", "discriminator": "0", "avatar": None},
    "team": None,
    "verify_key": "key",
    "flags": 0,
    "tags": [],
    "redirect_uris": [],
}


@pytest.fixture
def env(monkeypatch):
    for name in ("DISCORD_BOT_CLIENT_ID", "PORT", "MAX_MESSAGES", "STATIC_DIR", "DEFAULT_USERNAME"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DISCORD_CHANNEL_ID", "123")
    monkeypatch.setenv("CHAT_PASSWORD", "secret")
    return monkeypatch


def test_load_config_defaults(env):
    with patch("webchat_bridge.bot.load_dotenv"):
        config = load_config()

    assert config.channel_id == "123"
    assert config.chat_password == "secret"
    assert config.port == 3000
    assert config.max_messages == 100
    assert config.default_username == "web"
    assert config.bot_client_id is None


def test_load_config_overrides(env):
    env.setenv("PORT", "8080")
    env.setenv("MAX_MESSAGES", "20")
    env.setenv("DISCORD_BOT_CLIENT_ID", "999")

    with patch("webchat_bridge.bot.load_dotenv"):
        config = load_config()

    assert config.port == 8080
    assert config.max_messages == 20
    assert config.bot_client_id == "999"


def test_missing_settings():
    config = BridgeConfig(channel_id="", chat_password="pw")
    assert missing_settings(None, config) == ["DISCORD_BOT_TOKEN", "DISCORD_CHANNEL_ID"]
    assert missing_settings("token", BridgeConfig(channel_id="1", chat_password="pw")) == []


def test_reconnect_policy_backoff_caps_and_resets():
    policy = ReconnectPolicy(base_delay=1, factor=2, max_delay=10)

    assert [policy.next_delay() for _ in range(6)] == [1, 2, 4, 8, 10, 10]

    policy.reset()
    assert policy.next_delay() == 1


###############################################################################
# DiscordBotClient
###############################################################################

@pytest.fixture
def client_config():
    return BridgeConfig(channel_id="123", chat_password="pw")


@pytest.fixture
async def fake_discord_api(monkeypatch):
    """Local stand-in for the REST endpoints login() calls. Returns the list of logins seen."""
    logins = []

    async def current_user(request):
        logins.append(request.headers.get("Authorization"))
        return web.json_response(body=json.dumps(BOT_USER).encode())

    async def current_application(request):
        return web.json_response(body=json.dumps(BOT_APPLICATION).encode())

    app = web.Application()
    app.router.add_get("/api/v10/users/@me", current_user)
    app.router.add_get("/api/v10/oauth2/applications/@me", current_application)

    async with TestServer(app) as server:
        monkeypatch.setattr(discord.http.Route, "BASE", str(server.make_url("/api/v10")))
        yield logins


@pytest.mark.asyncio
async def test_gateway_logs_in_again_after_dropped_session(client_config, fake_discord_api):
    client = DiscordBotClient(client_config, reconnect_policy=ReconnectPolicy(base_delay=0.01))
    client.attach_bridge(SimpleNamespace(status=SimpleNamespace(reconnect_count=0, gateway_ready=True)))

    drops = []

    async def dropped_session(reconnect=True):
        drops.append(reconnect)
        if len(drops) >= 3:
            client._shutting_down = True
        # discord.py closes the whole client when the socket dies and reconnect is off
        await client.close()
        raise OSError("connection reset")

    with patch.object(client, "connect", side_effect=dropped_session):
        await client.start_with_backoff("token")

    assert drops == [False, False, False]
    assert fake_discord_api == ["Bot token"] * 3
    assert client.user.id == 999
    assert client.bridge.status.reconnect_count == 2
    assert client.bridge.status.gateway_ready is False


@pytest.mark.asyncio
async def test_gateway_login_failure_is_fatal(client_config):
    client = DiscordBotClient(client_config)

    with patch.object(client, "login", AsyncMock(side_effect=discord.LoginFailure("bad token"))):
        with pytest.raises(discord.LoginFailure):
            await client.start_with_backoff("token")


@pytest.mark.asyncio
async def test_send_message_translates_discord_errors(client_config):
    client = DiscordBotClient(client_config)
    response = SimpleNamespace(status=500, reason="Server Error")
    channel = SimpleNamespace(send=AsyncMock(side_effect=discord.HTTPException(response, "boom")))

    with pytest.raises(BackendTransientError):
        await client.send_message(channel, "hi")


@pytest.mark.asyncio
async def test_send_message_passes_reference(client_config):
    client = DiscordBotClient(client_config)
    channel = SimpleNamespace(send=AsyncMock(return_value="sent"))

    await client.send_message(channel, "hi", reference="ref")
    channel.send.assert_awaited_once_with("hi", reference="ref")

    await client.send_message(channel, "plain")
    channel.send.assert_awaited_with("plain")


@pytest.mark.asyncio
async def test_resolve_destination_falls_back_to_dm(client_config):
    client = DiscordBotClient(client_config)
    response = SimpleNamespace(status=404, reason="Not Found")
    dm_channel = SimpleNamespace(id="dm")
    user = SimpleNamespace(dm_channel=None, create_dm=AsyncMock(return_value=dm_channel))

    with patch.object(client, "fetch_channel", AsyncMock(side_effect=discord.NotFound(response, "unknown channel"))), \
            patch.object(client, "fetch_user", AsyncMock(return_value=user)):
        assert await client.resolve_destination() is dm_channel


@pytest.mark.asyncio
async def test_resolve_destination_not_found(client_config):
    client = DiscordBotClient(client_config)
    response = SimpleNamespace(status=404, reason="Not Found")

    with patch.object(client, "fetch_channel", AsyncMock(side_effect=discord.NotFound(response, "unknown channel"))), \
            patch.object(client, "fetch_user", AsyncMock(side_effect=discord.NotFound(response, "unknown user"))):
        with pytest.raises(ChannelNotFoundError):
            await client.resolve_destination()


@pytest.mark.asyncio
async def test_set_presence_maps_idle_to_dnd(client_config):
    client = DiscordBotClient(client_config)

    with patch.object(client, "change_presence", AsyncMock()) as change_presence:
        await client.set_presence(PresenceState.IDLE)

    change_presence.assert_awaited_once_with(status=discord.Status.dnd)


@pytest.mark.asyncio
async def test_on_message_errors_are_contained(client_config):
    client = DiscordBotClient(client_config)
    client.attach_bridge(SimpleNamespace(handle_inbound_message=AsyncMock(side_effect=RuntimeError("bad"))))

    await client.on_message(SimpleNamespace(id="1"))

    client.bridge.handle_inbound_message.assert_awaited_once()


###############################################################################
# BridgeService
###############################################################################

@pytest.mark.asyncio
async def test_service_keeps_serving_http_after_gateway_crash():
    config = BridgeConfig(channel_id="123", chat_password="pw", host="127.0.0.1", port=0, static_dir=None)
    service = BridgeService(config)
    crash = AsyncMock(side_effect=RuntimeError("Session is closed"))

    with patch.object(DiscordBotClient, "start_with_backoff", crash):
        task = asyncio.create_task(service.start("token"))
        for _ in range(100):
            if crash.await_count:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)

        assert crash.await_count == 1
        assert not task.done()

        host, port = service.web_runner.addresses[0][:2]
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://{host}:{port}/health") as resp:
                assert resp.status == 200

        await service.stop()
        await asyncio.wait_for(task, timeout=1)
