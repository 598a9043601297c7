"""
Discord bot client for WebSocket event handling.

This module provides the Discord client that feeds gateway events into the
MessageBridge and implements the chat-backend capabilities the bridge relies
on. discord.py exceptions are translated into bridge exceptions here so the
rest of the package never depends on library error types.

Key responsibilities:
- Discord WebSocket connection management with explicit reconnect backoff
- Event handling (on_ready, on_message)
- Destination resolution (channel id, falling back to a user DM)
- Sending messages, typing indicators and presence updates
"""

import asyncio
import logging
from typing import Any, List, Optional

import aiohttp
import discord

from .bot_exceptions import BackendTransientError, ChannelNotFoundError
from .bot_models import BridgeConfig, PresenceState, ReconnectPolicy

logger = logging.getLogger(__name__)

PRESENCE_STATUS = {
    PresenceState.ONLINE: discord.Status.online,
    PresenceState.IDLE: discord.Status.dnd,
}

# Connection failures worth another attempt; anything else ends the gateway loop.
TRANSIENT_GATEWAY_ERRORS = (
    OSError,
    discord.HTTPException,
    discord.GatewayNotFound,
    discord.ConnectionClosed,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


class DiscordBotClient(discord.Client):
    """
    Discord client bound to a single MessageBridge.

    The bridge is attached after construction because the bridge itself
    needs this client as its backend.
    """

    def __init__(
        self,
        config: BridgeConfig,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        **kwargs
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guild_messages = True
        intents.dm_messages = True
        intents.guild_typing = True
        intents.dm_typing = True
        super().__init__(intents=intents, **kwargs)

        self.config = config
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.bridge = None
        self._shutting_down = False

        logger.info("Discord bot client initialized")

    def attach_bridge(self, bridge) -> None:
        self.bridge = bridge

    # Connection management

    async def start_with_backoff(self, token: str) -> None:
        """
        Log in and stay connected, retrying with exponential backoff.

        Invalid tokens and missing privileged intents are not retried.
        """
        while not self._shutting_down:
            try:
                await self.login(token)
                await self.connect(reconnect=False)
            except (discord.LoginFailure, discord.PrivilegedIntentsRequired):
                raise
            except TRANSIENT_GATEWAY_ERRORS as e:
                logger.warning(f"Discord connection failed: {e}")

            if self._shutting_down:
                break

            delay = self.reconnect_policy.next_delay()
            if self.bridge:
                self.bridge.status.reconnect_count += 1
                self.bridge.status.gateway_ready = False
            logger.info(f"Reconnecting to Discord in {delay:.1f}s (attempt {self.reconnect_policy.attempt})")

            self._reset_for_reconnect()
            await asyncio.sleep(delay)

    def _reset_for_reconnect(self) -> None:
        """Make a closed client loggable-in again."""
        # connect(reconnect=False) closes the client on failure, which also
        # closes the HTTP connector; login() only builds a new one when unset
        self.clear()
        self.http.connector = discord.utils.MISSING

    # Discord event handlers

    async def on_ready(self):
        """Seed history and resync presence on every fresh session."""
        logger.info(f"Discord bot logged in as {self.user} (id={self.user.id})")
        self.reconnect_policy.reset()

        if not self.bridge:
            logger.warning("No bridge attached, ignoring ready event")
            return

        self.bridge.status.gateway_ready = True

        await self.bridge.load_history()
        await self.bridge.presence.push()
        self.bridge.presence.start()

    async def on_message(self, message: discord.Message):
        """Mirror messages from the target channel into the bridge."""
        if not self.bridge:
            return

        try:
            await self.bridge.handle_inbound_message(message)
        except Exception as e:
            logger.error(f"Error processing message {message.id}: {e}")

    async def on_disconnect(self):
        logger.warning("Disconnected from Discord gateway")

    async def on_resumed(self):
        logger.info("Discord gateway session resumed")

    async def on_error(self, event: str, *args, **kwargs):
        """Handle Discord client errors."""
        logger.exception(f"Discord client error in event {event}")

    # Chat-backend capabilities

    @property
    def bot_user_id(self) -> Optional[str]:
        return str(self.user.id) if self.user else None

    async def resolve_destination(self) -> discord.abc.Messageable:
        """
        Resolve the configured id as a channel, else as a user to DM.

        Raises ChannelNotFoundError if neither works.
        """
        target_id = self.config.channel_id

        try:
            channel = self.get_channel(int(target_id))
            if channel is None:
                channel = await self.fetch_channel(int(target_id))
            return channel
        except (discord.HTTPException, discord.InvalidData, ValueError) as e:
            logger.debug(f"{target_id} is not a channel ({e}), trying as a user")

        try:
            user = self.get_user(int(target_id))
            if user is None:
                user = await self.fetch_user(int(target_id))
            return user.dm_channel or await user.create_dm()
        except (discord.HTTPException, ValueError) as e:
            logger.error(f"Could not resolve Discord channel or user {target_id}: {e}")
            raise ChannelNotFoundError(target_id) from e

    async def fetch_recent_messages(self, channel: Any, limit: int) -> List[discord.Message]:
        try:
            return [message async for message in channel.history(limit=limit)]
        except discord.HTTPException as e:
            raise BackendTransientError(f"Failed to fetch channel history: {e}") from e

    async def fetch_message(self, channel: Any, message_id: str) -> discord.Message:
        try:
            return await channel.fetch_message(int(message_id))
        except (discord.HTTPException, ValueError) as e:
            raise BackendTransientError(f"Failed to fetch message {message_id}: {e}") from e

    async def send_message(self, channel: Any, content: str, reference: Any = None) -> discord.Message:
        try:
            if reference is not None:
                return await channel.send(content, reference=reference)
            return await channel.send(content)
        except discord.HTTPException as e:
            raise BackendTransientError(f"Failed to send message: {e}") from e

    async def send_typing(self, channel: Any) -> None:
        try:
            await channel.typing()
        except discord.HTTPException as e:
            raise BackendTransientError(f"Failed to send typing indicator: {e}") from e

    async def set_presence(self, state: PresenceState) -> None:
        await self.change_presence(status=PRESENCE_STATUS[state])

    async def shutdown(self):
        """Stop reconnecting and close the client."""
        logger.info("Closing Discord bot client...")
        self._shutting_down = True

        if self.bridge:
            await self.bridge.shutdown()

        if not self.is_closed():
            await self.close()
        logger.info("Discord bot client closed")
