"""
MessageBridge: the state shared between the Discord client and the HTTP API.

The bridge owns:
- the bounded message history
- the typing-indicator table
- the presence state machine

It is constructed once at startup and injected into both the Discord client
(inbound events, history seeding) and the API handlers (web reads and writes).
"""

import hmac
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import discord

from .api_models import ReplyTarget
from .bot_exceptions import AuthError, BridgeError, ValidationError
from .bot_models import BridgeConfig, BridgeStatus, ChatBackend, MessageRecord, MessageSource, ReplyRef
from .message_cache import MessageHistory
from .message_logic import MessageNormalizer, format_quoted_reply, format_web_message
from .presence import PresenceMonitor
from .typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class MessageBridge:
    """
    Bridges one Discord channel (or DM) to the web chat client.

    All methods run on the event loop. State may be observed or changed by
    other handlers while a backend call is awaited; no versioning is done.
    """

    def __init__(
        self,
        config: BridgeConfig,
        backend: ChatBackend,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config
        self.backend = backend

        self.history = MessageHistory(config.max_messages)
        self.typing = TypingTracker(config.typing_timeout, config.typing_grace, clock)
        self.presence = PresenceMonitor(
            backend, config.presence_timeout, config.presence_poll_interval, clock
        )
        self.normalizer = MessageNormalizer(backend, config.bot_client_id)
        self.status = BridgeStatus()

        self._last_local_id = 0

        logger.info("Message bridge initialized")

    # Authentication

    def validate_password(self, password: Optional[str]) -> bool:
        """Plaintext comparison against the shared chat password."""
        if password is None:
            return False
        return hmac.compare_digest(password.encode("utf-8"), self.config.chat_password.encode("utf-8"))

    def _require_password(self, password: Optional[str]) -> None:
        if not self.validate_password(password):
            raise AuthError()

    # History

    async def normalize_discord_message(self, message: Any) -> MessageRecord:
        return await self.normalizer.normalize(message)

    def append_message(self, record: MessageRecord) -> None:
        self.history.append(record)
        self.status.last_message_time = datetime.now()

    async def load_history(
        self,
        channel: Any = None,
        since_days: Optional[int] = None,
        limit: Optional[int] = None
    ) -> int:
        """
        Replace the history with the channel's recent messages.

        Fetches up to `limit` messages, keeps those from the last `since_days`
        days, and normalizes them oldest first. On failure the existing history
        is left untouched. Returns the number of records loaded.
        """
        since_days = self.config.history_days if since_days is None else since_days
        limit = self.config.history_limit if limit is None else limit

        try:
            if channel is None:
                channel = await self.backend.resolve_destination()

            fetched = await self.backend.fetch_recent_messages(channel, limit)

            cutoff = datetime.now(timezone.utc) - timedelta(days=since_days)
            recent = sorted(
                (message for message in fetched if message.created_at > cutoff),
                key=lambda message: message.created_at
            )

            records = [await self.normalizer.normalize(message) for message in recent]

        except Exception as e:
            logger.error(f"Error fetching Discord history: {e}")
            return 0

        self.history.replace(records)
        self.status.history_loaded = len(self.history)
        logger.info(f"Loaded {len(self.history)} messages from Discord history")
        return len(self.history)

    # Inbound Discord events

    def is_target_message(self, message: Any) -> bool:
        """True for messages in the target channel or in a DM with the target user."""
        target_id = str(self.config.channel_id)

        if str(message.channel.id) == target_id:
            return True

        if getattr(message.channel, "type", None) is discord.ChannelType.private:
            recipient = getattr(message.channel, "recipient", None)
            if str(message.author.id) == target_id:
                return True
            if recipient is not None and str(recipient.id) == target_id:
                return True

        return False

    async def handle_inbound_message(self, message: Any) -> Optional[MessageRecord]:
        """
        Mirror a Discord message into the history.

        The bridge's own posts are skipped since web submissions are recorded
        locally when sent.
        """
        if not self.is_target_message(message):
            return None

        if self.normalizer.is_own_message(message):
            return None

        record = await self.normalizer.normalize(message)
        self.append_message(record)

        logger.info(f"Discord message: {record.author}: {record.content}")
        return record

    # Web operations

    async def submit_web_message(
        self,
        content: str,
        author: Optional[str],
        password: Optional[str],
        reply_to: Optional[ReplyTarget] = None
    ) -> MessageRecord:
        """
        Send a web user's message to Discord and record it locally.

        Raises AuthError, ValidationError, ChannelNotFoundError, or
        BackendTransientError when the send itself fails.
        """
        self._require_password(password)

        if not content or not content.strip():
            raise ValidationError()

        author = author or self.config.default_username

        channel = await self.backend.resolve_destination()

        await self._send_typing_best_effort(channel)

        outbound = format_web_message(author, content)
        reference = None
        reply_ref: Optional[ReplyRef] = None

        if reply_to is not None and reply_to.id:
            try:
                reference = await self.backend.fetch_message(channel, reply_to.id)
            except BridgeError as e:
                logger.warning(f"Reply target {reply_to.id} unavailable, quoting instead: {e}")

            if reference is not None:
                reply_ref = self.normalizer.to_reply_ref(reference)
            else:
                outbound = format_quoted_reply(
                    author, reply_to.author, reply_to.content, content,
                    quote_length=self.config.reply_quote_length
                )
                reply_ref = ReplyRef(
                    id=reply_to.id,
                    author=reply_to.author,
                    content=reply_to.content,
                    timestamp=_parse_timestamp(reply_to.timestamp)
                )

        await self.backend.send_message(channel, outbound, reference=reference)

        record = MessageRecord(
            id=self._next_local_id(),
            author=author,
            content=content,
            timestamp=datetime.now(timezone.utc),
            source=MessageSource.WEB,
            is_bot=False,
            reply_to=reply_ref
        )

        self.typing.clear(author)
        self.append_message(record)

        logger.info(f"Web message: {author}: {content}")
        return record

    async def set_typing(self, username: Optional[str], is_typing: bool, password: Optional[str]) -> None:
        """Record or clear a web user's typing state."""
        self._require_password(password)

        username = username or self.config.default_username

        if is_typing:
            self.typing.touch(username)
            await self._send_typing_best_effort()
        else:
            self.typing.clear(username)

    async def get_snapshot(self, password: Optional[str]) -> Dict[str, List[Any]]:
        """Return the full history and active typers; counts as web-client activity."""
        self._require_password(password)

        await self.presence.record_request()

        return {
            "messages": self.history.to_dicts(),
            "typing": self.typing.active_users()
        }

    def purge_bot_messages(self, password: Optional[str]) -> int:
        """Drop bot-flagged records from the local mirror. Discord is untouched."""
        self._require_password(password)

        removed = self.history.purge_bot_messages(self.config.purge_limit)
        logger.info(f"Purged {removed} bot messages from history")
        return removed

    # Helpers

    async def _send_typing_best_effort(self, channel: Any = None) -> None:
        try:
            if channel is None:
                channel = await self.backend.resolve_destination()
            await self.backend.send_typing(channel)
            logger.debug("Typing indicator sent to Discord")
        except Exception as e:
            logger.error(f"Error sending typing indicator: {e}")

    def _next_local_id(self) -> str:
        """Millisecond timestamp, bumped when two sends land in the same millisecond."""
        candidate = time.time_ns() // 1_000_000
        if candidate <= self._last_local_id:
            candidate = self._last_local_id + 1
        self._last_local_id = candidate
        return str(candidate)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "status": self.status.to_dict(),
            "history": self.history.get_stats(),
            "typing": self.typing.active_users(),
            "presence": self.presence.state.value
        }

    async def shutdown(self) -> None:
        self.typing.close()
        await self.presence.stop()
