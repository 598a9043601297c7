"""
Data models for bridge operations.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Any, Protocol


def to_iso(timestamp: Optional[datetime]) -> Optional[str]:
    """Render a datetime the way browsers print Date.toISOString()."""
    if timestamp is None:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MessageSource(Enum):
    """Where a history record originated."""
    DISCORD = "Discord"
    WEBHOOK = "Webhook"
    BOT = "Bot"
    WEB = "Web"


class PresenceState(Enum):
    """Advertised bot presence."""
    ONLINE = "online"
    IDLE = "dnd"


@dataclass
class MediaRef:
    """An image attached to, embedded in, or linked from a message."""
    url: str
    filename: str
    type: str = "image"

    def to_dict(self) -> Dict[str, str]:
        return {"url": self.url, "type": self.type, "filename": self.filename}


@dataclass
class ReplyRef:
    """The message a record is replying to."""
    id: Optional[str]
    author: str
    content: str
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "content": self.content,
            "timestamp": to_iso(self.timestamp)
        }


@dataclass
class MessageRecord:
    """
    Unified message record shared by Discord-originated and web-originated messages.

    Attributes are snake_case; to_dict() produces the camelCase shape the web
    client polls for.
    """
    id: str
    author: str
    content: str
    timestamp: datetime
    source: MessageSource = MessageSource.DISCORD
    is_bot: bool = False
    media: List[MediaRef] = field(default_factory=list)
    reply_to: Optional[ReplyRef] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape served by /api/messages."""
        return {
            "id": self.id,
            "author": self.author,
            "content": self.content,
            "timestamp": to_iso(self.timestamp),
            "source": self.source.value,
            "isBot": self.is_bot,
            "media": [media.to_dict() for media in self.media],
            "replyTo": self.reply_to.to_dict() if self.reply_to else None
        }


@dataclass
class BridgeConfig:
    """
    Configuration settings for the bridge.
    """
    channel_id: str
    chat_password: str
    bot_client_id: Optional[str] = None
    default_username: str = "web"

    max_messages: int = 100
    typing_timeout: float = 5.0
    typing_grace: float = 0.1
    presence_timeout: float = 15.0
    presence_poll_interval: float = 10.0

    # Startup history seeding
    history_days: int = 7
    history_limit: int = 100

    # Outbound formatting
    reply_quote_length: int = 100
    purge_limit: int = 100

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3000
    static_dir: Optional[str] = "public"

    enable_debug_logging: bool = False


@dataclass
class RateLimitRule:
    """
    Per-client request allowance for one endpoint.
    """
    max_requests: int
    window_seconds: float
    message: str = "Too many requests, please slow down."

    def __post_init__(self):
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


@dataclass
class ReconnectPolicy:
    """
    Exponential backoff between gateway connection attempts.
    """
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 60.0
    attempt: int = 0

    def next_delay(self) -> float:
        """Return the delay for the current attempt and advance the counter."""
        delay = min(self.max_delay, self.base_delay * (self.factor ** self.attempt))
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


@dataclass
class BridgeStatus:
    """
    Current status of the bridge.
    """
    gateway_ready: bool = False
    reconnect_count: int = 0
    history_loaded: int = 0
    uptime_start: datetime = field(default_factory=datetime.now)
    last_message_time: Optional[datetime] = None

    @property
    def uptime_seconds(self) -> float:
        """Get uptime in seconds."""
        return (datetime.now() - self.uptime_start).total_seconds()

    @property
    def uptime_formatted(self) -> str:
        """Get formatted uptime string."""
        total_seconds = int(self.uptime_seconds)
        hours, remainder = divmod(total_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours}h {minutes}m {seconds}s"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "gateway_ready": self.gateway_ready,
            "reconnect_count": self.reconnect_count,
            "history_loaded": self.history_loaded,
            "uptime_start": self.uptime_start.isoformat(),
            "last_message_time": self.last_message_time.isoformat() if self.last_message_time else None,
            "uptime_seconds": self.uptime_seconds,
            "uptime_formatted": self.uptime_formatted
        }


class ChatBackend(Protocol):
    """
    Capabilities the bridge needs from the chat network.

    DiscordBotClient is the production implementation; failures surface as
    BridgeError subclasses rather than library exceptions.
    """

    @property
    def bot_user_id(self) -> Optional[str]:
        """Id of the account the bridge posts as, once known."""
        ...

    async def resolve_destination(self) -> Any:
        """Return the configured channel, or a DM with the configured user."""
        ...

    async def fetch_recent_messages(self, channel: Any, limit: int) -> List[Any]:
        """Return up to `limit` of the channel's most recent messages."""
        ...

    async def fetch_message(self, channel: Any, message_id: str) -> Any:
        """Return a single message from the channel."""
        ...

    async def send_message(self, channel: Any, content: str, reference: Any = None) -> Any:
        """Post content, optionally as a native reply to `reference`."""
        ...

    async def send_typing(self, channel: Any) -> None:
        """Show the typing indicator in the channel."""
        ...

    async def set_presence(self, state: PresenceState) -> None:
        """Change the bot's advertised status."""
        ...
