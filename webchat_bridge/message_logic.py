"""
Message normalization for Discord-originated messages.

This module turns discord.py message objects into MessageRecords:
- Source classification (Discord / Webhook / Bot)
- Media extraction from attachments, embeds and linked image URLs
- Username unwrapping for messages the bridge itself posted on behalf of web users
- Reply-chain resolution
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from .bot_exceptions import BridgeError
from .bot_models import ChatBackend, MediaRef, MessageRecord, MessageSource, ReplyRef

logger = logging.getLogger(__name__)

# Heuristic: misses extensionless CDN links, over-matches query strings ending in an image extension.
LINKED_IMAGE_PATTERN = re.compile(r"https?://\S+\.(?:jpg|jpeg|png|gif|webp|bmp|svg)", re.IGNORECASE)

# Outbound formats produced by format_web_message / format_quoted_reply
WEB_MESSAGE_PATTERN = re.compile(r"^\*\*([^\n]+?)\*\*: (.+)$", re.DOTALL)
QUOTED_REPLY_PATTERN = re.compile(
    r'^\*\*([^\n]+?)\*\* replying to \*\*([^\n]+?)\*\*: "(.*?)"\n(.+)$', re.DOTALL
)


def format_web_message(author: str, content: str) -> str:
    """Wrap a web user's message so Discord readers can see who wrote it."""
    return f"**{author}**: {content}"


def format_quoted_reply(author: str, reply_author: str, reply_content: str, content: str,
                        quote_length: int = 100) -> str:
    """Inline reply used when the target message can't be referenced natively."""
    quote = reply_content
    if len(quote) > quote_length:
        quote = quote[:quote_length] + "..."
    return f'**{author}** replying to **{reply_author}**: "{quote}"\n{content}'


def unwrap_web_message(content: str) -> Optional[Tuple[str, str, Optional[ReplyRef]]]:
    """
    Undo the bridge's outbound formatting.

    Returns (author, content, quoted_reply) or None when the content isn't in
    one of the bridge's formats. quoted_reply is only set for the inline
    reply fallback.
    """
    if not content or not content.startswith("**"):
        return None

    match = QUOTED_REPLY_PATTERN.match(content)
    if match:
        author, reply_author, quote, body = match.groups()
        return author, body, ReplyRef(id=None, author=reply_author, content=quote)

    match = WEB_MESSAGE_PATTERN.match(content)
    if match:
        return match.group(1), match.group(2), None

    return None


def classify_source(message: Any) -> Tuple[MessageSource, bool]:
    """Return (source, is_bot) from the author's bot flag and webhook id."""
    if message.author.bot:
        if message.webhook_id:
            return MessageSource.WEBHOOK, True
        return MessageSource.BOT, True
    return MessageSource.DISCORD, False


def extract_attachment_images(message: Any) -> List[MediaRef]:
    media = []
    for attachment in message.attachments:
        content_type = attachment.content_type
        if content_type and content_type.startswith("image/"):
            media.append(MediaRef(url=attachment.url, filename=attachment.filename))
    return media


def _proxy_url(proxy: Any) -> Optional[str]:
    # discord.py returns an empty EmbedProxy for unset fields
    if proxy is None:
        return None
    return getattr(proxy, "url", None)


def extract_embed_images(message: Any) -> List[MediaRef]:
    media = []
    for embed in message.embeds:
        image_url = _proxy_url(embed.image)
        if image_url:
            media.append(MediaRef(url=image_url, filename="embedded_image"))
        thumbnail_url = _proxy_url(embed.thumbnail)
        if thumbnail_url:
            media.append(MediaRef(url=thumbnail_url, filename="thumbnail"))
    return media


def extract_linked_images(text: str) -> List[MediaRef]:
    """Find bare image URLs in message text."""
    if not text:
        return []
    return [
        MediaRef(url=match.group(0), filename="linked_image")
        for match in LINKED_IMAGE_PATTERN.finditer(text)
    ]


def extract_media(message: Any) -> List[MediaRef]:
    """Attachments first, then embeds, then linked images. No de-duplication."""
    return (
        extract_attachment_images(message)
        + extract_embed_images(message)
        + extract_linked_images(message.content)
    )


def _created_at(message: Any) -> datetime:
    created_at = getattr(message, "created_at", None)
    return created_at or datetime.now(timezone.utc)


class MessageNormalizer:
    """
    Converts backend messages into MessageRecords.

    The bridge's own identity is read from the backend on every call, falling
    back to the configured client id before the gateway has logged in.
    """

    def __init__(self, backend: ChatBackend, fallback_bot_id: Optional[str] = None):
        self.backend = backend
        self.fallback_bot_id = fallback_bot_id

    @property
    def bot_user_id(self) -> Optional[str]:
        return self.backend.bot_user_id or self.fallback_bot_id

    def is_own_message(self, message: Any) -> bool:
        bot_id = self.bot_user_id
        return bot_id is not None and str(message.author.id) == str(bot_id)

    def unwrap(self, message: Any) -> Optional[Tuple[str, str, Optional[ReplyRef]]]:
        """Recover the web author and text from a message the bridge posted."""
        if not self.is_own_message(message):
            return None
        return unwrap_web_message(message.content or "")

    def _author_and_content(self, message: Any) -> Tuple[str, str]:
        unwrapped = self.unwrap(message)
        if unwrapped:
            return unwrapped[0], unwrapped[1]
        return message.author.name, message.content or ""

    async def normalize(self, message: Any) -> MessageRecord:
        """Build a MessageRecord, resolving the reply target if there is one."""
        unwrapped = self.unwrap(message)
        if unwrapped:
            author, content, quoted_reply = unwrapped
            source, is_bot = MessageSource.WEB, False
        else:
            author, content, quoted_reply = message.author.name, message.content or "", None
            source, is_bot = classify_source(message)

        reply_to = await self.resolve_reply(message)
        if reply_to is None:
            reply_to = quoted_reply

        return MessageRecord(
            id=str(message.id),
            author=author,
            content=content,
            timestamp=_created_at(message),
            source=source,
            is_bot=is_bot,
            media=extract_media(message),
            reply_to=reply_to
        )

    async def resolve_reply(self, message: Any) -> Optional[ReplyRef]:
        """
        Resolve the message this one replies to.

        Uses the gateway-resolved message when available, otherwise fetches by
        id. Fetch failures leave the reply unresolved.
        """
        reference = getattr(message, "reference", None)
        if reference is None or reference.message_id is None:
            return None

        target = reference.resolved
        # DeletedReferencedMessage has no author
        if target is not None and getattr(target, "author", None) is None:
            logger.debug(f"Referenced message {reference.message_id} was deleted")
            return None

        if target is None:
            try:
                target = await self.backend.fetch_message(message.channel, str(reference.message_id))
            except BridgeError as e:
                logger.warning(f"Could not resolve reply target {reference.message_id}: {e}")
                return None

        if target is None:
            return None

        return self.to_reply_ref(target)

    def to_reply_ref(self, target: Any) -> ReplyRef:
        """Describe a referenced message, unwrapping the bridge's own posts."""
        author, content = self._author_and_content(target)
        return ReplyRef(
            id=str(target.id),
            author=author,
            content=content,
            timestamp=_created_at(target)
        )
