"""
Bounded in-memory message history.

Holds the normalized records the web client polls for. The history is never
persisted; it is seeded from Discord when the gateway becomes ready and
mutated by inbound Discord messages and web submissions.
"""

import logging
from typing import Dict, Iterable, List, Any

from .bot_models import MessageRecord

logger = logging.getLogger(__name__)


class MessageHistory:
    """
    FIFO-bounded history of MessageRecords in arrival order.

    Mutations run to completion on the event loop, so no locking is done.
    """

    def __init__(self, max_messages: int = 100):
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._messages: List[MessageRecord] = []

        # Statistics
        self.total_appended = 0
        self.total_evicted = 0
        self.total_purged = 0

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    @property
    def messages(self) -> List[MessageRecord]:
        """Snapshot of the current history, oldest first."""
        return list(self._messages)

    def append(self, record: MessageRecord) -> None:
        """Add a record, evicting the oldest entries past max_messages."""
        self._messages.append(record)
        self.total_appended += 1
        self._truncate()

    def replace(self, records: Iterable[MessageRecord]) -> None:
        """Swap the whole history for `records`, keeping only the newest max_messages."""
        self._messages = list(records)
        self._truncate()
        logger.debug(f"History replaced with {len(self._messages)} records")

    def _truncate(self) -> None:
        overflow = len(self._messages) - self.max_messages
        if overflow > 0:
            del self._messages[:overflow]
            self.total_evicted += overflow

    def purge_bot_messages(self, limit: int = 100) -> int:
        """
        Remove up to `limit` bot-flagged records, newest first.

        Non-bot records keep their relative order. Returns the number removed.
        """
        removed = 0
        for index in range(len(self._messages) - 1, -1, -1):
            if removed >= limit:
                break
            if self._messages[index].is_bot:
                del self._messages[index]
                removed += 1

        self.total_purged += removed
        return removed

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._messages]

    def get_stats(self) -> Dict[str, Any]:
        """Get history statistics."""
        return {
            "size": len(self._messages),
            "max_messages": self.max_messages,
            "total_appended": self.total_appended,
            "total_evicted": self.total_evicted,
            "total_purged": self.total_purged
        }
