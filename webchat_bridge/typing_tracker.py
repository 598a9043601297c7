"""
Typing-indicator state for web users.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TypingTracker:
    """
    Maps username -> last typing activity.

    An entry is active while now - timestamp < timeout. Entries are swept
    lazily on read and removed by a per-session expiry timer that only fires
    the removal if the entry wasn't refreshed in the meantime.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        grace: float = 0.1,
        clock: Callable[[], float] = time.monotonic
    ):
        self.timeout = timeout
        self.grace = grace
        self.clock = clock
        self._entries: Dict[str, float] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, username: str) -> bool:
        return username in self._entries

    def touch(self, username: str) -> None:
        """Record typing activity now and schedule its expiry."""
        self._entries[username] = self.clock()
        self._schedule_expiry(username)

    def _schedule_expiry(self, username: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync callers); lazy sweeping still expires the entry
            return

        previous = self._timers.pop(username, None)
        if previous:
            previous.cancel()
        self._timers[username] = loop.call_later(self.timeout, self.expire_if_stale, username)

    def expire_if_stale(self, username: str) -> bool:
        """Remove the entry unless it was refreshed within the timeout. Returns True if removed."""
        self._timers.pop(username, None)
        stamp = self._entries.get(username)
        if stamp is None:
            return False
        if self.clock() - stamp >= self.timeout - self.grace:
            del self._entries[username]
            logger.debug(f"Typing entry for {username} expired")
            return True
        return False

    def clear(self, username: str) -> None:
        """Remove the entry immediately."""
        self._entries.pop(username, None)
        timer = self._timers.pop(username, None)
        if timer:
            timer.cancel()

    def active_users(self) -> List[str]:
        """Sweep expired entries and return the users still typing."""
        now = self.clock()
        active = []
        for username, stamp in list(self._entries.items()):
            if now - stamp < self.timeout:
                active.append(username)
            else:
                del self._entries[username]
        return active

    def last_activity(self, username: str) -> Optional[float]:
        return self._entries.get(username)

    def close(self) -> None:
        """Cancel pending expiry timers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
