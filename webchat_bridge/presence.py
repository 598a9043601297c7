"""
Presence heuristics for the bridge's Discord account.

The bot shows as online while a web client is polling and as do-not-disturb
once polling stops.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .bot_models import ChatBackend, PresenceState

logger = logging.getLogger(__name__)


class PresenceMonitor:
    """
    Two-state presence machine: IDLE (dnd) <-> ONLINE.

    - IDLE -> ONLINE when a snapshot request arrives while idle.
    - ONLINE -> IDLE when the poller sees no request for `timeout` seconds.

    Every transition pushes a presence update to the backend. Push failures are
    logged only; the local state reflects intent, not confirmed delivery.
    """

    def __init__(
        self,
        backend: ChatBackend,
        timeout: float = 15.0,
        poll_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.backend = backend
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.clock = clock

        self.state = PresenceState.IDLE
        self.last_api_request: Optional[float] = None
        self.transitions = 0

        self._poll_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self.state is PresenceState.ONLINE

    async def record_request(self) -> None:
        """Note web-client activity; go online if idle."""
        self.last_api_request = self.clock()
        if self.state is PresenceState.IDLE:
            await self._transition(PresenceState.ONLINE)

    async def poll(self) -> None:
        """Go idle if the web client has been quiet for `timeout` seconds."""
        if self.state is not PresenceState.ONLINE:
            return
        if self.last_api_request is None or self.clock() - self.last_api_request >= self.timeout:
            await self._transition(PresenceState.IDLE)

    async def _transition(self, new_state: PresenceState) -> None:
        old_state = self.state
        self.state = new_state
        self.transitions += 1
        logger.info(f"Presence {old_state.value} -> {new_state.value}")
        await self.push()

    async def push(self) -> None:
        """Send the current state to the backend, logging failures."""
        try:
            await self.backend.set_presence(self.state)
        except Exception as e:
            logger.error(f"Failed to update presence to {self.state.value}: {e}")

    def start(self) -> None:
        """Start the periodic poller if it isn't already running."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._periodic_poll())

    async def stop(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def _periodic_poll(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.poll_interval)
                await self.poll()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in presence poll: {e}")
