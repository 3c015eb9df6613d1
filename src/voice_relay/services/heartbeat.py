"""Periodic liveness pings for an attached session."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, Optional

from voice_relay.errors import ChannelError

if TYPE_CHECKING:
    from voice_relay.services.channel import Channel
    from voice_relay.services.voice_session import SessionRegistry

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Ping the channel every ``interval`` seconds and keep the session fresh."""

    def __init__(
        self,
        registry: "SessionRegistry",
        session_id: str,
        channel: "Channel",
        interval: float = 30.0,
    ):
        self.registry = registry
        self.session_id = session_id
        self.channel = channel
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"heartbeat-{self.session_id}"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def beat(self) -> bool:
        """Send one ping. Returns False when the monitor should stop."""
        if self.session_id not in self.registry or not self.channel.is_open:
            return False
        try:
            await self.channel.ping()
        except ChannelError as exc:
            logger.warning("Heartbeat failed for %s: %s", self.session_id, exc)
            return False
        self.registry.touch(self.session_id)
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not await self.beat():
                logger.info("Heartbeat stopped for %s", self.session_id)
                return


__all__ = ["HeartbeatMonitor"]
