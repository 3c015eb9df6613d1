"""Process-wide table of conversation sessions."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from voice_relay.errors import ChannelError
from voice_relay.services.channel import Channel

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    PROCESSING = "processing"
    ERROR = "error"
    DISCONNECTED = "disconnected"


@dataclass(eq=False)
class VoiceSession:
    """Tracks the state of a single conversation."""

    session_id: str
    prompt: str
    status: SessionStatus = SessionStatus.INITIALIZING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: float = field(default_factory=time.monotonic)
    is_processing: bool = False
    epoch: int = 0
    channel: Optional[Channel] = None
    # Guards status, is_processing, epoch and last_activity against the
    # idle sweep, the heartbeat and the coordinator.
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def update_activity(self, now: Optional[float] = None) -> None:
        """Update the last activity timestamp."""
        self.last_activity = time.monotonic() if now is None else now


class SessionRegistry:
    """Owns every live session, keyed by session id."""

    def __init__(
        self,
        idle_timeout: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, VoiceSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def ids(self) -> List[str]:
        return list(self._sessions)

    def __iter__(self) -> Iterator[VoiceSession]:
        return iter(list(self._sessions.values()))

    def create(self, prompt: str) -> str:
        """Register a new session for ``prompt`` and return its id."""
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = VoiceSession(
            session_id=session_id,
            prompt=prompt,
            last_activity=self._clock(),
        )
        logger.info("Session created: %s (prompt: %r)", session_id, prompt[:50])
        return session_id

    def get(self, session_id: Optional[str]) -> Optional[VoiceSession]:
        """Retrieve a session by id."""
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def attach_channel(self, session_id: str, channel: Channel) -> VoiceSession:
        """Bind a live channel to an existing session and mark it connected."""
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        session.channel = channel
        session.status = SessionStatus.CONNECTED
        session.update_activity(self._clock())
        logger.info("Channel attached to session %s", session_id)
        return session

    def touch(self, session_id: str) -> bool:
        """Refresh the activity timestamp. Returns False for unknown ids."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.update_activity(self._clock())
        return True

    def remove(self, session_id: str) -> Optional[VoiceSession]:
        """Remove a session. Absent ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.status = SessionStatus.DISCONNECTED
        session.is_processing = False
        logger.info("Session removed: %s", session_id)
        return session

    def is_idle(self, session: VoiceSession, now: Optional[float] = None) -> bool:
        current = self._clock() if now is None else now
        return current - session.last_activity > self.idle_timeout

    async def sweep_idle(self, now: Optional[float] = None) -> List[str]:
        """Evict every session idle for longer than ``idle_timeout``."""
        current = self._clock() if now is None else now
        evicted: List[str] = []

        for session in list(self._sessions.values()):
            if not self.is_idle(session, current):
                continue
            async with session.lock:
                # Re-check: the session may have been touched or removed
                # while we waited for its lock.
                if self._sessions.get(session.session_id) is not session:
                    continue
                if not self.is_idle(session, current):
                    continue
                logger.info("Removing inactive session %s", session.session_id)
                channel = session.channel
                if channel is not None and channel.is_open:
                    try:
                        await channel.close(code=1000, reason="idle timeout")
                    except ChannelError as exc:
                        logger.warning(
                            "Failed to close channel for %s: %s", session.session_id, exc
                        )
                self.remove(session.session_id)
                evicted.append(session.session_id)

        return evicted


__all__ = ["SessionRegistry", "SessionStatus", "VoiceSession"]
