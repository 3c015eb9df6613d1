"""
Chunk Transmitter for Paced Audio Delivery.

This module slices one synthesized utterance into fixed-size binary frames
and sends them to the caller's channel with a small delay between frames.

Architecture:
    synthesized audio → iter_chunks() → ChunkTransmitter.transmit() → Channel

Before every frame the transmitter re-checks that the session still exists,
that the channel is still open and, when the caller supplies one, that its
epoch is still current. Any failed check ends transmission quietly so a
superseded reply never leaks audio after a barge-in.

Usage:
    transmitter = ChunkTransmitter(registry)
    sent = await transmitter.transmit(
        channel, session_id, audio, is_current=lambda: stream.epoch == session.epoch
    )
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Iterator, Optional

if TYPE_CHECKING:
    from voice_relay.services.channel import Channel
    from voice_relay.services.voice_session import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096
DEFAULT_CHUNK_DELAY = 0.002


def iter_chunks(audio: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield sequential slices of ``audio`` no longer than ``chunk_size``."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for offset in range(0, len(audio), chunk_size):
        yield audio[offset:offset + chunk_size]


class ChunkTransmitter:
    """
    Paced binary-frame sender shared by every session.

    Attributes:
        registry: Session registry consulted before each frame
        chunk_size: Maximum frame size in bytes
        delay: Pause between consecutive frames, in seconds
    """

    def __init__(
        self,
        registry: "SessionRegistry",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay: float = DEFAULT_CHUNK_DELAY,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.registry = registry
        self.chunk_size = chunk_size
        self.delay = delay

    def _may_send(
        self,
        channel: "Channel",
        session_id: str,
        is_current: Optional[Callable[[], bool]],
    ) -> bool:
        if session_id not in self.registry:
            logger.debug("Session %s gone, stopping audio", session_id)
            return False
        if not channel.is_open:
            logger.debug("Channel for %s closed, stopping audio", session_id)
            return False
        if is_current is not None and not is_current():
            logger.debug("Reply for %s superseded, stopping audio", session_id)
            return False
        return True

    async def transmit(
        self,
        channel: "Channel",
        session_id: str,
        audio: bytes,
        *,
        is_current: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Send ``audio`` as paced binary frames.

        Args:
            channel: Destination channel
            session_id: Session the audio belongs to
            audio: Opaque audio payload
            is_current: Optional epoch check evaluated before each frame

        Returns:
            Number of frames actually sent

        Raises:
            ChannelError: If the channel fails while sending
        """
        start_time = time.monotonic()
        sent = 0

        for chunk in iter_chunks(audio, self.chunk_size):
            if sent and self.delay > 0:
                await asyncio.sleep(self.delay)
            if not self._may_send(channel, session_id, is_current):
                break
            await channel.send_bytes(chunk)
            sent += 1

        elapsed = (time.monotonic() - start_time) * 1000
        logger.debug(
            "Sent %d audio chunk(s) (%d bytes) to %s in %.0fms",
            sent,
            len(audio),
            session_id,
            elapsed,
        )
        return sent


__all__ = ["ChunkTransmitter", "DEFAULT_CHUNK_DELAY", "DEFAULT_CHUNK_SIZE", "iter_chunks"]
