"""Process-wide wiring shared by every conversation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from voice_relay.config import Settings
from voice_relay.services.heartbeat import HeartbeatMonitor
from voice_relay.services.lifecycle import SessionLifecycle
from voice_relay.services.stream_coordinator import StreamCoordinator
from voice_relay.services.tts import ChunkTransmitter
from voice_relay.services.voice_session import SessionRegistry

if TYPE_CHECKING:
    from voice_relay.openrouter import Generator
    from voice_relay.services.channel import Channel
    from voice_relay.services.tts_service import Synthesizer

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    """Adapters and the session registry, stored on ``app.state.relay``."""

    settings: Settings
    registry: SessionRegistry
    lifecycle: SessionLifecycle
    generator: "Generator"
    synthesizer: "Synthesizer"
    transmitter: ChunkTransmitter

    @classmethod
    def build(
        cls,
        settings: Settings,
        generator: "Generator",
        synthesizer: "Synthesizer",
        *,
        registry: SessionRegistry | None = None,
        lifecycle: SessionLifecycle | None = None,
    ) -> "RelayServices":
        registry = registry or SessionRegistry(settings.idle_timeout_seconds)
        return cls(
            settings=settings,
            registry=registry,
            lifecycle=lifecycle or SessionLifecycle(registry, settings),
            generator=generator,
            synthesizer=synthesizer,
            transmitter=ChunkTransmitter(
                registry,
                chunk_size=settings.audio_chunk_bytes,
                delay=settings.audio_chunk_delay,
            ),
        )

    def new_coordinator(self, session_id: str, channel: "Channel") -> StreamCoordinator:
        return StreamCoordinator(
            session_id,
            self.registry,
            channel,
            self.generator,
            self.synthesizer,
            self.transmitter,
            supersede_grace=self.settings.supersede_grace_seconds,
            generation_timeout=self.settings.generation_timeout,
        )

    def new_heartbeat(self, session_id: str, channel: "Channel") -> HeartbeatMonitor:
        return HeartbeatMonitor(
            self.registry,
            session_id,
            channel,
            interval=self.settings.heartbeat_interval_seconds,
        )

    async def aclose(self) -> None:
        """Close the provider clients, bounded so shutdown never hangs."""
        for name, adapter in (("generator", self.generator), ("synthesizer", self.synthesizer)):
            closer = getattr(adapter, "aclose", None)
            if closer is None:
                continue
            try:
                await asyncio.wait_for(closer(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Closing %s timed out after 5s", name)
            except Exception as exc:
                logger.warning("Error while closing %s: %s", name, exc)


__all__ = ["RelayServices"]
