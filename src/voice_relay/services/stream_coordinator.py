"""
Per-session reply orchestration with epoch-based barge-in.

One StreamCoordinator drives the replies for a single attached session:

    transcript → Generator deltas → text frames
                                  → SentenceSegmenter → TTSService → ChunkTransmitter

Every transcript bumps the session epoch. A reply may only emit while its
own epoch is the session's current one, so a newer transcript silences the
previous reply at its next suspend point. The previous task is also
cancelled and given a short grace period to unwind before the new reply
starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from voice_relay.errors import ChannelError, UpstreamSynthesisError
from voice_relay.schemas.messages import (
    ChannelClosedEvent,
    InboundEvent,
    TranscriptEvent,
)
from voice_relay.services.tts import SentenceSegmenter
from voice_relay.services.voice_session import SessionStatus

if TYPE_CHECKING:
    from voice_relay.openrouter import Generator
    from voice_relay.services.channel import Channel
    from voice_relay.services.tts import ChunkTransmitter
    from voice_relay.services.tts_service import Synthesizer
    from voice_relay.services.voice_session import SessionRegistry, VoiceSession

logger = logging.getLogger(__name__)

GENERATION_FAILED_MESSAGE = "Failed to generate a response"
SYNTHESIS_FAILED_MESSAGE = "Failed to synthesize audio"


@dataclass(eq=False)
class GenerationStream:
    """One generator invocation tagged with the epoch it was started under."""

    epoch: int
    transcript: str
    segmenter: SentenceSegmenter = field(default_factory=SentenceSegmenter)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    @property
    def live(self) -> bool:
        return self.task is not None and not self.task.done()

    def cancel(self) -> None:
        self.cancel_event.set()
        if self.live and self.task is not asyncio.current_task():
            self.task.cancel()


class StreamCoordinator:
    """
    Owns the single live GenerationStream of one session.

    Attributes:
        session_id: Session this coordinator serves
        registry: Shared session registry
        channel: The session's attached channel
        supersede_grace: Seconds to wait for a cancelled stream to unwind
        generation_timeout: Optional upper bound for one reply, in seconds
    """

    def __init__(
        self,
        session_id: str,
        registry: "SessionRegistry",
        channel: "Channel",
        generator: "Generator",
        synthesizer: "Synthesizer",
        transmitter: "ChunkTransmitter",
        *,
        supersede_grace: float = 1.0,
        generation_timeout: Optional[float] = None,
    ):
        self.session_id = session_id
        self.registry = registry
        self.channel = channel
        self.generator = generator
        self.synthesizer = synthesizer
        self.transmitter = transmitter
        self.supersede_grace = supersede_grace
        self.generation_timeout = generation_timeout
        self._active: Optional[GenerationStream] = None

    @property
    def active_stream(self) -> Optional[GenerationStream]:
        return self._active

    def is_current(self, stream: GenerationStream) -> bool:
        """True while ``stream`` may still emit to the channel."""
        if stream.cancel_event.is_set():
            return False
        session = self.registry.get(self.session_id)
        return session is not None and session.epoch == stream.epoch

    async def run(self, events: "asyncio.Queue[InboundEvent]") -> None:
        """Drain inbound events in order until the channel closes."""
        try:
            while True:
                event = await events.get()
                if isinstance(event, ChannelClosedEvent):
                    logger.info(
                        "Channel closed for %s (%s), stopping coordinator",
                        self.session_id,
                        event.reason,
                    )
                    break
                if isinstance(event, TranscriptEvent):
                    await self.handle_transcript(event.content)
        finally:
            await self.shutdown()

    async def handle_transcript(self, transcript: str) -> Optional[GenerationStream]:
        """Supersede any live reply and start a new one for ``transcript``."""
        session = self.registry.get(self.session_id)
        if session is None:
            logger.warning("Transcript for unknown session %s ignored", self.session_id)
            return None

        async with session.lock:
            session.epoch += 1
            epoch = session.epoch
            previous = self._active

        if previous is not None:
            logger.info(
                "Barge-in on %s: superseding epoch %d with %d",
                self.session_id,
                previous.epoch,
                epoch,
            )
            await self._supersede(previous)

        if not transcript.strip():
            logger.debug("Blank transcript for %s, nothing to generate", self.session_id)
            return None

        async with session.lock:
            if session.epoch != epoch or self.registry.get(self.session_id) is not session:
                return None
            stream = GenerationStream(epoch=epoch, transcript=transcript)
            session.is_processing = True
            session.status = SessionStatus.PROCESSING
            self._active = stream
            stream.task = asyncio.create_task(
                self._drive(session, stream),
                name=f"reply-{self.session_id}-{epoch}",
            )

        logger.info(
            "Generating reply for %s (epoch %d): %s",
            self.session_id,
            epoch,
            transcript[:50],
        )
        return stream

    async def shutdown(self) -> None:
        """Cancel the live stream, if any, and wait briefly for it to unwind."""
        stream = self._active
        if stream is not None:
            await self._supersede(stream)

    async def _supersede(self, stream: GenerationStream) -> None:
        stream.cancel()
        task = stream.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({task}, timeout=self.supersede_grace)
        if not done:
            logger.warning(
                "Stream for %s (epoch %d) did not unwind within %.1fs",
                self.session_id,
                stream.epoch,
                self.supersede_grace,
            )

    async def _drive(self, session: "VoiceSession", stream: GenerationStream) -> None:
        start_time = time.monotonic()
        try:
            if self.generation_timeout is not None:
                await asyncio.wait_for(
                    self._generate(session, stream), timeout=self.generation_timeout
                )
            else:
                await self._generate(session, stream)
        except asyncio.CancelledError:
            logger.info(
                "Reply for %s (epoch %d) cancelled", self.session_id, stream.epoch
            )
        except ChannelError as exc:
            logger.warning("Channel failed for %s: %s", self.session_id, exc)
            await self._teardown(stream)
        except asyncio.TimeoutError:
            logger.warning(
                "Reply for %s timed out after %.1fs",
                self.session_id,
                self.generation_timeout,
            )
            await self._report_generation_error(session, stream)
        except Exception as exc:
            logger.error(
                "Generation failed for %s: %s", self.session_id, exc, exc_info=True
            )
            await self._report_generation_error(session, stream)
        else:
            elapsed = (time.monotonic() - start_time) * 1000
            logger.info(
                "Reply for %s (epoch %d) finished in %.0fms",
                self.session_id,
                stream.epoch,
                elapsed,
            )
        finally:
            await self._finish(session, stream)

    async def _generate(self, session: "VoiceSession", stream: GenerationStream) -> None:
        deltas = self.generator.stream(session.prompt, stream.transcript)
        async with contextlib.aclosing(deltas):
            async for delta in deltas:
                if not self.is_current(stream):
                    return
                await self.channel.send_event("text", delta)
                for sentence in stream.segmenter.feed(delta):
                    await self._speak(stream, sentence)

        if not self.is_current(stream):
            return
        final = stream.segmenter.flush()
        if final:
            await self._speak(stream, final)

    async def _speak(self, stream: GenerationStream, sentence: str) -> None:
        if not self.is_current(stream):
            return
        try:
            audio = await self.synthesizer.synthesize(sentence)
        except UpstreamSynthesisError as exc:
            logger.error("TTS synthesis error for %s: %s", self.session_id, exc)
            if self.is_current(stream):
                await self.channel.send_event("error", SYNTHESIS_FAILED_MESSAGE)
            return

        if not audio or not self.is_current(stream):
            return
        await self.transmitter.transmit(
            self.channel,
            self.session_id,
            audio,
            is_current=lambda: self.is_current(stream),
        )

    async def _report_generation_error(
        self, session: "VoiceSession", stream: GenerationStream
    ) -> None:
        if not self.is_current(stream):
            return
        async with session.lock:
            session.status = SessionStatus.ERROR
        try:
            await self.channel.send_event("error", GENERATION_FAILED_MESSAGE)
        except ChannelError as exc:
            logger.warning("Could not report error to %s: %s", self.session_id, exc)
            await self._teardown(stream)

    async def _teardown(self, stream: GenerationStream) -> None:
        stream.cancel()
        logger.warning("Tearing down session %s after channel failure", self.session_id)
        self.registry.remove(self.session_id)
        try:
            await self.channel.close(code=1011, reason="channel error")
        except ChannelError as exc:
            logger.debug("Channel for %s already unusable: %s", self.session_id, exc)

    async def _finish(self, session: "VoiceSession", stream: GenerationStream) -> None:
        async with session.lock:
            # A newer stream owns the session state now; leave it alone.
            if self._active is not stream:
                return
            self._active = None
            if self.registry.get(self.session_id) is not session:
                return
            session.is_processing = False
            session.status = SessionStatus.CONNECTED


__all__ = [
    "GENERATION_FAILED_MESSAGE",
    "GenerationStream",
    "StreamCoordinator",
    "SYNTHESIS_FAILED_MESSAGE",
]
