import pytest

from conftest import FakeChannel
from voice_relay.errors import ChannelError
from voice_relay.services.tts import ChunkTransmitter, iter_chunks


def test_iter_chunks_covers_payload_in_order() -> None:
    audio = bytes(range(256)) * 40  # 10240 bytes

    chunks = list(iter_chunks(audio, 4096))

    assert [len(c) for c in chunks] == [4096, 4096, 2048]
    assert b"".join(chunks) == audio


def test_iter_chunks_edge_cases() -> None:
    assert list(iter_chunks(b"", 4096)) == []
    assert list(iter_chunks(b"abc", 4096)) == [b"abc"]
    assert list(iter_chunks(b"abcd", 2)) == [b"ab", b"cd"]
    with pytest.raises(ValueError):
        list(iter_chunks(b"abc", 0))


@pytest.mark.asyncio
async def test_transmit_sends_every_chunk(registry, channel: FakeChannel) -> None:
    session_id = registry.create("p")
    transmitter = ChunkTransmitter(registry, chunk_size=3, delay=0)

    sent = await transmitter.transmit(channel, session_id, b"abcdefgh")

    assert sent == 3
    assert channel.frames == [b"abc", b"def", b"gh"]


@pytest.mark.asyncio
async def test_transmit_stops_when_epoch_superseded(registry, channel: FakeChannel) -> None:
    session_id = registry.create("p")
    transmitter = ChunkTransmitter(registry, chunk_size=2, delay=0)
    checks = iter([True, True, False, True])

    sent = await transmitter.transmit(
        channel, session_id, b"aabbccdd", is_current=lambda: next(checks)
    )

    assert sent == 2
    assert channel.frames == [b"aa", b"bb"]


@pytest.mark.asyncio
async def test_transmit_stops_for_removed_session_or_closed_channel(
    registry, channel: FakeChannel
) -> None:
    transmitter = ChunkTransmitter(registry, chunk_size=2, delay=0)

    assert await transmitter.transmit(channel, "missing", b"aabb") == 0

    session_id = registry.create("p")
    channel.open = False
    assert await transmitter.transmit(channel, session_id, b"aabb") == 0
    assert channel.frames == []


@pytest.mark.asyncio
async def test_transmit_paces_frames(registry, channel: FakeChannel, monkeypatch) -> None:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr(
        "voice_relay.services.tts.chunk_transmitter.asyncio.sleep", fake_sleep
    )
    session_id = registry.create("p")
    transmitter = ChunkTransmitter(registry, chunk_size=4096, delay=0.002)

    sent = await transmitter.transmit(channel, session_id, b"x" * 9000)

    assert sent == 3
    assert sleeps == [0.002, 0.002]


@pytest.mark.asyncio
async def test_transmit_propagates_channel_errors(registry, channel: FakeChannel) -> None:
    session_id = registry.create("p")
    channel.fail_on_send = True
    transmitter = ChunkTransmitter(registry, chunk_size=2, delay=0)

    with pytest.raises(ChannelError):
        await transmitter.transmit(channel, session_id, b"aabb")


def test_chunk_size_must_be_positive(registry) -> None:
    with pytest.raises(ValueError):
        ChunkTransmitter(registry, chunk_size=0)
