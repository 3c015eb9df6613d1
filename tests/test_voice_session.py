import asyncio

import pytest

from conftest import FakeChannel
from voice_relay.services.voice_session import SessionRegistry, SessionStatus


class ManualClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_create_registers_initializing_session(registry: SessionRegistry) -> None:
    session_id = registry.create("You are a tour guide.")

    session = registry.get(session_id)
    assert session is not None
    assert session.prompt == "You are a tour guide."
    assert session.status is SessionStatus.INITIALIZING
    assert session.is_processing is False
    assert session.epoch == 0
    assert session_id in registry
    assert len(registry) == 1


def test_session_ids_are_unique(registry: SessionRegistry) -> None:
    ids = {registry.create("p") for _ in range(50)}
    assert len(ids) == 50


def test_get_unknown_and_none(registry: SessionRegistry) -> None:
    assert registry.get("missing") is None
    assert registry.get(None) is None


def test_attach_channel_marks_connected(registry: SessionRegistry) -> None:
    session_id = registry.create("p")
    channel = FakeChannel()

    session = registry.attach_channel(session_id, channel)

    assert session.channel is channel
    assert session.status is SessionStatus.CONNECTED
    with pytest.raises(KeyError):
        registry.attach_channel("missing", channel)


def test_remove_absent_is_noop(registry: SessionRegistry) -> None:
    assert registry.remove("missing") is None

    session_id = registry.create("p")
    removed = registry.remove(session_id)
    assert removed is not None
    assert removed.status is SessionStatus.DISCONNECTED
    assert registry.remove(session_id) is None
    assert len(registry) == 0


def test_touch_refreshes_activity() -> None:
    clock = ManualClock()
    registry = SessionRegistry(idle_timeout=300.0, clock=clock)
    session_id = registry.create("p")

    clock.now += 120
    assert registry.touch(session_id) is True
    assert registry.get(session_id).last_activity == clock.now
    assert registry.touch("missing") is False


@pytest.mark.asyncio
async def test_sweep_idle_evicts_stale_and_closes_channel() -> None:
    clock = ManualClock()
    registry = SessionRegistry(idle_timeout=300.0, clock=clock)
    stale_id = registry.create("stale")
    stale_channel = FakeChannel()
    registry.attach_channel(stale_id, stale_channel)

    clock.now += 200
    fresh_id = registry.create("fresh")

    clock.now += 101
    evicted = await registry.sweep_idle()

    assert evicted == [stale_id]
    assert stale_id not in registry
    assert fresh_id in registry
    assert stale_channel.is_open is False
    assert stale_channel.close_code == 1000


@pytest.mark.asyncio
async def test_sweep_idle_swallows_close_failures() -> None:
    clock = ManualClock()
    registry = SessionRegistry(idle_timeout=10.0, clock=clock)
    session_id = registry.create("p")
    channel = FakeChannel()
    channel.fail_on_close = True
    registry.attach_channel(session_id, channel)

    clock.now += 11
    evicted = await registry.sweep_idle()

    assert evicted == [session_id]
    assert session_id not in registry


@pytest.mark.asyncio
async def test_sweep_idle_keeps_session_touched_while_waiting_for_lock() -> None:
    clock = ManualClock()
    registry = SessionRegistry(idle_timeout=10.0, clock=clock)
    session_id = registry.create("p")
    session = registry.get(session_id)

    clock.now += 11
    await session.lock.acquire()
    try:
        sweep = asyncio.create_task(registry.sweep_idle())
        await asyncio.sleep(0)
        registry.touch(session_id)
    finally:
        session.lock.release()

    # The sweep re-checks idleness against its own timestamp once it has the lock.
    assert await sweep == []
    assert session_id in registry
