import asyncio

import pytest

from conftest import FakeChannel
from voice_relay.services.heartbeat import HeartbeatMonitor


@pytest.mark.asyncio
async def test_beat_pings_and_refreshes_activity(registry, channel: FakeChannel) -> None:
    session_id = registry.create("p")
    session = registry.get(session_id)
    session.last_activity = 0.0
    monitor = HeartbeatMonitor(registry, session_id, channel, interval=30)

    assert await monitor.beat() is True

    assert channel.pings == 1
    assert session.last_activity > 0.0


@pytest.mark.asyncio
async def test_beat_failure_stops_monitor(registry, channel: FakeChannel) -> None:
    session_id = registry.create("p")
    channel.fail_on_ping = True
    monitor = HeartbeatMonitor(registry, session_id, channel, interval=0.01)

    monitor.start()
    await asyncio.sleep(0.05)

    assert monitor.running is False
    await monitor.stop()


@pytest.mark.asyncio
async def test_monitor_pings_periodically_until_stopped(registry, channel: FakeChannel) -> None:
    session_id = registry.create("p")
    monitor = HeartbeatMonitor(registry, session_id, channel, interval=0.01)

    monitor.start()
    await asyncio.sleep(0.055)
    await monitor.stop()
    pings = channel.pings

    assert pings >= 2
    await asyncio.sleep(0.03)
    assert channel.pings == pings
    # stop() is idempotent
    await monitor.stop()


@pytest.mark.asyncio
async def test_monitor_stops_for_closed_channel_or_missing_session(
    registry, channel: FakeChannel
) -> None:
    monitor = HeartbeatMonitor(registry, "missing", channel, interval=30)
    assert await monitor.beat() is False

    session_id = registry.create("p")
    channel.open = False
    monitor = HeartbeatMonitor(registry, session_id, channel, interval=30)
    assert await monitor.beat() is False
    assert channel.pings == 0
