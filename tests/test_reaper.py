from __future__ import annotations

import asyncio

import pytest

from scale_relay.reaper import Reaper


def test_idle_sessions_are_closed_and_group_pruned(engine, registry, reaper, make_session, clock):
    bridge, client = make_session(), make_session()
    engine.register_bridge(bridge, "SC1", "PC1")
    engine.register_client(client, "SC1", None)

    clock.advance(3601)
    reaped = reaper.sweep()

    assert set(reaped) == {bridge, client}
    assert bridge.transport.closed == (4002, "Inactive for 1 hour")
    assert client.transport.closed == (4002, "Inactive for 1 hour")
    assert registry.group_for("SC1") is None


def test_active_sessions_survive(engine, registry, reaper, make_session, clock):
    bridge, client = make_session(), make_session()
    engine.register_bridge(bridge, "SC1", "PC1")
    engine.register_client(client, "SC1", None)

    clock.advance(3000)
    bridge.touch(clock())
    clock.advance(1000)
    reaped = reaper.sweep()

    assert reaped == [client]
    assert registry.group_for("SC1") == {bridge}
    assert bridge.transport.closed is None


def test_exactly_at_timeout_is_not_idle(engine, reaper, make_session, clock):
    bridge = make_session()
    engine.register_bridge(bridge, "SC1", "PC1")

    clock.advance(3600)

    assert reaper.sweep() == []


def test_invalid_intervals_are_refused(registry):
    with pytest.raises(ValueError):
        Reaper(registry, idle_timeout=0)
    with pytest.raises(ValueError):
        Reaper(registry, sweep_interval=-1)


@pytest.mark.asyncio
async def test_run_sweeps_periodically(engine, registry, make_session, clock):
    bridge = make_session()
    engine.register_bridge(bridge, "SC1", "PC1")
    clock.advance(10)
    reaper = Reaper(registry, idle_timeout=5, sweep_interval=0.01, clock=clock)

    task = asyncio.create_task(reaper.run())
    for _ in range(100):
        if registry.group_for("SC1") is None:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert bridge.transport.closed == (4002, "Inactive for 1 hour")
