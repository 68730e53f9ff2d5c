"""Tests for the network monitor and reachability probe."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from modelgate.offline.monitor import NetworkMonitor, ReachabilityProbe


class ScriptedProbe:
    """Returns the scripted results in order, then repeats the last one."""

    def __init__(self, *results: bool):
        self.results = list(results)
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest.mark.asyncio
async def test_starts_online():
    """The monitor assumes connectivity until a check says otherwise."""
    monitor = NetworkMonitor(probe=ScriptedProbe(True))
    status = await monitor.status()
    assert status["online"]
    assert not status["monitoring"]
    assert status["last_check_at"] is None


@pytest.mark.asyncio
async def test_going_offline_only_logs():
    """true -> false triggers no recovery."""
    on_recovery = AsyncMock()
    monitor = NetworkMonitor(probe=ScriptedProbe(False), on_recovery=on_recovery)
    await monitor.tick()
    assert not monitor.online
    assert monitor.last_offline_at is not None
    on_recovery.assert_not_awaited()


@pytest.mark.asyncio
async def test_recovery_on_observed_transition():
    """false -> true triggers recovery exactly once."""
    on_recovery = AsyncMock()
    monitor = NetworkMonitor(probe=ScriptedProbe(False, True, True), on_recovery=on_recovery)
    await monitor.tick()
    await monitor.tick()
    await monitor.tick()
    assert monitor.online
    on_recovery.assert_awaited_once()


@pytest.mark.asyncio
async def test_flaky_probe_between_polls_does_not_duplicate_recovery():
    """A blip nobody observed produces no online_recovered."""
    on_recovery = AsyncMock()
    # Network went down and came back between two polls: both observations are online
    monitor = NetworkMonitor(probe=ScriptedProbe(True, True), on_recovery=on_recovery)
    await monitor.tick()
    await monitor.tick()
    on_recovery.assert_not_awaited()


@pytest.mark.asyncio
async def test_probe_exception_counts_as_offline():
    """A probe that raises is treated as unreachable."""
    probe = AsyncMock(side_effect=RuntimeError("dns"))
    monitor = NetworkMonitor(probe=probe)
    await monitor.tick()
    assert not monitor.online


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped():
    """A tick while the previous one runs is skipped."""
    release = asyncio.Event()
    calls = 0

    async def slow_probe() -> bool:
        nonlocal calls
        calls += 1
        await release.wait()
        return True

    monitor = NetworkMonitor(probe=slow_probe)
    first = asyncio.create_task(monitor.tick())
    await asyncio.sleep(0.01)
    assert await monitor.tick() is False
    release.set()
    assert await first is True
    assert calls == 1


@pytest.mark.asyncio
async def test_recovery_failure_is_contained():
    """A failing recovery handler does not break the monitor."""
    on_recovery = AsyncMock(side_effect=RuntimeError("drain failed"))
    monitor = NetworkMonitor(probe=ScriptedProbe(False, True), on_recovery=on_recovery)
    await monitor.tick()
    await monitor.tick()
    assert monitor.online


@pytest.mark.asyncio
async def test_force_check():
    """Manual checks return the fresh state."""
    monitor = NetworkMonitor(probe=ScriptedProbe(False))
    assert await monitor.force_check() is False
    assert monitor.last_check_at is not None


@pytest.mark.asyncio
async def test_start_and_stop_polls():
    """The background loop polls until stopped."""
    probe = ScriptedProbe(True)
    monitor = NetworkMonitor(probe=probe, interval=0.01)
    await monitor.start()
    await monitor.start()  # idempotent
    await asyncio.sleep(0.05)
    assert monitor.monitoring
    await monitor.stop()

    assert not monitor.monitoring
    assert probe.calls >= 2
    calls = probe.calls
    await asyncio.sleep(0.03)
    assert probe.calls == calls


@pytest.mark.asyncio
async def test_probe_success_on_2xx():
    """Any 2xx, including 204, is reachable."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        return httpx.Response(204)

    probe = ReachabilityProbe(["https://probe.test/generate_204"], transport=httpx.MockTransport(handler))
    assert await probe() is True
    assert seen == ["HEAD"]


@pytest.mark.asyncio
async def test_probe_tries_next_url():
    """A failing endpoint falls through to the next one."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.test":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200)

    probe = ReachabilityProbe(
        ["https://down.test/", "https://up.test/"], transport=httpx.MockTransport(handler)
    )
    assert await probe() is True


@pytest.mark.asyncio
async def test_probe_fails_on_errors_and_non_2xx():
    """Connection errors and error statuses mean offline."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.test":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(503)

    probe = ReachabilityProbe(
        ["https://down.test/", "https://broken.test/"], transport=httpx.MockTransport(handler)
    )
    assert await probe() is False
