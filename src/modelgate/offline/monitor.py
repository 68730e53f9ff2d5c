"""
Network monitor.

Polls a reachability probe on a fixed interval and keeps a single online
flag. Only an observed offline -> online transition triggers recovery;
going offline is logged and nothing else.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import datetime

import httpx

from modelgate.core.logging import get_logger
from modelgate.offline.queue import OfflineQueue

logger = get_logger("offline.monitor")

DEFAULT_PROBE_URLS = (
    "https://www.google.com/generate_204",
    "https://1.1.1.1/cdn-cgi/trace",
)

RecoveryCallback = Callable[[], Awaitable[object]]


class ReachabilityProbe:
    """HEAD request against well-known endpoints; any 2xx counts as online."""

    def __init__(
        self,
        urls: list[str] | tuple[str, ...] = DEFAULT_PROBE_URLS,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.urls = list(urls)
        self.timeout = timeout
        self._transport = transport

    async def __call__(self) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for url in self.urls:
                try:
                    response = await client.head(url)
                except httpx.HTTPError as e:
                    logger.debug(f"Probe {url} failed: {e}")
                    continue
                if response.is_success:
                    return True
                logger.debug(f"Probe {url} returned {response.status_code}")
        return False


class NetworkMonitor:
    """Single recurring background check of connectivity.

    Ticks never overlap: if the previous check is still running when the
    next one is due, the new one is skipped.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]] | None = None,
        interval: float = 30.0,
        on_recovery: RecoveryCallback | None = None,
        queue: OfflineQueue | None = None,
    ):
        self.probe = probe or ReachabilityProbe()
        self.interval = interval
        self.on_recovery = on_recovery
        self.queue = queue

        self.online = True
        self.last_check_at: datetime | None = None
        self.last_online_at: datetime | None = None
        self.last_offline_at: datetime | None = None

        self._running = False
        self._task: asyncio.Task | None = None
        self._tick_lock = asyncio.Lock()

    @property
    def monitoring(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start polling."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Network monitor started (every {self.interval}s)")

    async def stop(self) -> None:
        """Stop polling."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Network monitor stopped")

    async def _loop(self) -> None:
        while self._running:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def tick(self) -> bool:
        """Run one check unless one is already in flight.

        Returns:
            True if the check ran
        """
        if self._tick_lock.locked():
            logger.debug("Previous check still running, skipping tick")
            return False

        async with self._tick_lock:
            try:
                reachable = await self.probe()
            except Exception as e:
                logger.warning(f"Reachability probe raised: {e}")
                reachable = False
            await self._update(reachable)
        return True

    async def _update(self, reachable: bool) -> None:
        now = datetime.now()
        self.last_check_at = now
        was_online = self.online
        self.online = reachable

        if reachable:
            self.last_online_at = now
            if not was_online:
                logger.info("Connectivity restored")
                await self._recover()
        else:
            self.last_offline_at = now
            if was_online:
                logger.warning("Connectivity lost")

    async def _recover(self) -> None:
        if self.on_recovery is None:
            return
        try:
            await self.on_recovery()
        except Exception as e:
            logger.error(f"Recovery handler failed: {e}", exc_info=True)

    async def force_check(self) -> bool:
        """Check right now and return the resulting online flag."""
        await self.tick()
        return self.online

    async def status(self) -> dict:
        return {
            "online": self.online,
            "monitoring": self.monitoring,
            "queued": await self.queue.count() if self.queue else 0,
            "last_check_at": self.last_check_at,
            "last_online_at": self.last_online_at,
            "last_offline_at": self.last_offline_at,
            "interval": self.interval,
        }
