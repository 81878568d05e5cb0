import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .registry import RegistryEntry, RegistryStore
from .broadcaster import ChangeEvent, EventBroadcaster
from ..monitoring.metrics import MetricsTracker

logger = logging.getLogger(__name__)

Prober = Callable[[str], Awaitable[bool]]

class HeartbeatState(Enum):
    SLEEPING = "sleeping"
    PROBING = "probing"
    RECONCILING = "reconciling"

class HeartbeatMonitor:
    """Periodically probes every registered server and evicts the dead ones"""

    def __init__(self, registry: RegistryStore, broadcaster: EventBroadcaster,
                 prober: Prober, interval: float = 60.0,
                 metrics: Optional[MetricsTracker] = None):
        self.registry = registry
        self.broadcaster = broadcaster
        self.prober = prober
        self.interval = interval
        self.metrics = metrics or MetricsTracker()
        self.state = HeartbeatState.SLEEPING
        self._task: Optional[asyncio.Task] = None

    def start(self):
        """Start the heartbeat loop"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._heartbeat_loop())
            logger.info(f"Heartbeat started, checking every {self.interval}s")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Heartbeat stopped")

    async def _heartbeat_loop(self):
        while True:
            self.state = HeartbeatState.SLEEPING
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")
                self.metrics.record_error('heartbeat_error', str(e))

    async def run_once(self) -> List[RegistryEntry]:
        """Probe a snapshot of the registry and evict what failed"""
        self.state = HeartbeatState.PROBING
        started = self.metrics.time()
        entries = await self.registry.snapshot()
        results = await asyncio.gather(*(self.prober(entry.url) for entry in entries))
        failed = {entry for entry, alive in zip(entries, results) if not alive}

        self.state = HeartbeatState.RECONCILING
        removed = await self.registry.remove(lambda entry: entry in failed) if failed else []
        for entry in removed:
            logger.warning(f"Evicting unreachable server {entry.name} at {entry.url}")
            self.broadcaster.publish(ChangeEvent(added=False, name=entry.name, url=entry.url))

        self.metrics.increment('heartbeat.cycles')
        self.metrics.increment('heartbeat.evicted', len(removed))
        self.metrics.record('heartbeat.duration', self.metrics.time() - started)
        self.state = HeartbeatState.SLEEPING
        return removed
