import asyncio
import logging
from typing import AsyncIterator, Optional, Set, Tuple

logger = logging.getLogger(__name__)

class SignalChannel:
    """Reload notification carrying the most recently changed path.

    Consumers only ever see the latest value; signals sent faster than a
    consumer reads are coalesced.
    """

    def __init__(self):
        self.version = 0
        self.latest: Optional[str] = None
        self._waiters: Set[asyncio.Future] = set()

    def send_signal(self, path: str):
        self.version += 1
        self.latest = path
        waiters, self._waiters = self._waiters, set()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result((self.version, path))
        logger.debug(f"Signal {self.version}: {path}")

    async def wait(self, after: int = 0) -> Tuple[int, str]:
        """Wait for a signal newer than version ``after``"""
        if self.version > after:
            return self.version, self.latest
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            return await waiter
        finally:
            self._waiters.discard(waiter)

    async def listen(self) -> AsyncIterator[str]:
        """Yield each changed path sent after the listener started"""
        seen = self.version
        while True:
            seen, path = await self.wait(seen)
            yield path
