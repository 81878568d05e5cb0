import asyncio
import logging
from typing import Optional

import aiohttp
from yarl import URL

logger = logging.getLogger(__name__)

PING_PATH = "/ping"

async def probe(session: aiohttp.ClientSession, url: str, timeout: float = 2.0) -> bool:
    """Return True only if ``url`` answers POST /ping with a 2xx before the timeout.

    Any connection error, timeout or non-success status means unreachable.
    No retries happen here.
    """
    target = URL(url).with_path(PING_PATH)
    try:
        async with session.post(target, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            return 200 <= response.status < 300
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
        logger.debug(f"Probe of {target} failed: {e!r}")
        return False

class LivenessProber:
    """Holds the HTTP session used for probing"""

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def __call__(self, url: str) -> bool:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await probe(self._session, url, self.timeout)

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None
