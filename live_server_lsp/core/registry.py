import asyncio
import logging
from typing import Callable, List, Tuple
from dataclasses import dataclass

from yarl import URL

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "http://127.0.0.1"

def normalize_url(url: str) -> str:
    """Give a URL an explicit root path so equal endpoints compare equal"""
    parsed = URL(url)
    if parsed.path in ("", "/"):
        parsed = parsed.with_path("/")
    return str(parsed)

def server_url(server: str, port: int) -> str:
    """Build the URL of a preview server from its base address and port"""
    return normalize_url(str(URL(server).with_port(port)))

@dataclass(frozen=True)
class RegistryEntry:
    """A preview server known to the coordinator"""
    name: str
    url: str

    @property
    def port(self) -> int:
        return URL(self.url).port

    def as_pair(self) -> Tuple[str, str]:
        return (self.name, self.url)

class RegistryStore:
    """Ordered table of running preview servers.

    All access goes through a single lock so readers never see a table
    that is halfway through a mutation. ``snapshot`` hands out an immutable
    copy that can be iterated while probes or sends are in flight.
    """

    def __init__(self):
        self._entries: List[RegistryEntry] = []
        self._lock = asyncio.Lock()

    async def add(self, name: str, url: str) -> bool:
        """Append an entry unless the identical pair is already registered"""
        entry = RegistryEntry(name=name, url=normalize_url(url))
        async with self._lock:
            if entry in self._entries:
                return False
            self._entries.append(entry)
        logger.info(f"Registered {entry.name} at {entry.url}")
        return True

    async def remove(self, predicate: Callable[[RegistryEntry], bool]) -> List[RegistryEntry]:
        """Remove every entry matching the predicate and return them"""
        async with self._lock:
            removed, kept = [], []
            for entry in self._entries:
                (removed if predicate(entry) else kept).append(entry)
            self._entries = kept
        for entry in removed:
            logger.info(f"Removed {entry.name} at {entry.url}")
        return removed

    async def snapshot(self) -> Tuple[RegistryEntry, ...]:
        async with self._lock:
            return tuple(self._entries)
