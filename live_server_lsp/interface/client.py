"""Helpers used by preview servers to talk to the coordinator.

The coordinator always listens on loopback from the point of view of its
own clients, so every call here targets ``127.0.0.1:<base port>``.
"""
import asyncio
import logging
import socket
from typing import Iterable, List, Optional, Set, Tuple

import aiohttp
from yarl import URL

from ..core.embedded import LOCAL_HOST

logger = logging.getLogger(__name__)

MAX_PORT = 65535

class CoordinatorUnavailable(ConnectionError):
    """The coordinator did not answer on its port"""

def coordinator_url(base_port: int, path: str = "/") -> str:
    return f"http://{LOCAL_HOST}:{base_port}{path}"

async def fetch_ports(session: aiohttp.ClientSession, base_port: int,
                      timeout: float = 5.0) -> List[Tuple[str, str]]:
    """Ask the coordinator which servers are registered"""
    try:
        async with session.post(coordinator_url(base_port, "/ports"),
                                timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            data = await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise CoordinatorUnavailable(f"Coordinator on port {base_port} unreachable: {e}") from e
    return [(name, url) for name, url in data]

def used_ports(entries: List[Tuple[str, str]]) -> Set[int]:
    ports = set()
    for _, url in entries:
        port = URL(url).port
        if port is not None:
            ports.add(port)
    return ports

def can_bind(port: int, host: str = LOCAL_HOST) -> bool:
    """Check whether a listening socket could be bound right now"""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, port))
            return True
    except OSError:
        return False

def next_free_port(start: int, taken: Set[int], host: str = LOCAL_HOST) -> int:
    """First port from ``start`` upwards that is neither taken nor busy locally"""
    port = start
    while port <= MAX_PORT:
        if port not in taken and can_bind(port, host):
            return port
        port += 1
    raise OSError(f"No free port at or above {start}")

async def allocate_port(session: aiohttp.ClientSession, base_port: int,
                        host: str = LOCAL_HOST, exclude: Iterable[int] = (),
                        start: Optional[int] = None) -> int:
    """Pick a port for a new preview server, searching upwards from ``start``.

    Best effort only: two servers racing here may pick the same port. The
    bind at serve time decides, and the loser allocates again above its port.
    """
    entries = await fetch_ports(session, base_port)
    port = next_free_port(start or base_port + 1, used_ports(entries) | set(exclude), host)
    logger.debug(f"Allocated port {port} (coordinator on {base_port})")
    return port

async def announce(session: aiohttp.ClientSession, base_port: int, name: str,
                   port: int, server: Optional[str] = None, timeout: float = 5.0):
    """Ask the coordinator to register a running preview server"""
    report = {"name": name, "port": port}
    if server is not None:
        report["server"] = server
    try:
        async with session.post(coordinator_url(base_port, "/register"), json=report,
                                timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise CoordinatorUnavailable(f"Could not register {name}: {e}") from e
    logger.info(f"Announced {name} on port {port}")
