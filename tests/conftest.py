import pytest
import asyncio
from typing import AsyncGenerator, Set, List

from live_server_lsp.core.config_manager import ServerConfig
from live_server_lsp.interface.dashboard import CoordinatorServer, create_state

class FakeProber:
    """Stands in for the network prober; URLs in ``reachable`` answer"""

    def __init__(self, reachable: Set[str] = None):
        self.reachable: Set[str] = set(reachable or ())
        self.calls: List[str] = []

    async def __call__(self, url: str) -> bool:
        self.calls.append(url)
        await asyncio.sleep(0)
        return url in self.reachable

@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()

@pytest.fixture
def coordinator_config(unused_tcp_port) -> ServerConfig:
    return ServerConfig(port=unused_tcp_port, heartbeat_interval=3600, probe_timeout=1.0)

@pytest.fixture
async def coordinator(coordinator_config, fake_prober) -> AsyncGenerator:
    server = CoordinatorServer(coordinator_config, state=create_state(coordinator_config, prober=fake_prober))
    await server.start()
    yield server
    await server.stop()

# Async client session
@pytest.fixture
async def async_client() -> AsyncGenerator:
    from aiohttp import ClientSession
    async with ClientSession() as session:
        yield session
