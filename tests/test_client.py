import pytest
import socket

from live_server_lsp.interface import client
from live_server_lsp.interface.client import (
    CoordinatorUnavailable, allocate_port, announce, can_bind, fetch_ports, next_free_port, used_ports
)

def test_used_ports():
    entries = [("a", "http://127.0.0.1:4001/"), ("b", "http://localhost:4005/")]
    assert used_ports(entries) == {4001, 4005}

def test_next_free_port_skips_taken_and_busy(monkeypatch):
    busy = {5003}
    monkeypatch.setattr(client, "can_bind", lambda port, host="127.0.0.1": port not in busy)

    assert next_free_port(5001, {5001, 5002}) == 5004

def test_next_free_port_exhausted(monkeypatch):
    monkeypatch.setattr(client, "can_bind", lambda port, host="127.0.0.1": False)
    with pytest.raises(OSError):
        next_free_port(65530, set())

def test_can_bind(unused_tcp_port):
    assert can_bind(unused_tcp_port)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", unused_tcp_port))
        s.listen(1)
        assert not can_bind(unused_tcp_port)

class TestAllocatePort:
    @pytest.mark.asyncio
    async def test_skips_registered_and_bound_ports(self, coordinator, async_client):
        base = coordinator.config.port
        await coordinator.state.registry.add("one", f"http://127.0.0.1:{base + 1}/")
        await coordinator.state.registry.add("two", f"http://127.0.0.1:{base + 2}/")

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            try:
                blocker.bind(("127.0.0.1", base + 3))
            except OSError:
                pass  # already busy, which is just as good
            port = await allocate_port(async_client, base)

        assert port > base + 3
        listed = used_ports(await fetch_ports(async_client, base))
        assert port not in listed
        assert can_bind(port)

    @pytest.mark.asyncio
    async def test_exclude(self, coordinator, async_client, monkeypatch):
        monkeypatch.setattr(client, "can_bind", lambda port, host="127.0.0.1": True)
        base = coordinator.config.port

        assert await allocate_port(async_client, base, exclude=[base + 1]) == base + 2

    @pytest.mark.asyncio
    async def test_start_skips_ports_advertised_by_other_hosts(self, coordinator, async_client, monkeypatch):
        monkeypatch.setattr(client, "can_bind", lambda port, host="127.0.0.1": True)
        base = coordinator.config.port
        await coordinator.state.registry.add("remote", f"http://192.168.1.5:{base + 10}/")

        assert await allocate_port(async_client, base, start=base + 10) == base + 11

    @pytest.mark.asyncio
    async def test_without_coordinator(self, async_client, unused_tcp_port):
        with pytest.raises(CoordinatorUnavailable):
            await allocate_port(async_client, unused_tcp_port)

class TestAnnounce:
    @pytest.mark.asyncio
    async def test_announce_registers(self, coordinator, async_client, fake_prober):
        fake_prober.reachable.add("http://127.0.0.1:4001/")

        await announce(async_client, coordinator.config.port, "demo", 4001)

        assert await fetch_ports(async_client, coordinator.config.port) == [("demo", "http://127.0.0.1:4001/")]

    @pytest.mark.asyncio
    async def test_announce_without_coordinator(self, async_client, unused_tcp_port):
        with pytest.raises(CoordinatorUnavailable):
            await announce(async_client, unused_tcp_port, "demo", 4001)
