import pytest
import asyncio

from aiohttp import web

from live_server_lsp.core.prober import LivenessProber, probe

@pytest.fixture
async def ping_target(unused_tcp_port_factory):
    """Tiny servers answering /ping with a chosen status or a delay"""
    runners = []

    async def start(status: int = 200, delay: float = 0.0) -> str:
        async def ping(request):
            await asyncio.sleep(delay)
            return web.Response(text="pong", status=status)

        app = web.Application()
        app.router.add_post("/ping", ping)
        runner = web.AppRunner(app)
        await runner.setup()
        port = unused_tcp_port_factory()
        await web.TCPSite(runner, "127.0.0.1", port).start()
        runners.append(runner)
        return f"http://127.0.0.1:{port}/"

    yield start
    for runner in runners:
        await runner.cleanup()

class TestProbe:
    @pytest.mark.asyncio
    async def test_reachable(self, ping_target, async_client):
        assert await probe(async_client, await ping_target())

    @pytest.mark.asyncio
    async def test_error_status_is_unreachable(self, ping_target, async_client):
        assert not await probe(async_client, await ping_target(status=500))

    @pytest.mark.asyncio
    async def test_timeout_is_unreachable(self, ping_target, async_client):
        url = await ping_target(delay=1.0)
        assert not await probe(async_client, url, timeout=0.1)

    @pytest.mark.asyncio
    async def test_connection_refused_is_unreachable(self, async_client, unused_tcp_port):
        assert not await probe(async_client, f"http://127.0.0.1:{unused_tcp_port}/")

    @pytest.mark.asyncio
    async def test_garbage_url_is_unreachable(self, async_client):
        assert not await probe(async_client, "not a url")

    @pytest.mark.asyncio
    async def test_probes_ping_path(self, coordinator, async_client):
        # The coordinator itself answers /ping.
        assert await probe(async_client, f"http://127.0.0.1:{coordinator.config.port}/anything")

@pytest.mark.asyncio
async def test_liveness_prober_manages_session(ping_target):
    prober = LivenessProber(timeout=1.0)
    url = await ping_target()

    assert await prober(url)
    await prober.close()
    assert prober._session is None
    assert await prober(url)
    await prober.close()
