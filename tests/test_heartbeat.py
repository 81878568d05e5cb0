import pytest
import asyncio

from live_server_lsp.core.broadcaster import ChangeEvent, EventBroadcaster
from live_server_lsp.core.heartbeat import HeartbeatMonitor, HeartbeatState
from live_server_lsp.core.registry import RegistryEntry, RegistryStore

from conftest import FakeProber

A_URL = "http://127.0.0.1:4001/"
B_URL = "http://127.0.0.1:4002/"

@pytest.fixture
def registry():
    return RegistryStore()

@pytest.fixture
def broadcaster():
    return EventBroadcaster()

class TestHeartbeatMonitor:
    @pytest.mark.asyncio
    async def test_evicts_exactly_the_unreachable(self, registry, broadcaster):
        await registry.add("A", A_URL)
        await registry.add("B", B_URL)
        subscription = broadcaster.subscribe()
        monitor = HeartbeatMonitor(registry, broadcaster, FakeProber({A_URL}))

        removed = await monitor.run_once()

        assert removed == [RegistryEntry("B", B_URL)]
        assert await registry.snapshot() == (RegistryEntry("A", A_URL),)
        assert subscription.pending() == [ChangeEvent(added=False, name="B", url=B_URL)]
        assert monitor.state == HeartbeatState.SLEEPING

    @pytest.mark.asyncio
    async def test_entries_added_during_probing_survive(self, registry, broadcaster):
        await registry.add("B", B_URL)
        newcomer = "http://127.0.0.1:4003/"

        class AddingProber(FakeProber):
            async def __call__(self, url):
                # A new instance with the same name registers mid-cycle.
                await registry.add("B", newcomer)
                return await super().__call__(url)

        monitor = HeartbeatMonitor(registry, broadcaster, AddingProber())
        await monitor.run_once()

        assert await registry.snapshot() == (RegistryEntry("B", newcomer),)

    @pytest.mark.asyncio
    async def test_probes_run_concurrently(self, registry, broadcaster):
        for i in range(5):
            await registry.add(f"s{i}", f"http://127.0.0.1:{4100 + i}/")
        in_flight = []
        peak = []

        async def slow_prober(url):
            in_flight.append(url)
            peak.append(len(in_flight))
            await asyncio.sleep(0.05)
            in_flight.remove(url)
            return True

        monitor = HeartbeatMonitor(registry, broadcaster, slow_prober)
        assert await monitor.run_once() == []
        assert max(peak) == 5

    @pytest.mark.asyncio
    async def test_empty_registry(self, registry, broadcaster):
        prober = FakeProber()
        monitor = HeartbeatMonitor(registry, broadcaster, prober)

        assert await monitor.run_once() == []
        assert prober.calls == []
        assert monitor.metrics.get_all_metrics()['counters']['heartbeat.cycles'] == 1

    @pytest.mark.asyncio
    async def test_loop_runs_periodically_until_stopped(self, registry, broadcaster):
        await registry.add("B", B_URL)
        subscription = broadcaster.subscribe()
        monitor = HeartbeatMonitor(registry, broadcaster, FakeProber(), interval=0.01)

        monitor.start()
        received = await asyncio.wait_for(subscription.get(), timeout=2)
        await monitor.stop()

        assert received == ChangeEvent(added=False, name="B", url=B_URL)
        assert await registry.snapshot() == ()
