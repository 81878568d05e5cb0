import pytest
import json
import time

from live_server_lsp.core.broadcaster import ChangeEvent, EventBroadcaster
from live_server_lsp.monitoring.metrics import MetricsTracker

def event(i: int, added: bool = True) -> ChangeEvent:
    return ChangeEvent(added=added, name=f"server-{i}", url=f"http://127.0.0.1:{4000 + i}/")

class TestEventBroadcaster:
    @pytest.mark.asyncio
    async def test_fan_out_to_every_subscriber(self):
        broadcaster = EventBroadcaster()
        first = broadcaster.subscribe()
        second = broadcaster.subscribe()

        broadcaster.publish(event(1))

        assert await first.get() == event(1)
        assert await second.get() == event(1)

    @pytest.mark.asyncio
    async def test_late_subscriber_misses_earlier_events(self):
        broadcaster = EventBroadcaster()
        broadcaster.publish(event(1))
        subscription = broadcaster.subscribe()
        broadcaster.publish(event(2))

        assert subscription.pending() == [event(2)]

    @pytest.mark.asyncio
    async def test_slow_subscriber_keeps_recent_window(self):
        broadcaster = EventBroadcaster(capacity=10)
        stalled = broadcaster.subscribe()
        reader = broadcaster.subscribe()

        started = time.monotonic()
        for i in range(1000):
            broadcaster.publish(event(i))
        assert time.monotonic() - started < 5

        assert stalled.pending() == [event(i) for i in range(990, 1000)]
        assert stalled.dropped == 990
        assert len(reader.pending()) == 10

    @pytest.mark.asyncio
    async def test_closed_subscribers_are_cleaned_up(self):
        broadcaster = EventBroadcaster()
        kept = broadcaster.subscribe()
        gone = broadcaster.subscribe()
        gone.close()

        assert broadcaster.subscriber_count == 1
        broadcaster.publish(event(1))

        assert gone.pending() == []
        assert kept.pending() == [event(1)]
        assert broadcaster._subscribers == [kept]

    @pytest.mark.asyncio
    async def test_publish_counts_metrics(self):
        metrics = MetricsTracker()
        broadcaster = EventBroadcaster(metrics=metrics)
        broadcaster.publish(event(1))
        broadcaster.publish(event(2, added=False))

        assert metrics.get_all_metrics()['counters']['broadcast.published'] == 2

def test_change_event_json():
    payload = json.loads(ChangeEvent(added=True, name="demo", url="http://127.0.0.1:4001/").to_json())
    assert payload == {"added": True, "name": "demo", "url": "http://127.0.0.1:4001/"}
